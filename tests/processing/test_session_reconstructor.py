from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from langlog_server.processing_service.db_models import (
    ActivityState, ExperienceLedgerEntry, LabelStage, LanguageActivity, LanguageCode, MediaType,
    PendingContentWork, RawContentEvent
)
from langlog_server.processing_service.logic import session_reconstructor
from langlog_server.processing_service.logic.pending_work import mark_pending
from langlog_server.processing_service.logic.session_reconstructor import process_user_batch, translate_batch
from langlog_server.processing_service.logic.users import add_target_language

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

ROUND_TRIP = [("start", 0), ("heartbeat", 30), ("heartbeat", 90), ("end", 150)]


def at(seconds):
    return T0 + timedelta(seconds=seconds)


def activities(db, **filters):
    return db.query(LanguageActivity).filter_by(**filters).all()


def test_round_trip_produces_one_completed_activity(db, user, make_label, add_events):
    make_label("youtube:vid1")
    add_events(user, "youtube:vid1", ROUND_TRIP)
    mark_pending(db, user, "youtube:vid1", T0)

    result = translate_batch(db, now=at(200))

    assert result.processed == 4
    assert result.created_activities == 1
    assert result.failed_groups == 0
    (activity,) = activities(db)
    assert activity.state == ActivityState.COMPLETED
    assert activity.duration_in_seconds == 150
    assert activity.language_code == LanguageCode.JA
    assert activity.awarded_experience > 0
    assert activity.occurred_at == T0
    assert db.query(RawContentEvent).count() == 0

    ledger = db.query(ExperienceLedgerEntry).one()
    assert ledger.language_activity_id == activity.id
    assert ledger.delta_experience == activity.awarded_experience
    assert user.current_streak == 1
    assert db.query(PendingContentWork).count() == 0
    assert user.has_pending_content_activities is False


def test_rerun_without_new_events_is_a_no_op(db, user, make_label, add_events):
    make_label("youtube:vid1")
    add_events(user, "youtube:vid1", ROUND_TRIP)
    translate_batch(db, now=at(200))

    result = translate_batch(db, now=at(400))

    assert result.processed == 0
    assert result.created_activities == 0
    assert len(activities(db)) == 1
    assert db.query(ExperienceLedgerEntry).count() == 1


def test_gap_splits_into_two_activities(db, user, make_label, add_events):
    make_label("youtube:vid1")
    add_events(user, "youtube:vid1", [("start", 0), ("heartbeat", 60), ("heartbeat", 200), ("heartbeat", 290),
                                      ("end", 320)])

    result = translate_batch(db, now=at(400))

    assert result.created_activities == 2
    durations = sorted(a.duration_in_seconds for a in activities(db))
    assert durations == [60, 120]


def test_short_session_is_discarded_without_xp(db, user, make_label, add_events):
    make_label("youtube:vid1")
    add_events(user, "youtube:vid1", [("start", 0), ("end", 30)])

    result = translate_batch(db, now=at(100))

    assert result.processed == 2
    assert result.created_activities == 0
    assert activities(db) == []
    assert db.query(ExperienceLedgerEntry).count() == 0
    assert db.query(RawContentEvent).count() == 0


def test_trailing_session_keeps_a_single_in_progress_activity(db, user, make_label, add_events):
    make_label("youtube:vid1")
    add_events(user, "youtube:vid1", [("start", 0), ("heartbeat", 30), ("heartbeat", 90)])

    translate_batch(db, now=at(100))
    translate_batch(db, now=at(100))

    (activity,) = activities(db)
    assert activity.state == ActivityState.IN_PROGRESS
    assert activity.duration_in_seconds == 90
    assert activity.awarded_experience is None
    assert db.query(RawContentEvent).count() == 3
    assert db.query(ExperienceLedgerEntry).count() == 0

    add_events(user, "youtube:vid1", [("heartbeat", 120), ("end", 150)])
    result = translate_batch(db, now=at(160))

    assert result.completed_activities == 1
    assert result.created_activities == 0
    (activity,) = activities(db)
    assert activity.state == ActivityState.COMPLETED
    assert activity.duration_in_seconds == 150
    assert activity.awarded_experience > 0
    assert db.query(RawContentEvent).count() == 0


def test_short_trailing_session_waits_for_more_events(db, user, make_label, add_events):
    make_label("youtube:vid1")
    add_events(user, "youtube:vid1", [("start", 0), ("heartbeat", 30)])

    translate_batch(db, now=at(40))

    assert activities(db) == []
    assert db.query(RawContentEvent).count() == 2


def test_stale_trailing_session_is_closed(db, user, make_label, add_events):
    make_label("youtube:vid1")
    add_events(user, "youtube:vid1", [("start", 0), ("heartbeat", 90)])

    result = translate_batch(db, now=at(600))

    assert result.created_activities == 1
    (activity,) = activities(db)
    assert activity.state == ActivityState.COMPLETED
    assert activity.duration_in_seconds == 90
    assert db.query(RawContentEvent).count() == 0


def test_mismatched_language_deletes_events(db, user, make_label, add_events):
    make_label("youtube:vid1", language=LanguageCode.FR)
    add_events(user, "youtube:vid1", ROUND_TRIP)

    result = translate_batch(db, now=at(200))

    assert result.processed == 4
    assert activities(db) == []
    assert db.query(RawContentEvent).count() == 0


def test_completed_label_without_language_is_a_mismatch(db, user, make_label, add_events):
    make_label("youtube:vid1", language=None)
    add_events(user, "youtube:vid1", ROUND_TRIP, waiting=True)

    translate_batch(db, now=at(200))

    assert activities(db) == []
    assert db.query(RawContentEvent).count() == 0


def test_events_waiting_on_unfinished_label_are_skipped(db, user, make_label, add_events):
    make_label("youtube:vid1", stage=LabelStage.PROCESSING, language=None)
    add_events(user, "youtube:vid1", ROUND_TRIP, waiting=True)

    result = translate_batch(db, now=at(200))

    assert result.processed == 0
    assert db.query(RawContentEvent).count() == 4


def test_trailing_events_on_unready_label_are_flagged_waiting(db, user, make_label, add_events):
    make_label("youtube:vid1", stage=LabelStage.QUEUED, language=None)
    events = add_events(user, "youtube:vid1", [("start", 0), ("heartbeat", 70)])

    translate_batch(db, now=at(80))

    assert all(e.is_waiting_on_labeling for e in events)
    assert activities(db) == []


def test_website_activity_takes_target_language(db, user, make_label, add_events):
    make_label("website:example.com")
    add_events(user, "website:example.com", ROUND_TRIP)

    translate_batch(db, now=at(200))

    (activity,) = activities(db)
    assert activity.language_code == LanguageCode.JA
    assert activity.content_media_type == MediaType.TEXT


def test_user_without_target_language_loses_closed_sessions(db, make_user, make_label, add_events):
    user, _ = make_user(language_code=None)
    make_label("youtube:vid1")
    add_events(user, "youtube:vid1", ROUND_TRIP)

    result = translate_batch(db, now=at(200))

    assert result.processed == 4
    assert activities(db) == []


def test_orphan_closing_events_are_consumed(db, user, make_label, add_events):
    make_label("youtube:vid1")
    add_events(user, "youtube:vid1", [("end", 0), ("pause", 5)])

    result = translate_batch(db, now=at(100))

    assert result.processed == 2
    assert db.query(RawContentEvent).count() == 0


def test_failing_group_does_not_block_siblings(db, make_user, make_label, add_events):
    user, _ = make_user()
    make_label("youtube:good")
    make_label("youtube:bad")
    add_events(user, "youtube:bad", ROUND_TRIP)
    add_events(user, "youtube:good", [(kind, s + 1) for kind, s in ROUND_TRIP])

    original = session_reconstructor._finalize_session

    def flaky_finalize(db_, ctx, content_key, session, result):
        if content_key == "youtube:bad":
            raise RuntimeError("simulated failure")
        return original(db_, ctx, content_key, session, result)

    with patch.object(session_reconstructor, "_finalize_session", side_effect=flaky_finalize):
        result = translate_batch(db, now=at(300))

    assert result.failed_groups == 1
    assert result.created_activities == 1
    (activity,) = activities(db)
    assert activity.content_key == "youtube:good"
    # The failing group's events survive for the next pass
    assert db.query(RawContentEvent).filter_by(content_key="youtube:bad").count() == 4


def test_process_user_batch_only_touches_that_user(db, make_user, make_label, add_events):
    first, _ = make_user()
    second, _ = make_user()
    make_label("youtube:vid1")
    add_events(first, "youtube:vid1", ROUND_TRIP)
    add_events(second, "youtube:vid1", ROUND_TRIP)

    result = process_user_batch(db, first.id, now=at(200))

    assert result.created_activities == 1
    assert activities(db)[0].user_id == first.id
    assert db.query(RawContentEvent).filter_by(user_id=second.id).count() == 4


@pytest.mark.parametrize("limit, expected_groups", [(1, 1), (4, 1), (5, 1), (8, 2), (12, 3)])
def test_limit_bounds_the_events_folded(db, user, make_label, add_events, limit, expected_groups):
    for n in range(3):
        make_label(f"youtube:vid{n}")
        add_events(user, f"youtube:vid{n}", [(kind, s + n * 1000) for kind, s in ROUND_TRIP])

    result = translate_batch(db, limit=limit, now=at(10_000))

    assert result.created_activities == expected_groups


def test_late_earlier_session_gets_its_own_activity(db, user, make_label, add_events):
    make_label("youtube:vid1")
    add_events(user, "youtube:vid1", [("start", 1000), ("heartbeat", 1030), ("heartbeat", 1090)])
    translate_batch(db, now=at(1100))
    (in_progress,) = activities(db)

    # An earlier session is delivered after the later one was already accumulating
    add_events(user, "youtube:vid1", [("start", 0), ("heartbeat", 60), ("end", 90)])
    result = translate_batch(db, now=at(1110))

    assert result.created_activities == 1
    assert result.completed_activities == 0
    (completed,) = activities(db, state=ActivityState.COMPLETED)
    assert completed.id != in_progress.id
    assert completed.occurred_at == T0
    assert completed.duration_in_seconds == 90
    assert completed.awarded_experience > 0
    (still_open,) = activities(db, state=ActivityState.IN_PROGRESS)
    assert still_open.id == in_progress.id
    assert still_open.occurred_at == at(1000)
    assert still_open.duration_in_seconds == 90
    assert db.query(RawContentEvent).count() == 3


def test_open_session_does_not_starve_other_groups(db, make_user, make_label, add_events):
    busy, _ = make_user()
    quiet, _ = make_user()
    make_label("youtube:live")
    make_label("youtube:vid1")
    add_events(busy, "youtube:live", [("heartbeat", s) for s in range(0, 200, 10)])
    add_events(quiet, "youtube:vid1", [("start", 50), ("heartbeat", 100), ("end", 140)])

    created = sum(translate_batch(db, limit=5, now=at(200 + n)).created_activities for n in range(3))

    assert created == 1
    (done,) = activities(db, user_id=quiet.id)
    assert done.state == ActivityState.COMPLETED
    assert db.query(RawContentEvent).filter_by(user_id=quiet.id).count() == 0
    (live,) = activities(db, user_id=busy.id)
    assert live.state == ActivityState.IN_PROGRESS
    work = db.query(PendingContentWork).filter_by(user_id=busy.id).one()
    assert work.last_translated_at is not None


@pytest.mark.parametrize("change", ["new_target", "no_target"])
def test_target_change_drops_stale_in_progress_activity(db, make_user, make_label, add_events, change):
    user, _ = make_user()
    make_label("youtube:vid1")
    add_events(user, "youtube:vid1", [("start", 0), ("heartbeat", 30), ("heartbeat", 90)])
    translate_batch(db, now=at(100))
    assert len(activities(db, state=ActivityState.IN_PROGRESS)) == 1

    if change == "new_target":
        add_target_language(db, user, LanguageCode.ES)
    else:
        user.current_target_language_id = None
    db.flush()
    add_events(user, "youtube:vid1", [("end", 120)])
    translate_batch(db, now=at(130))

    assert activities(db) == []
    assert db.query(RawContentEvent).count() == 0
    assert db.query(ExperienceLedgerEntry).count() == 0


def test_trailing_events_wait_for_a_target_language(db, make_user, make_label, add_events):
    user, _ = make_user(language_code=None)
    make_label("youtube:vid1")
    add_events(user, "youtube:vid1", [("start", 0), ("heartbeat", 30), ("heartbeat", 90)])

    result = translate_batch(db, now=at(100))

    assert result.processed == 0
    assert activities(db) == []
    assert db.query(RawContentEvent).count() == 3
