import uuid
from datetime import datetime, timedelta, timezone

from langlog_server.processing_service.db_models import ActivityType
from langlog_server.processing_service.logic.sessions import GAP, MIN_SESSION, Tick, fold_sessions

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def ticks(*pairs):
    return [Tick(uuid.uuid4(), ActivityType(kind), T0 + timedelta(seconds=s)) for kind, s in pairs]


def test_single_closed_session():
    result = fold_sessions(ticks(("start", 0), ("heartbeat", 30), ("heartbeat", 90), ("end", 150)))
    assert len(result.closed) == 1
    assert result.trailing is None
    session = result.closed[0]
    assert session.duration == timedelta(seconds=150)
    assert len(session.event_ids) == 4
    assert session.is_long_enough


def test_gap_longer_than_threshold_splits_sessions():
    result = fold_sessions(ticks(("start", 0), ("heartbeat", 60), ("heartbeat", 60 + 121), ("end", 300)))
    assert len(result.closed) == 2
    first, second = result.closed
    assert first.end == T0 + timedelta(seconds=60)
    assert second.start == T0 + timedelta(seconds=181)


def test_ticks_exactly_gap_apart_stay_together():
    gap_s = int(GAP.total_seconds())
    result = fold_sessions(ticks(("start", 0), ("heartbeat", gap_s), ("end", 2 * gap_s)))
    assert len(result.closed) == 1
    assert result.closed[0].duration == 2 * GAP


def test_open_session_is_trailing():
    result = fold_sessions(ticks(("start", 0), ("heartbeat", 30)))
    assert result.closed == []
    assert result.trailing is not None
    assert result.trailing.end == T0 + timedelta(seconds=30)
    assert result.last_seen_at == T0 + timedelta(seconds=30)


def test_closing_tick_without_open_session_is_orphan():
    evs = ticks(("pause", 0), ("start", 10), ("end", 100), ("end", 110))
    result = fold_sessions(evs)
    assert result.orphan_event_ids == [evs[0].event_id, evs[3].event_id]
    assert len(result.closed) == 1


def test_unordered_input_is_sorted():
    evs = ticks(("end", 150), ("start", 0), ("heartbeat", 90))
    result = fold_sessions(evs)
    assert len(result.closed) == 1
    assert result.closed[0].start == T0


def test_short_session_flagged():
    result = fold_sessions(ticks(("start", 0), ("end", 30)))
    assert result.closed[0].duration < MIN_SESSION
    assert not result.closed[0].is_long_enough


def test_heartbeat_opens_session():
    result = fold_sessions(ticks(("heartbeat", 0), ("heartbeat", 61)))
    assert result.trailing is not None
    assert result.trailing.is_long_enough


def test_empty_input():
    result = fold_sessions([])
    assert result.closed == []
    assert result.trailing is None
    assert result.last_seen_at is None
