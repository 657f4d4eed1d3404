from datetime import date, datetime, timedelta, timezone

import polars as pl
import pytest
from polars.testing import assert_frame_equal

from langlog_server.processing_service.db_models import LanguageCode
from langlog_server.processing_service.logic.activity_aggregation import build_daily_xp_frame, get_xp_timeseries
from langlog_server.processing_service.logic.experience_ledger import add_experience

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _expected(days_and_xp):
    return pl.DataFrame({
        "day": [d for d, _ in days_and_xp],
        "xp": [xp for _, xp in days_and_xp],
    }, schema={"day": pl.Date, "xp": pl.Int64})


def test_daily_frame_is_contiguous_and_clips_negatives():
    entries = [
        {"occurred_at": datetime(2025, 3, 1, 8, tzinfo=timezone.utc), "delta_experience": 40},
        {"occurred_at": datetime(2025, 3, 1, 23, 59, tzinfo=timezone.utc), "delta_experience": 10},
        {"occurred_at": datetime(2025, 3, 3, 1, tzinfo=timezone.utc), "delta_experience": -30},
        {"occurred_at": datetime(2025, 3, 3, 2, tzinfo=timezone.utc), "delta_experience": 5},
        # outside the window
        {"occurred_at": datetime(2025, 2, 20, tzinfo=timezone.utc), "delta_experience": 999},
    ]

    frame = build_daily_xp_frame(entries, date(2025, 3, 1), 3)

    assert_frame_equal(frame, _expected([
        (date(2025, 3, 1), 50),
        (date(2025, 3, 2), 0),
        (date(2025, 3, 3), 5),
    ]))


def test_daily_frame_without_entries():
    frame = build_daily_xp_frame([], date(2025, 3, 1), 2)

    assert_frame_equal(frame, _expected([(date(2025, 3, 1), 0), (date(2025, 3, 2), 0)]))


def test_xp_timeseries_from_ledger(db, make_user):
    user, _ = make_user()
    add_experience(db, user.id, LanguageCode.JA, 100, occurred_at=T0 - timedelta(hours=2))
    add_experience(db, user.id, LanguageCode.JA, 100, occurred_at=T0)
    add_experience(db, user.id, LanguageCode.JA, 50, occurred_at=T0 - timedelta(days=2))
    add_experience(db, user.id, LanguageCode.JA, 70, occurred_at=T0 - timedelta(days=20))
    db.flush()

    series = get_xp_timeseries(db, user.id, "7d", now=T0)

    assert series["days"] == 7
    assert series["start_inclusive"] == date(2025, 2, 23)
    assert len(series["points"]) == 7
    assert series["points"][-1] == {"day": date(2025, 3, 1), "xp": 200}
    assert series["points"][-3] == {"day": date(2025, 2, 27), "xp": 50}
    assert series["total_xp"] == 250

    month = get_xp_timeseries(db, user.id, "30d", now=T0)
    assert month["total_xp"] == 320


def test_xp_timeseries_rejects_unknown_range(db, user):
    with pytest.raises(ValueError):
        get_xp_timeseries(db, user.id, "90d", now=T0)


def test_all_range_starts_at_the_earliest_ledger_row(db, make_user):
    user, _ = make_user()
    add_experience(db, user.id, LanguageCode.JA, 70, occurred_at=T0 - timedelta(days=400))
    add_experience(db, user.id, LanguageCode.JA, 30, occurred_at=T0)
    db.flush()

    series = get_xp_timeseries(db, user.id, "all", now=T0)

    assert series["days"] == 401
    assert series["start_inclusive"] == date(2024, 1, 26)
    assert series["points"][0] == {"day": date(2024, 1, 26), "xp": 70}
    assert series["total_xp"] == 100


def test_all_range_without_ledger_rows(db, user):
    series = get_xp_timeseries(db, user.id, "all", now=T0)

    assert series["days"] == 1
    assert series["points"] == [{"day": date(2025, 3, 1), "xp": 0}]
