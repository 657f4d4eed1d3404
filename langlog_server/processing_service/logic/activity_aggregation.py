# langlog_server/processing_service/logic/activity_aggregation.py
"""
Aggregation of experience ledger rows into daily XP series for charts.
"""

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import polars as pl
from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.processing_service.db_models import ExperienceLedgerEntry
from langlog_server.processing_service.logic.users import get_current_target_language, get_user
from langlog_server.shared.utils import ensure_utc, utc_now

log = logging.getLogger(__name__)

RANGE_DAYS = {
    "7d": 7,
    "30d": 30,
    "all": None,  # from the earliest ledger row
}


def build_daily_xp_frame(entries: List[Dict[str, Any]], start_day: date, days: int) -> pl.DataFrame:
    """
    Buckets ledger rows ({"occurred_at", "delta_experience"}) into UTC days.
    Returns a contiguous frame with one row per day (`day`, `xp`); negative
    deltas count as zero.
    """
    end_day = start_day + timedelta(days=days - 1)
    calendar = pl.DataFrame({
        "day": pl.date_range(start_day, end_day, interval="1d", eager=True)
    })
    if not entries:
        return calendar.with_columns(pl.lit(0, dtype=pl.Int64).alias("xp"))

    df = pl.from_dicts(entries, schema={"occurred_at": pl.Datetime(time_zone="UTC"), "delta_experience": pl.Int64})
    daily = (
        df.with_columns([
            pl.col("occurred_at").dt.date().alias("day"),
            pl.col("delta_experience").clip(lower_bound=0).alias("xp"),
        ])
        .filter(pl.col("day").is_between(start_day, end_day))
        .group_by("day")
        .agg(pl.col("xp").sum())
    )
    return (
        calendar.join(daily, on="day", how="left")
        .with_columns(pl.col("xp").fill_null(0).cast(pl.Int64))
        .sort("day")
    )


def get_xp_timeseries(db: SQLAlchemySession, user_id: uuid.UUID, range_key: str = "7d",
                      now: Optional[datetime] = None) -> Dict[str, Any]:
    if range_key not in RANGE_DAYS:
        raise ValueError(f"Unknown range {range_key!r}; expected one of {sorted(RANGE_DAYS)}")
    now = ensure_utc(now) if now else utc_now()

    user = get_user(db, user_id)
    target = get_current_target_language(db, user)
    query = db.query(ExperienceLedgerEntry.occurred_at, ExperienceLedgerEntry.delta_experience)
    if target is not None:
        query = query.filter(ExperienceLedgerEntry.user_target_language_id == target.id)
    else:
        query = query.filter(ExperienceLedgerEntry.user_id == user.id)
    entries = [
        {"occurred_at": ensure_utc(occurred_at), "delta_experience": delta}
        for occurred_at, delta in query.all()
    ]

    days = RANGE_DAYS[range_key]
    if days is None:
        earliest = min((e["occurred_at"] for e in entries), default=now)
        days = max(1, (now.date() - earliest.date()).days + 1)
    start_day = (now - timedelta(days=days - 1)).date()

    frame = build_daily_xp_frame(entries, start_day, days)
    points = [{"day": row["day"], "xp": int(row["xp"])} for row in frame.iter_rows(named=True)]
    total = int(frame["xp"].sum()) if frame.height else 0
    log.debug(f"XP timeseries for user {user_id} ({range_key}): {len(entries)} ledger rows, total {total}")
    return {
        "points": points,
        "total_xp": total,
        "days": days,
        "start_inclusive": start_day,
        "now": now,
    }
