# langlog_server/processing_service/logic/experience_ledger.py
"""
Experience ledger.

Every award or reversal appends one ExperienceLedgerEntry carrying a running
total and the level snapshot, so readers only ever need the latest row.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.processing_service.db_models import (
    ExperienceLedgerEntry, LanguageActivity, LanguageCode, UserTargetLanguage
)
from langlog_server.processing_service.errors import TargetLanguageNotConfiguredError
from langlog_server.processing_service.logic.experience import apply_experience
from langlog_server.processing_service.logic.streaks import get_or_create_streak_day, get_streak_bonus_multiplier
from langlog_server.processing_service.logic.users import get_target_language_by_code
from langlog_server.processing_service.models import AddExperienceResult
from langlog_server.shared.utils import utc_now

logger = logging.getLogger(__name__)


def get_latest_ledger_entry(db: SQLAlchemySession, user_target_language_id: uuid.UUID) -> Optional[ExperienceLedgerEntry]:
    db.flush()
    return (
        db.query(ExperienceLedgerEntry)
        .filter(ExperienceLedgerEntry.user_target_language_id == user_target_language_id)
        .order_by(ExperienceLedgerEntry.sequence.desc())
        .first()
    )


def get_total_experience(db: SQLAlchemySession, user_target_language_id: uuid.UUID) -> int:
    latest = get_latest_ledger_entry(db, user_target_language_id)
    return latest.running_total_after if latest else 0


def _next_sequence(db: SQLAlchemySession) -> int:
    return (db.query(func.max(ExperienceLedgerEntry.sequence)).scalar() or 0) + 1


def _add_minutes(target: UserTargetLanguage, minutes: Optional[int]) -> None:
    if minutes:
        target.total_minutes_learning = max(0, (target.total_minutes_learning or 0) + minutes)


def add_experience(db: SQLAlchemySession, user_id: uuid.UUID, language_code: LanguageCode, delta_experience: int,
                   language_activity_id: Optional[uuid.UUID] = None, is_applying_streak_bonus: bool = False,
                   duration_in_minutes: Optional[int] = None, occurred_at: Optional[datetime] = None,
                   note: Optional[str] = None) -> AddExperienceResult:
    target = get_target_language_by_code(db, user_id, language_code)
    if target is None:
        raise TargetLanguageNotConfiguredError(user_id)

    previous_total = get_total_experience(db, target.id)
    base_delta = int(delta_experience or 0)
    final_delta = base_delta
    multiplier = None
    if is_applying_streak_bonus:
        multiplier = get_streak_bonus_multiplier(db, user_id)
        final_delta = int(base_delta * max(0.0, multiplier))

    result = apply_experience(previous_total, final_delta)
    _add_minutes(target, duration_in_minutes)

    if occurred_at is None and language_activity_id is not None:
        activity = db.get(LanguageActivity, language_activity_id)
        occurred_at = activity.occurred_at if activity else None
    occurred_at = occurred_at or utc_now()

    entry = ExperienceLedgerEntry(
        id=uuid.uuid4(),
        sequence=_next_sequence(db),
        user_id=user_id,
        user_target_language_id=target.id,
        language_activity_id=language_activity_id,
        base_experience=base_delta,
        delta_experience=final_delta,
        running_total_after=result.new_total_experience,
        streak_multiplier=multiplier,
        previous_level=result.previous_level,
        new_level=result.new_level,
        levels_gained=result.levels_gained,
        remainder_towards_next_level=result.remainder_towards_next_level,
        next_level_cost=result.next_level_cost,
        last_level_cost=result.last_level_cost,
        note=note,
        occurred_at=occurred_at,
    )
    db.add(entry)

    day = get_or_create_streak_day(db, user_id, occurred_at, credited=False)
    day.xp_gained = max(0, (day.xp_gained or 0) + final_delta)

    if result.levels_gained:
        logger.info(f"User {user_id} reached level {result.new_level} in {language_code.value}")
    logger.debug(f"Ledger +{final_delta} XP (base {base_delta}) for user {user_id}/{language_code.value}, "
                 f"total {result.new_total_experience}")
    return AddExperienceResult(
        user_target_language_id=target.id,
        ledger_entry_id=entry.id,
        base_experience=base_delta,
        delta_experience=final_delta,
        streak_multiplier=multiplier,
        result=result,
    )


def reverse_experience_for_activity(db: SQLAlchemySession, activity: LanguageActivity) -> Optional[AddExperienceResult]:
    """Compensating entry for everything an activity earned, without streak bonus. Also takes back its minutes."""
    db.flush()
    awarded = (
        db.query(func.coalesce(func.sum(ExperienceLedgerEntry.delta_experience), 0))
        .filter(ExperienceLedgerEntry.language_activity_id == activity.id)
        .scalar()
    )
    minutes = round((activity.duration_in_seconds or 0) / 60)
    if not awarded and not minutes:
        return None

    logger.info(f"Reversing {awarded} XP and {minutes} min for activity {activity.id}")
    return add_experience(
        db,
        user_id=activity.user_id,
        language_code=activity.language_code,
        delta_experience=-int(awarded),
        language_activity_id=activity.id,
        is_applying_streak_bonus=False,
        duration_in_minutes=-minutes,
        occurred_at=activity.occurred_at,
        note="reversal",
    )
