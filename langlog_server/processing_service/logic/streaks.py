# langlog_server/processing_service/logic/streaks.py
"""
Streak credit and vacation bridging.

A streak is credited at most once per rolling 24h window. A credit that
lands within the window plus an 8h grace period extends the streak; a later
one restarts it at 1. The periodic nudge spends a vacation day to bridge a
lapsed window, or resets the streak when none is left.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.processing_service.db_models import StreakDay, User
from langlog_server.processing_service.logic.experience import streak_bonus_multiplier
from langlog_server.processing_service.logic.users import get_user
from langlog_server.processing_service.models import StreakNudgeResult, StreakUpdateResult
from langlog_server.shared.utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

WINDOW = timedelta(hours=24)
GRACE = timedelta(hours=8)


def day_start_of(moment: datetime) -> datetime:
    moment = ensure_utc(moment)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def get_or_create_streak_day(db: SQLAlchemySession, user_id: uuid.UUID, moment: datetime,
                             credited: bool) -> StreakDay:
    day_start = day_start_of(moment)
    db.flush()
    day = (
        db.query(StreakDay)
        .filter(StreakDay.user_id == user_id, StreakDay.day_start == day_start)
        .one_or_none()
    )
    if day is None:
        day = StreakDay(id=uuid.uuid4(), user_id=user_id, day_start=day_start,
                        streak_length=0, xp_gained=0, credited=credited, used_vacation=False)
        db.add(day)
    return day


def update_streak_on_activity(db: SQLAlchemySession, user_id: uuid.UUID,
                              occurred_at: Optional[datetime] = None) -> StreakUpdateResult:
    user = get_user(db, user_id)
    now = ensure_utc(occurred_at) if occurred_at else utc_now()
    current = user.current_streak or 0
    longest = user.longest_streak or 0
    last_credit = user.last_streak_credit_at

    if last_credit is None:
        current = max(1, current)
    else:
        delta = now - last_credit
        if delta < WINDOW:
            return StreakUpdateResult(current_streak=current, longest_streak=longest, did_increment=False)
        if delta <= WINDOW + GRACE:
            current += 1
        else:
            logger.info(f"Streak for user {user.id} lapsed after {delta}, restarting")
            current = 1

    longest = max(longest, current)
    user.current_streak = current
    user.longest_streak = longest
    user.last_streak_credit_at = now

    day = get_or_create_streak_day(db, user.id, now, credited=True)
    day.credited = True
    day.streak_length = current
    return StreakUpdateResult(current_streak=current, longest_streak=longest, did_increment=True)


def get_streak_bonus_multiplier(db: SQLAlchemySession, user_id: uuid.UUID) -> float:
    return streak_bonus_multiplier(get_user(db, user_id).current_streak)


def nudge_user_streak(db: SQLAlchemySession, user_id: uuid.UUID, now: Optional[datetime] = None) -> StreakNudgeResult:
    user = get_user(db, user_id)
    now = ensure_utc(now) if now else utc_now()
    last_credit = user.last_streak_credit_at
    if last_credit is None or not user.current_streak:
        return StreakNudgeResult()
    if now - last_credit <= WINDOW + GRACE:
        return StreakNudgeResult()

    if (user.streak_vacations or 0) > 0:
        covered_at = last_credit + WINDOW
        user.streak_vacations -= 1
        user.current_streak += 1
        user.longest_streak = max(user.longest_streak or 0, user.current_streak)
        user.last_streak_credit_at = covered_at

        day = get_or_create_streak_day(db, user.id, covered_at, credited=True)
        day.credited = True
        day.used_vacation = True
        day.streak_length = user.current_streak
        logger.info(f"Used a vacation day to bridge the streak of user {user.id} "
                    f"({user.streak_vacations} left)")
        return StreakNudgeResult(used_vacation=True, covered_day_start=day.day_start)

    logger.info(f"Reset streak of user {user.id} (was {user.current_streak})")
    user.current_streak = 0
    return StreakNudgeResult(reset=True)


def run_streak_nudge_sweep(db: SQLAlchemySession, max_users: int, now: Optional[datetime] = None) -> int:
    """Nudges at most `max_users` users with a running streak. Returns how many were changed."""
    now = now or utc_now()
    user_ids = [
        user_id for (user_id,) in
        db.query(User.id).filter(User.current_streak > 0).order_by(User.last_streak_credit_at).limit(max_users).all()
    ]
    changed = 0
    for user_id in user_ids:
        result = nudge_user_streak(db, user_id, now)
        if result.used_vacation or result.reset:
            changed += 1
    logger.info(f"Streak nudge sweep checked {len(user_ids)} user(s), changed {changed}")
    return changed
