# langlog_server/processing_service/logic/activities.py
import logging
import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.processing_service.db_models import (
    ActivityState, ContentSource, LanguageActivity, LanguageCode, MediaType, UserTargetLanguage
)
from langlog_server.processing_service.errors import (
    LanguageActivityNotFoundError, TargetLanguageNotConfiguredError
)
from langlog_server.processing_service.logic.experience import get_experience_for_activity
from langlog_server.processing_service.logic.experience_ledger import add_experience, reverse_experience_for_activity
from langlog_server.processing_service.logic.streaks import update_streak_on_activity
from langlog_server.processing_service.logic.users import (
    get_target_language_by_code, require_current_target_language
)
from langlog_server.shared.utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


def get_in_progress_activity(db: SQLAlchemySession, user_id: uuid.UUID, content_key: str) -> Optional[LanguageActivity]:
    return (
        db.query(LanguageActivity)
        .filter(LanguageActivity.user_id == user_id,
                LanguageActivity.state == ActivityState.IN_PROGRESS,
                LanguageActivity.content_key == content_key)
        .one_or_none()
    )


def award_activity_experience(db: SQLAlchemySession, activity: LanguageActivity, duration_in_minutes: int,
                              is_applying_streak_bonus: bool,
                              skill_categories: Optional[Iterable[str]] = None) -> int:
    """Credits the streak, then writes the ledger entry. Returns the awarded (post-multiplier) XP."""
    categories = [activity.content_media_type] if activity.content_media_type else None
    base = get_experience_for_activity(
        duration_in_minutes,
        source=activity.content_source,
        content_categories=categories,
        is_manually_tracked=activity.is_manually_tracked,
        skill_categories=skill_categories,
    )
    update_streak_on_activity(db, activity.user_id, activity.occurred_at)
    awarded = add_experience(
        db,
        user_id=activity.user_id,
        language_code=activity.language_code,
        delta_experience=base,
        language_activity_id=activity.id,
        is_applying_streak_bonus=is_applying_streak_bonus,
        duration_in_minutes=duration_in_minutes,
        occurred_at=activity.occurred_at,
    )
    activity.awarded_experience = awarded.delta_experience
    return awarded.delta_experience


def add_completed_activity(db: SQLAlchemySession, user_id: uuid.UUID, target: UserTargetLanguage, title: str,
                           duration_in_seconds: int, duration_in_minutes: int, occurred_at: datetime,
                           content_key: Optional[str], content_source: Optional[ContentSource],
                           content_media_type: Optional[MediaType], external_url: Optional[str] = None,
                           language_code: Optional[LanguageCode] = None) -> LanguageActivity:
    """Inserts a finalized automated activity and awards its XP with streak bonus."""
    activity = LanguageActivity(
        id=uuid.uuid4(),
        user_id=user_id,
        user_target_language_id=target.id,
        content_key=content_key,
        content_source=content_source,
        content_media_type=content_media_type,
        language_code=language_code or target.language_code,
        state=ActivityState.COMPLETED,
        title=title,
        external_url=external_url,
        duration_in_seconds=max(0, duration_in_seconds),
        occurred_at=occurred_at,
        is_manually_tracked=False,
    )
    db.add(activity)
    db.flush()
    award_activity_experience(db, activity, duration_in_minutes, is_applying_streak_bonus=True)
    return activity


def add_manual_language_activity(db: SQLAlchemySession, user_id: uuid.UUID, title: str, duration_in_minutes: float,
                                 language_code: Optional[LanguageCode] = None, description: Optional[str] = None,
                                 occurred_at: Optional[datetime] = None,
                                 content_categories: Optional[List[MediaType]] = None,
                                 skill_categories: Optional[List[str]] = None) -> LanguageActivity:
    """
    Creates a completed activity directly, bypassing the event pipeline.
    Manual XP is capped per entry and earns no streak bonus.
    """
    if duration_in_minutes <= 0:
        raise ValueError("duration_in_minutes must be positive")

    user, target = require_current_target_language(db, user_id)
    if language_code is not None and language_code != target.language_code:
        target = get_target_language_by_code(db, user.id, language_code)
        if target is None:
            raise TargetLanguageNotConfiguredError(user_id)

    activity = LanguageActivity(
        id=uuid.uuid4(),
        user_id=user.id,
        user_target_language_id=target.id,
        content_source=ContentSource.MANUAL,
        content_media_type=content_categories[0] if content_categories else None,
        language_code=target.language_code,
        state=ActivityState.COMPLETED,
        title=title,
        description=description,
        duration_in_seconds=max(0, round(duration_in_minutes * 60)),
        occurred_at=ensure_utc(occurred_at) if occurred_at else utc_now(),
        is_manually_tracked=True,
    )
    db.add(activity)
    db.flush()
    award_activity_experience(db, activity, round(duration_in_minutes), is_applying_streak_bonus=False,
                              skill_categories=skill_categories)
    logger.info(f"User {user.id} added manual activity {activity.id} ({duration_in_minutes} min)")
    return activity


def delete_language_activity(db: SQLAlchemySession, user_id: uuid.UUID, activity_id: uuid.UUID) -> None:
    """Reverses the activity's XP and minutes, then deletes it."""
    activity = db.get(LanguageActivity, activity_id)
    if activity is None or activity.user_id != user_id:
        raise LanguageActivityNotFoundError(activity_id)

    if activity.state == ActivityState.COMPLETED:
        reverse_experience_for_activity(db, activity)
        db.flush()
    db.delete(activity)
    logger.info(f"Deleted language activity {activity_id} for user {user_id}")


def list_recent_activities(db: SQLAlchemySession, user_id: uuid.UUID, limit: int = 20,
                           include_in_progress: bool = True) -> List[LanguageActivity]:
    query = db.query(LanguageActivity).filter(LanguageActivity.user_id == user_id)
    if not include_in_progress:
        query = query.filter(LanguageActivity.state == ActivityState.COMPLETED)
    return query.order_by(LanguageActivity.occurred_at.desc()).limit(max(1, min(limit, 200))).all()
