# langlog_server/processing_service/logic/event_recorder.py
"""
Synchronous entry point for source integrations.

Every interaction tick (start, heartbeat, pause, end) goes through
`record_event`, which either persists a RawContentEvent, persists it as
waiting on labeling, or rejects it. Rejections are results, not errors.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.processing_service.db_models import (
    ActivityType, ContentLabel, ContentSource, LabelStage, PolicyKind, RawContentEvent, User,
    UserContentLabelPolicy
)
from langlog_server.processing_service.logic.content_labels import (
    get_content_label_by_key, get_or_create_content_label
)
from langlog_server.processing_service.logic.pending_work import mark_pending
from langlog_server.processing_service.logic.settings import settings as default_settings
from langlog_server.processing_service.logic.users import require_current_target_language
from langlog_server.processing_service.models import RecordEventResult
from langlog_server.shared.utils import ensure_utc, from_epoch_ms, split_content_key, utc_now

logger = logging.getLogger(__name__)

REASON_BLOCKED_BY_POLICY = "blocked_by_policy"
REASON_NOT_TARGET_LANGUAGE = "not_target_language"

# Sources whose integrations report ticks through the recorder
RECORDABLE_SOURCES = frozenset({ContentSource.YOUTUBE, ContentSource.WEBSITE, ContentSource.SPOTIFY})


def validate_content_key(source: ContentSource, content_key: str) -> None:
    if source not in RECORDABLE_SOURCES:
        raise ValueError(f"Source [{source.value}] does not record content events")
    prefix, _ = split_content_key(content_key)
    if prefix != source.value:
        raise ValueError(f"Content key {content_key!r} does not match source [{source.value}]")


def resolve_occurred_at(occurred_at: Optional[Union[datetime, int]], now: datetime,
                        max_future_skew: timedelta) -> datetime:
    """Missing or non-positive timestamps become `now`; future ones are clamped to now + skew."""
    if occurred_at is None:
        return now
    if isinstance(occurred_at, (int, float)):
        if occurred_at <= 0:
            return now
        occurred_at = from_epoch_ms(int(occurred_at))
    occurred_at = ensure_utc(occurred_at)
    latest_allowed = now + max_future_skew
    if occurred_at > latest_allowed:
        logger.debug(f"Clamping client timestamp {occurred_at.isoformat()} to {latest_allowed.isoformat()}")
        return latest_allowed
    return occurred_at


def get_policy(db: SQLAlchemySession, user_id: uuid.UUID, content_key: str) -> Optional[UserContentLabelPolicy]:
    return (
        db.query(UserContentLabelPolicy)
        .filter(UserContentLabelPolicy.user_id == user_id, UserContentLabelPolicy.content_key == content_key)
        .one_or_none()
    )


def _label_is_waiting(label: ContentLabel) -> bool:
    if label.stage != LabelStage.COMPLETED:
        return True
    return not label.is_language_agnostic and label.content_language_code is None


def _persist_event(db: SQLAlchemySession, user: User, source: ContentSource, activity_type: ActivityType,
                   content_key: str, occurred_at: datetime, waiting: bool) -> RawContentEvent:
    raw_event = RawContentEvent(
        id=uuid.uuid4(),
        user_id=user.id,
        content_key=content_key,
        content_source=source,
        activity_type=activity_type,
        occurred_at=occurred_at,
        is_waiting_on_labeling=waiting,
    )
    db.add(raw_event)
    mark_pending(db, user, content_key, occurred_at)
    return raw_event


def record_event(db: SQLAlchemySession, user_id: uuid.UUID, source: ContentSource, activity_type: ActivityType,
                 content_key: str, publisher, url: Optional[str] = None,
                 occurred_at: Optional[Union[datetime, int]] = None, settings=default_settings) -> RecordEventResult:
    """
    Raises ValueError for a key that does not belong to `source`, and a
    PreconditionError when the user is unknown or has no current target language.
    """
    validate_content_key(source, content_key)
    user, target = require_current_target_language(db, user_id)
    when = resolve_occurred_at(occurred_at, utc_now(), timedelta(minutes=settings.MAX_FUTURE_SKEW_MINUTES))

    policy = get_policy(db, user.id, content_key)
    if policy is not None and policy.policy_kind == PolicyKind.BLOCK:
        logger.info(f"Rejected {activity_type.value} for {content_key} (user {user.id}): {REASON_BLOCKED_BY_POLICY}")
        return RecordEventResult(saved=False, reason=REASON_BLOCKED_BY_POLICY)

    label = get_content_label_by_key(db, content_key)
    if label is None:
        ref = get_or_create_content_label(db, content_key, source, publisher, content_url=url)
        _persist_event(db, user, source, activity_type, content_key, when, waiting=True)
        return RecordEventResult(saved=True, content_label_id=ref.content_label_id, is_waiting_on_labeling=True)

    if _label_is_waiting(label):
        _persist_event(db, user, source, activity_type, content_key, when, waiting=True)
        return RecordEventResult(saved=True, content_label_id=label.id, is_waiting_on_labeling=True)

    if not label.is_language_agnostic and label.content_language_code != target.language_code:
        logger.info(f"Rejected {activity_type.value} for {content_key} (user {user.id}): "
                    f"label is {label.content_language_code.value}, target is {target.language_code.value}")
        return RecordEventResult(saved=False, reason=REASON_NOT_TARGET_LANGUAGE, content_label_id=label.id)

    _persist_event(db, user, source, activity_type, content_key, when, waiting=False)
    return RecordEventResult(saved=True, content_label_id=label.id, is_waiting_on_labeling=False)
