# langlog_server/processing_service/logic/pending_work.py
"""
Work-item index over raw content events.

One row per (user, content key) that still has events to fold. The boolean
`users.has_pending_content_activities` is kept in step as a coarse hint.
"""

import logging
import uuid
from datetime import datetime
from typing import List

from sqlalchemy import exists, func
from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.processing_service.db_models import PendingContentWork, RawContentEvent, User
from langlog_server.shared.utils import ensure_utc

logger = logging.getLogger(__name__)


def mark_pending(db: SQLAlchemySession, user: User, content_key: str, occurred_at: datetime) -> PendingContentWork:
    db.flush()
    item = (
        db.query(PendingContentWork)
        .filter(PendingContentWork.user_id == user.id, PendingContentWork.content_key == content_key)
        .one_or_none()
    )
    if item is None:
        item = PendingContentWork(
            id=uuid.uuid4(), user_id=user.id, content_key=content_key,
            first_queued_at=occurred_at, last_event_at=occurred_at,
        )
        db.add(item)
    elif occurred_at > item.last_event_at:
        item.last_event_at = occurred_at
    user.has_pending_content_activities = True
    return item


def clear_if_drained(db: SQLAlchemySession, user_id: uuid.UUID, content_key: str) -> bool:
    """Drops the work item once no events remain for it. Returns True when it was dropped."""
    db.flush()
    has_events = db.query(
        exists().where(RawContentEvent.user_id == user_id, RawContentEvent.content_key == content_key)
    ).scalar()
    if has_events:
        return False

    deleted = (
        db.query(PendingContentWork)
        .filter(PendingContentWork.user_id == user_id, PendingContentWork.content_key == content_key)
        .delete(synchronize_session=False)
    )
    remaining = db.query(exists().where(PendingContentWork.user_id == user_id)).scalar()
    if not remaining:
        user = db.get(User, user_id)
        if user is not None and user.has_pending_content_activities:
            user.has_pending_content_activities = False
            logger.debug(f"User {user_id} has no pending content work left")
    return bool(deleted)


def mark_translated(db: SQLAlchemySession, user_id: uuid.UUID, content_key: str, translated_at: datetime) -> None:
    """
    Stamps the work item after a translate pass so groups that waited longer go
    first next time. Creates the item for events that never got one; no-op once drained.
    """
    db.flush()
    first_at, last_at = (
        db.query(func.min(RawContentEvent.occurred_at), func.max(RawContentEvent.occurred_at))
        .filter(RawContentEvent.user_id == user_id, RawContentEvent.content_key == content_key)
        .one()
    )
    if first_at is None:
        return

    item = (
        db.query(PendingContentWork)
        .filter(PendingContentWork.user_id == user_id, PendingContentWork.content_key == content_key)
        .one_or_none()
    )
    if item is None:
        item = PendingContentWork(
            id=uuid.uuid4(), user_id=user_id, content_key=content_key,
            first_queued_at=ensure_utc(first_at), last_event_at=ensure_utc(last_at),
        )
        db.add(item)
        user = db.get(User, user_id)
        if user is not None:
            user.has_pending_content_activities = True
    item.last_translated_at = translated_at


def find_users_with_pending_work(db: SQLAlchemySession, limit: int = 100) -> List[uuid.UUID]:
    """Users with the oldest outstanding work first."""
    oldest = func.min(PendingContentWork.first_queued_at)
    rows = (
        db.query(PendingContentWork.user_id, oldest)
        .group_by(PendingContentWork.user_id)
        .order_by(oldest)
        .limit(limit)
        .all()
    )
    return [user_id for user_id, _ in rows]
