# langlog_server/processing_service/logic/session_reconstructor.py
"""
Session reconstructor.

Drains raw content events in bounded batches of whole groups, folds each
(user, content key) group into sessions and reconciles them against the
content label:

* closed sessions shorter than MIN_SESSION are discarded;
* closed sessions whose label language matches the user's target language
  finalize a completed LanguageActivity and award XP exactly once;
* closed sessions on a mismatching label are deleted without an activity,
  together with any in-progress accumulator for that content;
* the trailing open session keeps an in-progress activity up to date and
  leaves its events in place until a closing tick arrives.

Every consumed event is deleted by exactly one of those paths. Each group
runs in its own SAVEPOINT so one failing group does not abort its siblings.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, func, nulls_first, or_
from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.processing_service.db_models import (
    ActivityState, ContentLabel, LabelStage, LanguageActivity, LanguageCode, PendingContentWork, RawContentEvent,
    User, UserTargetLanguage
)
from langlog_server.processing_service.logic.activities import (
    add_completed_activity, award_activity_experience, get_in_progress_activity
)
from langlog_server.processing_service.logic.content_labels import get_content_label_by_key
from langlog_server.processing_service.logic.experience import duration_ms_to_minutes
from langlog_server.processing_service.logic.pending_work import clear_if_drained, mark_translated
from langlog_server.processing_service.logic.sessions import GAP, Session, Tick, fold_sessions
from langlog_server.processing_service.logic.users import get_current_target_language
from langlog_server.processing_service.models import TranslateBatchResult
from langlog_server.shared.utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 500
MAX_BATCH_LIMIT = 2000


class _GroupContext:
    """Everything a group's sessions are reconciled against, resolved once per group."""

    def __init__(self, user: User, target: Optional[UserTargetLanguage], label: Optional[ContentLabel]):
        self.user = user
        self.target = target
        self.label = label

    @property
    def label_completed(self) -> bool:
        return self.label is not None and self.label.stage == LabelStage.COMPLETED

    @property
    def label_ready(self) -> bool:
        return self.label_completed and self.label.is_ready

    @property
    def language(self) -> Optional[LanguageCode]:
        """Language an activity on this content would carry; websites take the user's target language."""
        if not self.label_ready:
            return None
        if self.label.is_language_agnostic:
            return self.target.language_code if self.target else None
        return self.label.content_language_code

    @property
    def matches_target(self) -> bool:
        return self.target is not None and self.language is not None and self.language == self.target.language_code


def _eligible_events_filter():
    # Not waiting, or waiting on a label that has since completed
    return or_(
        RawContentEvent.is_waiting_on_labeling.is_(False),
        ContentLabel.stage == LabelStage.COMPLETED,
    )


def _select_groups(db: SQLAlchemySession, limit: int, user_id: Optional[uuid.UUID]):
    """
    Eligible (user, content key) groups, never-translated first, then the one
    translated longest ago, then oldest event. Groups are taken whole until
    their events would exceed `limit`; the first group is always taken.
    """
    first_at = func.min(RawContentEvent.occurred_at)
    event_count = func.count(RawContentEvent.id)
    query = (
        db.query(RawContentEvent.user_id, RawContentEvent.content_key, event_count)
        .outerjoin(ContentLabel, ContentLabel.content_key == RawContentEvent.content_key)
        .outerjoin(PendingContentWork, and_(PendingContentWork.user_id == RawContentEvent.user_id,
                                            PendingContentWork.content_key == RawContentEvent.content_key))
        .filter(_eligible_events_filter())
    )
    if user_id is not None:
        query = query.filter(RawContentEvent.user_id == user_id)
    rows = (
        query.group_by(RawContentEvent.user_id, RawContentEvent.content_key, PendingContentWork.last_translated_at)
        .order_by(nulls_first(PendingContentWork.last_translated_at), first_at)
        .limit(limit)
        .all()
    )

    groups = []
    budget = limit
    for row_user_id, content_key, count in rows:
        if groups and count > budget:
            break
        groups.append((row_user_id, content_key))
        budget -= count
        if budget <= 0:
            break
    return groups


def _load_group_events(db: SQLAlchemySession, user_id: uuid.UUID, content_key: str) -> List[RawContentEvent]:
    return (
        db.query(RawContentEvent)
        .outerjoin(ContentLabel, ContentLabel.content_key == RawContentEvent.content_key)
        .filter(and_(RawContentEvent.user_id == user_id, RawContentEvent.content_key == content_key))
        .filter(_eligible_events_filter())
        .order_by(RawContentEvent.occurred_at, RawContentEvent.created_at)
        .all()
    )


def _delete_events(db: SQLAlchemySession, by_id: dict, event_ids) -> int:
    for event_id in event_ids:
        db.delete(by_id[event_id])
    return len(event_ids)


def _drop_in_progress(db: SQLAlchemySession, user_id: uuid.UUID, content_key: str) -> None:
    stale = get_in_progress_activity(db, user_id, content_key)
    if stale is not None:
        db.delete(stale)
        logger.info(f"Dropped in-progress activity {stale.id} for {content_key} (user {user_id})")


def _finalize_session(db: SQLAlchemySession, ctx: _GroupContext, content_key: str, session: Session,
                      result: TranslateBatchResult) -> None:
    label = ctx.label
    title = label.title or content_key
    minutes = duration_ms_to_minutes(session.duration_ms)

    existing = get_in_progress_activity(db, ctx.user.id, content_key)
    # Only the accumulator lying inside this session is promoted; a late, earlier session gets its own record
    if existing is not None and session.start <= existing.occurred_at <= session.end:
        existing.state = ActivityState.COMPLETED
        existing.occurred_at = session.start
        existing.duration_in_seconds = max(0, round(session.duration.total_seconds()))
        existing.language_code = ctx.language
        existing.title = title
        db.flush()
        awarded = award_activity_experience(db, existing, minutes, is_applying_streak_bonus=True)
        result.completed_activities += 1
        logger.info(f"Completed in-progress activity {existing.id} for {content_key} "
                    f"(user {ctx.user.id}, {minutes} min, +{awarded} XP)")
        return

    activity = add_completed_activity(
        db,
        user_id=ctx.user.id,
        target=ctx.target,
        title=title,
        duration_in_seconds=round(session.duration.total_seconds()),
        duration_in_minutes=minutes,
        occurred_at=session.start,
        content_key=content_key,
        content_source=label.content_source,
        content_media_type=label.content_media_type,
        external_url=label.content_url,
        language_code=ctx.language,
    )
    result.created_activities += 1
    logger.info(f"Created activity {activity.id} for {content_key} "
                f"(user {ctx.user.id}, {minutes} min, +{activity.awarded_experience} XP)")


def _upsert_in_progress(db: SQLAlchemySession, ctx: _GroupContext, content_key: str, session: Session) -> None:
    label = ctx.label
    title = label.title or content_key
    seconds = round(session.duration.total_seconds())
    existing = get_in_progress_activity(db, ctx.user.id, content_key)
    if existing is not None:
        existing.duration_in_seconds = max(0, seconds)
        existing.language_code = ctx.language
        existing.title = title
        existing.occurred_at = session.start
        return

    db.add(LanguageActivity(
        id=uuid.uuid4(),
        user_id=ctx.user.id,
        user_target_language_id=ctx.target.id,
        content_key=content_key,
        content_source=label.content_source,
        content_media_type=label.content_media_type,
        language_code=ctx.language,
        state=ActivityState.IN_PROGRESS,
        title=title,
        external_url=label.content_url,
        duration_in_seconds=max(0, seconds),
        occurred_at=session.start,
        is_manually_tracked=False,
    ))
    logger.debug(f"Opened in-progress activity for {content_key} (user {ctx.user.id})")


def _process_group(db: SQLAlchemySession, user_id: uuid.UUID, content_key: str, now: datetime,
                   result: TranslateBatchResult) -> None:
    events = _load_group_events(db, user_id, content_key)
    if not events:
        return
    by_id = {e.id: e for e in events}

    user = db.get(User, user_id)
    if user is None:
        result.processed += _delete_events(db, by_id, list(by_id))
        return
    ctx = _GroupContext(user, get_current_target_language(db, user), get_content_label_by_key(db, content_key))

    fold = fold_sessions(Tick(e.id, e.activity_type, e.occurred_at) for e in events)
    # Closing ticks that arrive with no open session are noise
    result.processed += _delete_events(db, by_id, fold.orphan_event_ids)

    closed = list(fold.closed)
    trailing = fold.trailing
    if trailing is not None and now - trailing.end > GAP:
        # Nothing arrived within GAP; the user left without a closing tick
        closed.append(trailing)
        trailing = None

    for session in closed:
        if not session.is_long_enough:
            result.processed += _delete_events(db, by_id, session.event_ids)
            continue
        if ctx.target is None:
            logger.warning(f"User {user.id} has no current target language; dropping session on {content_key}")
            result.processed += _delete_events(db, by_id, session.event_ids)
            _drop_in_progress(db, user.id, content_key)
            continue
        if not ctx.label_completed:
            # Still labeling; events wait for a later pass
            continue
        if not ctx.matches_target:
            result.processed += _delete_events(db, by_id, session.event_ids)
            _drop_in_progress(db, user.id, content_key)
            continue
        _finalize_session(db, ctx, content_key, session, result)
        result.processed += _delete_events(db, by_id, session.event_ids)

    # With no target language the trailing events stay until one is picked
    if trailing is not None:
        if not ctx.label_ready:
            for event_id in trailing.event_ids:
                by_id[event_id].is_waiting_on_labeling = True
        elif ctx.target is not None and not ctx.matches_target:
            result.processed += _delete_events(db, by_id, trailing.event_ids)
            _drop_in_progress(db, user.id, content_key)
        elif ctx.matches_target:
            for event_id in trailing.event_ids:
                by_id[event_id].is_waiting_on_labeling = False
            if trailing.is_long_enough:
                _upsert_in_progress(db, ctx, content_key, trailing)

    if not clear_if_drained(db, user_id, content_key):
        mark_translated(db, user_id, content_key, now)


def _push_back_failed_group(db: SQLAlchemySession, user_id: uuid.UUID, content_key: str, now: datetime) -> None:
    try:
        with db.begin_nested():
            mark_translated(db, user_id, content_key, now)
    except Exception as e:
        logger.error(f"Could not stamp failed group for user {user_id} on {content_key}: {e}")


def translate_batch(db: SQLAlchemySession, limit: int = DEFAULT_BATCH_LIMIT, now: Optional[datetime] = None,
                    user_id: Optional[uuid.UUID] = None) -> TranslateBatchResult:
    """
    Folds whole (user, content key) groups into activities, up to `limit` events
    per call. Groups left with events are stamped so the next call starts elsewhere.
    Re-running with no new events creates and awards nothing.
    """
    limit = max(1, min(MAX_BATCH_LIMIT, limit or DEFAULT_BATCH_LIMIT))
    now = now or utc_now()
    result = TranslateBatchResult()

    groups = _select_groups(db, limit, user_id)
    if not groups:
        return result

    for group_user_id, content_key in groups:
        group_result = TranslateBatchResult()
        try:
            with db.begin_nested():
                _process_group(db, group_user_id, content_key, now, group_result)
        except Exception as e:
            logger.error(f"Failed to translate events for user {group_user_id} on {content_key}: {e}", exc_info=True)
            result.failed_groups += 1
            _push_back_failed_group(db, group_user_id, content_key, now)
            continue
        result.merge(group_result)

    logger.info(f"Translate batch: {len(groups)} group(s), processed {result.processed} event(s), "
                f"created {result.created_activities}, completed {result.completed_activities}, "
                f"failed {result.failed_groups}")
    return result


def process_user_batch(db: SQLAlchemySession, user_id: uuid.UUID, limit: int = DEFAULT_BATCH_LIMIT,
                       now: Optional[datetime] = None) -> TranslateBatchResult:
    return translate_batch(db, limit=limit, now=now, user_id=user_id)
