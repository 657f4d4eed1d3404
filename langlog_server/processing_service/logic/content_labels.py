# langlog_server/processing_service/logic/content_labels.py
"""
Content label store and labeling state machine.

One ContentLabel exists per content key, shared by every user. New labels
start `queued` and a process job is scheduled for after the creating
transaction commits. The job moves the label through `processing` to
`completed` or `failed`; a completed label that carries a language schedules
a fan-out job reconciling events and in-progress activities recorded before
the language was known.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.processing_service.db_models import (
    ActivityState, ContentLabel, ContentSource, LabelStage, LanguageActivity, RawContentEvent, User,
    UserTargetLanguage
)
from langlog_server.processing_service.errors import ContentLabelNotFoundError, InvalidStageTransitionError
from langlog_server.processing_service.logic.job_queue import LabelJob, LabelJobKind, schedule_after_commit
from langlog_server.processing_service.logic.label_processors import LabelProcessorRegistry
from langlog_server.processing_service.logic.pending_work import clear_if_drained
from langlog_server.processing_service.models import ContentLabelRef, FanOutResult, LabelProcessorResult
from langlog_server.shared.utils import utc_now

logger = logging.getLogger(__name__)


def get_content_label_by_key(db: SQLAlchemySession, content_key: str) -> Optional[ContentLabel]:
    return db.query(ContentLabel).filter(ContentLabel.content_key == content_key).one_or_none()


def get_content_label(db: SQLAlchemySession, content_label_id: uuid.UUID) -> ContentLabel:
    label = db.get(ContentLabel, content_label_id)
    if label is None:
        raise ContentLabelNotFoundError(content_label_id)
    return label


def _process_job(label: ContentLabel) -> LabelJob:
    return LabelJob(kind=LabelJobKind.PROCESS_LABEL, content_label_id=label.id, content_key=label.content_key)


def get_or_create_content_label(db: SQLAlchemySession, content_key: str, content_source: ContentSource,
                                publisher, content_url: Optional[str] = None) -> ContentLabelRef:
    """
    Idempotent upsert keyed by content key. A new label is inserted `queued` and a
    process job is published once the caller's transaction commits. An existing
    label is returned untouched, whatever its stage.
    """
    existing = get_content_label_by_key(db, content_key)
    if existing is not None:
        logger.debug(f"Content label exists for {content_key} (stage={existing.stage.value})")
        return ContentLabelRef(content_label_id=existing.id, content_key=content_key,
                               stage=existing.stage, existed=True)

    now = utc_now()
    label = ContentLabel(
        id=uuid.uuid4(),
        content_key=content_key,
        stage=LabelStage.QUEUED,
        content_source=content_source,
        content_url=content_url,
        attempts=0,
        created_at=now,
        updated_at=now,
    )
    try:
        with db.begin_nested():
            db.add(label)
    except IntegrityError:
        # A concurrent writer inserted the same key first; converge on its row
        existing = get_content_label_by_key(db, content_key)
        if existing is None:
            raise
        return ContentLabelRef(content_label_id=existing.id, content_key=content_key,
                               stage=existing.stage, existed=True)

    schedule_after_commit(db, publisher, _process_job(label))
    logger.info(f"Queued content label {label.id} for {content_key}")
    return ContentLabelRef(content_label_id=label.id, content_key=content_key,
                           stage=LabelStage.QUEUED, existed=False)


def _apply_result(label: ContentLabel, result: LabelProcessorResult) -> None:
    now = utc_now()
    if not result.success:
        label.transition_to(LabelStage.FAILED, now)
        label.last_error = result.error or "unknown_error"
        return

    patch = result.patch.model_dump(exclude_none=True) if result.patch else {}
    if label.is_language_agnostic:
        # Language-agnostic sources never carry a language
        patch.pop("content_language_code", None)
        patch.pop("target_language_codes", None)
    for field, value in patch.items():
        setattr(label, field, value)
    label.transition_to(LabelStage.COMPLETED, now)


def process_one_content_label(db: SQLAlchemySession, content_label_id: uuid.UUID,
                              registry: LabelProcessorRegistry, publisher) -> ContentLabel:
    """
    Runs the provider processor for one label. Safe to call repeatedly: a
    completed label is left alone. Processor failures end in `failed` and never
    propagate to the caller.
    """
    label = get_content_label(db, content_label_id)
    if label.stage == LabelStage.COMPLETED:
        logger.info(f"Content label {label.id} ({label.content_key}) already completed, skipping")
        return label
    if label.stage == LabelStage.PROCESSING:
        logger.info(f"Content label {label.id} ({label.content_key}) is already being processed, skipping")
        return label

    processor = registry.get(label.content_source)
    if processor is None:
        logger.error(f"No label processor registered for source [{label.content_source.value}] "
                     f"({label.content_key})")
        if label.stage == LabelStage.QUEUED:
            label.transition_to(LabelStage.FAILED, utc_now())
        label.last_error = f"unsupported_source:{label.content_source.value}"
        return label

    label.transition_to(LabelStage.PROCESSING, utc_now())
    db.flush()
    logger.info(f"Processing content label {label.id} ({label.content_key}), attempt {label.attempts}")

    try:
        result = processor.process(label)
    except Exception as e:
        logger.error(f"Label processor raised for {label.content_key}: {e}", exc_info=True)
        result = LabelProcessorResult(success=False, error=str(e) or "unknown_error")

    _apply_result(label, result)
    db.flush()

    if label.stage == LabelStage.FAILED:
        logger.error(f"Content label {label.id} ({label.content_key}) failed: {label.last_error}")
        return label

    logger.info(f"Content label {label.id} ({label.content_key}) completed "
                f"(language={label.content_language_code.value if label.content_language_code else None})")
    if label.content_language_code is not None:
        schedule_after_commit(db, publisher, LabelJob(
            kind=LabelJobKind.FAN_OUT_LABEL,
            content_label_id=label.id,
            content_key=label.content_key,
            language_code=label.content_language_code,
        ))
    return label


def retry_failed_content_label(db: SQLAlchemySession, content_label_id: uuid.UUID, publisher) -> ContentLabelRef:
    """
    Manual re-trigger of a failed label, or of a queued one whose job was lost.
    There is no timer-driven retry.
    """
    label = get_content_label(db, content_label_id)
    if label.stage not in (LabelStage.FAILED, LabelStage.QUEUED):
        raise InvalidStageTransitionError(label.content_key, label.stage, LabelStage.PROCESSING)
    schedule_after_commit(db, publisher, _process_job(label))
    logger.info(f"Re-queued {label.stage.value} content label {label.id} ({label.content_key})")
    return ContentLabelRef(content_label_id=label.id, content_key=label.content_key,
                           stage=label.stage, existed=True)


def _target_language_codes_by_user(db: SQLAlchemySession, user_ids) -> dict:
    if not user_ids:
        return {}
    rows = (
        db.query(User.id, UserTargetLanguage.language_code)
        .outerjoin(UserTargetLanguage, UserTargetLanguage.id == User.current_target_language_id)
        .filter(User.id.in_(user_ids))
        .all()
    )
    return {user_id: code for user_id, code in rows}


def fan_out_content_label(db: SQLAlchemySession, content_label_id: uuid.UUID) -> FanOutResult:
    """
    Reconciles everything recorded for a content key before its language was known:
    waiting events and in-progress activities are kept (and released or relabelled)
    for users learning that language and deleted for everyone else.
    """
    label = get_content_label(db, content_label_id)
    result = FanOutResult()
    if label.stage != LabelStage.COMPLETED or label.content_language_code is None:
        logger.info(f"Fan-out skipped for {label.content_key}: label has no language")
        return result

    language = label.content_language_code
    events = (
        db.query(RawContentEvent)
        .filter(RawContentEvent.content_key == label.content_key, RawContentEvent.is_waiting_on_labeling.is_(True))
        .all()
    )
    activities = (
        db.query(LanguageActivity)
        .filter(LanguageActivity.content_key == label.content_key,
                LanguageActivity.state == ActivityState.IN_PROGRESS)
        .all()
    )
    user_ids = {e.user_id for e in events} | {a.user_id for a in activities}
    targets = _target_language_codes_by_user(db, user_ids)

    for raw_event in events:
        if targets.get(raw_event.user_id) == language:
            raw_event.is_waiting_on_labeling = False
            result.released_events += 1
        else:
            db.delete(raw_event)
            result.deleted_events += 1

    for activity in activities:
        if targets.get(activity.user_id) == language:
            activity.language_code = language
            activity.title = label.title or activity.title
            result.updated_activities += 1
        else:
            db.delete(activity)
            result.deleted_activities += 1

    for user_id in {e.user_id for e in events}:
        clear_if_drained(db, user_id, label.content_key)

    logger.info(f"Fan-out for {label.content_key} ({language.value}): released {result.released_events}, "
                f"deleted {result.deleted_events} events; updated {result.updated_activities}, "
                f"deleted {result.deleted_activities} in-progress activities")
    return result


def handle_label_job(db: SQLAlchemySession, job: LabelJob, registry: LabelProcessorRegistry, publisher) -> None:
    if job.kind == LabelJobKind.PROCESS_LABEL:
        process_one_content_label(db, job.content_label_id, registry, publisher)
    elif job.kind == LabelJobKind.FAN_OUT_LABEL:
        fan_out_content_label(db, job.content_label_id)
    else:
        raise ValueError(f"Unknown label job kind: {job.kind}")
