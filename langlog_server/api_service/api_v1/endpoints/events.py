import uuid
import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.api_service import schemas
from langlog_server.api_service.api_v1.deps import (
    get_current_user_id, get_db, get_job_publisher, http_error_from
)
from langlog_server.processing_service.errors import LangLogError
from langlog_server.processing_service.logic.event_recorder import record_event

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=schemas.RecordEventResponse, status_code=status.HTTP_200_OK)
def create_event(
    event_in: schemas.RecordEventRequest,
    db: SQLAlchemySession = Depends(get_db),
    publisher=Depends(get_job_publisher),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """
    Records one interaction tick. A policy or language rejection is a normal
    response with `saved=false` and a `reason`, not an error status.
    """
    try:
        result = record_event(
            db,
            user_id=user_id,
            source=event_in.source,
            activity_type=event_in.activity_type,
            content_key=event_in.content_key,
            publisher=publisher,
            url=event_in.url,
            occurred_at=event_in.occurred_at,
        )
    except (LangLogError, ValueError) as e:
        raise http_error_from(e)
    return schemas.RecordEventResponse.model_validate(result.model_dump())
