import uuid
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.api_service import schemas
from langlog_server.api_service.api_v1.deps import get_db, get_job_publisher, http_error_from
from langlog_server.processing_service.errors import LangLogError
from langlog_server.processing_service.logic.content_labels import (
    get_content_label_by_key, retry_failed_content_label
)

router = APIRouter()


@router.get("/{content_key}", response_model=schemas.ContentLabel)
def read_content_label(content_key: str, db: SQLAlchemySession = Depends(get_db)):
    label = get_content_label_by_key(db, content_key)
    if label is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Content label not found")
    return schemas.ContentLabel.model_validate(label)


@router.post("/{content_label_id}/retry", response_model=schemas.ContentLabelRef,
             status_code=status.HTTP_202_ACCEPTED)
def retry_content_label(
    content_label_id: uuid.UUID,
    db: SQLAlchemySession = Depends(get_db),
    publisher=Depends(get_job_publisher),
):
    """Requeues a failed label for processing. Labels in any other stage are a 409."""
    try:
        ref = retry_failed_content_label(db, content_label_id, publisher)
    except LangLogError as e:
        raise http_error_from(e)
    return schemas.ContentLabelRef.model_validate(ref.model_dump())
