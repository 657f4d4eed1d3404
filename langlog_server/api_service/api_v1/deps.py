import logging
import uuid
from functools import lru_cache
from typing import Generator

from fastapi import Header, HTTPException, status
from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.processing_service.db_session import SessionLocal, get_engine
from langlog_server.processing_service.errors import (
    ContentLabelNotFoundError, InvalidStageTransitionError, LangLogError, LanguageActivityNotFoundError,
    PreconditionError, UserNotFoundError
)
from langlog_server.processing_service.logic.job_dispatch import build_job_publisher
from langlog_server.processing_service.logic.settings import settings as service_settings

logger = logging.getLogger(__name__)


def get_db() -> Generator[SQLAlchemySession, None, None]:
    """
    Dependency yielding a session for one request.
    Commits when the endpoint returns normally, rolls back otherwise.
    Label jobs scheduled during the request are published on commit.
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@lru_cache()
def get_job_publisher():
    return build_job_publisher(service_settings)


def get_current_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> uuid.UUID:
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid X-User-Id header")


def http_error_from(exc: Exception) -> HTTPException:
    """Maps domain errors onto HTTP status codes."""
    if isinstance(exc, (UserNotFoundError, ContentLabelNotFoundError, LanguageActivityNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (PreconditionError, InvalidStageTransitionError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, LangLogError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.error(f"Unmapped error in request: {exc}", exc_info=True)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")
