import uuid
from typing import List
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.api_service import schemas
from langlog_server.api_service.api_v1.deps import get_current_user_id, get_db, http_error_from
from langlog_server.processing_service.errors import LangLogError
from langlog_server.processing_service.logic.activities import (
    add_manual_language_activity, delete_language_activity, list_recent_activities
)
from langlog_server.processing_service.logic.activity_aggregation import get_xp_timeseries

router = APIRouter()


@router.post("", response_model=schemas.LanguageActivity, status_code=status.HTTP_201_CREATED)
def create_manual_activity(
    activity_in: schemas.ManualActivityCreate,
    db: SQLAlchemySession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    try:
        activity = add_manual_language_activity(
            db,
            user_id=user_id,
            title=activity_in.title,
            duration_in_minutes=activity_in.duration_in_minutes,
            language_code=activity_in.language_code,
            description=activity_in.description,
            occurred_at=activity_in.occurred_at,
            content_categories=activity_in.content_categories,
            skill_categories=activity_in.skill_categories,
        )
    except (LangLogError, ValueError) as e:
        raise http_error_from(e)
    return schemas.LanguageActivity.model_validate(activity)


@router.get("/recent", response_model=List[schemas.LanguageActivity])
def read_recent_activities(
    limit: int = Query(20, ge=1, le=200, description="Number of items to return."),
    include_in_progress: bool = Query(True, alias="includeInProgress"),
    db: SQLAlchemySession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    activities = list_recent_activities(db, user_id, limit=limit, include_in_progress=include_in_progress)
    return [schemas.LanguageActivity.model_validate(a) for a in activities]


@router.get("/xp-timeseries", response_model=schemas.XpTimeseries)
def read_xp_timeseries(
    range_key: str = Query("7d", alias="range", description="One of 7d, 30d, all."),
    db: SQLAlchemySession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    try:
        series = get_xp_timeseries(db, user_id, range_key=range_key)
    except (LangLogError, ValueError) as e:
        raise http_error_from(e)
    return schemas.XpTimeseries.model_validate(series)


@router.delete("/{activity_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_activity(
    activity_id: uuid.UUID,
    db: SQLAlchemySession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Deletes an activity and takes back the XP and minutes it earned."""
    try:
        delete_language_activity(db, user_id, activity_id)
    except LangLogError as e:
        raise http_error_from(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
