from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Union
from datetime import datetime, date
import uuid

from langlog_server.processing_service.db_models import (
    ActivityState, ActivityType, ContentSource, LabelStage, LanguageCode, MediaType, PolicyKind
)


# Base schemas
class BaseSchema(BaseModel):
    """Base schema for all Pydantic models to inherit from."""
    model_config = ConfigDict(from_attributes=True)


class CamelSchema(BaseSchema):
    """Accepts and emits camelCase field names, as the browser integrations send them."""
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


# Event schemas
class RecordEventRequest(CamelSchema):
    """One interaction tick from a source integration."""
    source: ContentSource
    activity_type: ActivityType
    content_key: str = Field(..., min_length=3)
    url: Optional[str] = None
    # ISO 8601 or epoch milliseconds; absent or non-positive means "now"
    occurred_at: Optional[Union[datetime, int]] = None


class RecordEventResponse(CamelSchema):
    saved: bool
    reason: Optional[str] = None
    content_label_id: Optional[uuid.UUID] = None
    is_waiting_on_labeling: Optional[bool] = None


# Content label schemas
class ContentLabel(CamelSchema):
    id: uuid.UUID
    content_key: str
    stage: LabelStage
    content_source: ContentSource
    content_url: Optional[str] = None
    content_media_type: Optional[MediaType] = None
    title: Optional[str] = None
    author_name: Optional[str] = None
    author_url: Optional[str] = None
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    full_duration_in_ms: Optional[int] = None
    content_language_code: Optional[LanguageCode] = None
    target_language_codes: Optional[List[LanguageCode]] = None
    language_evidence: Optional[List[str]] = None
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    processed_at: Optional[datetime] = None


class ContentLabelRef(CamelSchema):
    content_label_id: uuid.UUID
    content_key: str
    stage: LabelStage
    existed: bool


# Policy schemas
class PolicyUpsert(CamelSchema):
    content_key: str = Field(..., min_length=3)
    policy_kind: PolicyKind
    content_url: Optional[str] = None
    label: Optional[str] = None
    note: Optional[str] = None


class Policy(CamelSchema):
    id: uuid.UUID
    content_key: str
    policy_kind: PolicyKind
    content_source: ContentSource
    content_url: Optional[str] = None
    label: Optional[str] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None


# Activity schemas
class ManualActivityCreate(CamelSchema):
    title: str = Field(..., min_length=1)
    duration_in_minutes: float = Field(..., gt=0)
    language_code: Optional[LanguageCode] = None
    description: Optional[str] = None
    occurred_at: Optional[datetime] = None
    content_categories: Optional[List[MediaType]] = None
    skill_categories: Optional[List[str]] = None


class LanguageActivity(CamelSchema):
    id: uuid.UUID
    content_key: Optional[str] = None
    content_source: Optional[ContentSource] = None
    content_media_type: Optional[MediaType] = None
    language_code: LanguageCode
    state: ActivityState
    title: Optional[str] = None
    description: Optional[str] = None
    external_url: Optional[str] = None
    duration_in_seconds: int
    occurred_at: datetime
    is_manually_tracked: bool
    awarded_experience: Optional[int] = None


class XpPoint(CamelSchema):
    day: date
    xp: int


class XpTimeseries(CamelSchema):
    points: List[XpPoint]
    total_xp: int
    days: int
    start_inclusive: date
    now: datetime
