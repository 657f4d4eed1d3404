# langlog_server/processing_service/models.py

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from langlog_server.processing_service.db_models import (
    LabelStage, LanguageCode, MediaType
)

log = logging.getLogger(__name__)


# --- Event recording ---
class RecordEventResult(BaseModel):
    """Outcome of a single recorded tick. A rejection is a normal result, not an error."""
    saved: bool
    reason: Optional[str] = None  # "blocked_by_policy" | "not_target_language"
    content_label_id: Optional[uuid.UUID] = None
    is_waiting_on_labeling: Optional[bool] = None


# --- Content labels ---
class ContentLabelRef(BaseModel):
    content_label_id: uuid.UUID
    content_key: str
    stage: LabelStage
    existed: bool


class ContentLabelPatch(BaseModel):
    """Enrichment fields a label processor wants applied on success."""
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


class LabelProcessorResult(BaseModel):
    success: bool
    patch: Optional[ContentLabelPatch] = None
    error: Optional[str] = None


class LanguageDetectionResult(BaseModel):
    success: bool
    dominant_language: Optional[LanguageCode] = None
    target_languages: List[LanguageCode] = Field(default_factory=list)
    reason: str = ""
    error: Optional[str] = None

    @property
    def content_language(self) -> Optional[LanguageCode]:
        """The dominant language when it is among the targets, else the first target."""
        if not self.success or not self.target_languages:
            return None
        if self.dominant_language in self.target_languages:
            return self.dominant_language
        return self.target_languages[0]


class RawLanguageDetection(BaseModel):
    """The JSON object the LLM is asked to return."""
    target_languages: List[str] = Field(default_factory=list)
    dominant_language: Optional[str] = None
    reason: str = ""

    @field_validator('target_languages', mode='before')
    @classmethod
    def coerce_single_code(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


class FanOutResult(BaseModel):
    released_events: int = 0
    deleted_events: int = 0
    updated_activities: int = 0
    deleted_activities: int = 0


# --- Session reconstruction ---
class TranslateBatchResult(BaseModel):
    processed: int = 0
    created_activities: int = Field(default=0, serialization_alias="createdActivities")
    completed_activities: int = Field(default=0, serialization_alias="completedActivities")
    failed_groups: int = Field(default=0, serialization_alias="failedGroups")

    def merge(self, other: "TranslateBatchResult") -> None:
        self.processed += other.processed
        self.created_activities += other.created_activities
        self.completed_activities += other.completed_activities
        self.failed_groups += other.failed_groups


# --- Experience ---
class ApplyExperienceResult(BaseModel):
    previous_total_experience: int
    new_total_experience: int
    previous_level: int
    new_level: int
    levels_gained: int
    remainder_towards_next_level: int
    next_level_cost: int
    last_level_cost: int


class AddExperienceResult(BaseModel):
    user_target_language_id: uuid.UUID
    ledger_entry_id: uuid.UUID
    base_experience: int
    delta_experience: int
    streak_multiplier: Optional[float] = None
    result: ApplyExperienceResult


# --- Streaks ---
class StreakUpdateResult(BaseModel):
    current_streak: int
    longest_streak: int
    did_increment: bool


class StreakNudgeResult(BaseModel):
    used_vacation: bool = False
    reset: bool = False
    covered_day_start: Optional[datetime] = None
