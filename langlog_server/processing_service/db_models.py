# langlog_server/processing_service/db_models.py
import uuid
import enum
from datetime import timezone
from sqlalchemy import (
    Column, DateTime, ForeignKey, Text, String, Integer, BigInteger, Boolean, Float,
    Enum as SQLAlchemyEnum, JSON, Index, UniqueConstraint, Uuid, TypeDecorator
)
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.sql import func

from langlog_server.processing_service.errors import InvalidStageTransitionError

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, also on back-ends that drop tzinfo (SQLite)."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _enum_type(enum_cls, name):
    return SQLAlchemyEnum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


class LanguageCode(str, enum.Enum):
    EN = 'en'
    JA = 'ja'
    ES = 'es'
    FR = 'fr'
    DE = 'de'
    KO = 'ko'
    IT = 'it'
    ZH = 'zh'
    HI = 'hi'
    RU = 'ru'
    AR = 'ar'
    PT = 'pt'
    TR = 'tr'


class ContentSource(str, enum.Enum):
    YOUTUBE = 'youtube'
    SPOTIFY = 'spotify'
    ANKI = 'anki'
    MANUAL = 'manual'
    WEBSITE = 'website'

    @property
    def is_language_agnostic(self) -> bool:
        # Websites are tracked regardless of language and never get a language code
        return self is ContentSource.WEBSITE


class MediaType(str, enum.Enum):
    AUDIO = 'audio'
    VIDEO = 'video'
    TEXT = 'text'


class LabelStage(str, enum.Enum):
    QUEUED = 'queued'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'


# queued -> failed covers a label whose source has no processor
ALLOWED_STAGE_TRANSITIONS = {
    LabelStage.QUEUED: {LabelStage.PROCESSING, LabelStage.FAILED},
    LabelStage.PROCESSING: {LabelStage.COMPLETED, LabelStage.FAILED},
    LabelStage.FAILED: {LabelStage.PROCESSING},
    LabelStage.COMPLETED: set(),
}


class ActivityType(str, enum.Enum):
    START = 'start'
    HEARTBEAT = 'heartbeat'
    PAUSE = 'pause'
    END = 'end'

    @property
    def opens_session(self) -> bool:
        return self in (ActivityType.START, ActivityType.HEARTBEAT)

    @property
    def closes_session(self) -> bool:
        return self in (ActivityType.PAUSE, ActivityType.END)


class ActivityState(str, enum.Enum):
    IN_PROGRESS = 'in-progress'
    COMPLETED = 'completed'


class PolicyKind(str, enum.Enum):
    ALLOW = 'allow'
    BLOCK = 'block'


class User(Base):
    __tablename__ = 'users'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    display_name = Column(Text, nullable=True)
    # Not a foreign key: user_target_languages already points back at users
    current_target_language_id = Column(Uuid, nullable=True)
    has_pending_content_activities = Column(Boolean, nullable=False, default=False, index=True)

    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    last_streak_credit_at = Column(UTCDateTime, nullable=True)
    streak_vacations = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)

    target_languages = relationship("UserTargetLanguage", back_populates="user", cascade="all, delete-orphan")


class UserTargetLanguage(Base):
    __tablename__ = 'user_target_languages'
    __table_args__ = (
        UniqueConstraint('user_id', 'language_code', name='uq_user_target_language'),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete="CASCADE"), nullable=False, index=True)
    language_code = Column(_enum_type(LanguageCode, 'languagecode'), nullable=False)
    total_minutes_learning = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="target_languages")


class RawContentEvent(Base):
    __tablename__ = 'raw_content_events'
    __table_args__ = (
        Index('ix_raw_content_events_user_key_time', 'user_id', 'content_key', 'occurred_at'),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete="CASCADE"), nullable=False, index=True)
    content_key = Column(Text, nullable=False, index=True)
    content_source = Column(_enum_type(ContentSource, 'contentsource'), nullable=False)
    activity_type = Column(_enum_type(ActivityType, 'activitytype'), nullable=False)
    occurred_at = Column(UTCDateTime, nullable=False, index=True)
    is_waiting_on_labeling = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)


class ContentLabel(Base):
    __tablename__ = 'content_labels'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    content_key = Column(Text, unique=True, nullable=False)
    stage = Column(_enum_type(LabelStage, 'labelstage'), nullable=False, default=LabelStage.QUEUED)
    content_source = Column(_enum_type(ContentSource, 'contentsource'), nullable=False)
    content_url = Column(Text)
    content_media_type = Column(_enum_type(MediaType, 'mediatype'), nullable=True)
    title = Column(Text)
    author_name = Column(Text)
    author_url = Column(Text)
    description = Column(Text)
    thumbnail_url = Column(Text)
    full_duration_in_ms = Column(BigInteger)
    content_language_code = Column(_enum_type(LanguageCode, 'languagecode'), nullable=True)
    target_language_codes = Column(JSON, nullable=True)
    language_evidence = Column(JSON, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)
    processed_at = Column(UTCDateTime, nullable=True)

    @property
    def is_language_agnostic(self) -> bool:
        return self.content_source.is_language_agnostic

    @property
    def is_ready(self) -> bool:
        """Completed, and carrying a language unless the source is language-agnostic."""
        if self.stage != LabelStage.COMPLETED:
            return False
        return self.is_language_agnostic or self.content_language_code is not None

    def transition_to(self, stage: LabelStage, now) -> None:
        current = self.stage or LabelStage.QUEUED
        if stage not in ALLOWED_STAGE_TRANSITIONS[current]:
            raise InvalidStageTransitionError(self.content_key, current, stage)
        self.stage = stage
        self.updated_at = now
        if stage == LabelStage.PROCESSING:
            self.attempts = (self.attempts or 0) + 1
        elif stage == LabelStage.COMPLETED:
            self.processed_at = now
            self.last_error = None


class UserContentLabelPolicy(Base):
    __tablename__ = 'user_content_label_policies'
    __table_args__ = (
        UniqueConstraint('user_id', 'content_key', name='uq_policy_user_content_key'),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete="CASCADE"), nullable=False, index=True)
    content_key = Column(Text, nullable=False)
    policy_kind = Column(_enum_type(PolicyKind, 'policykind'), nullable=False)
    content_source = Column(_enum_type(ContentSource, 'contentsource'), nullable=False)
    content_url = Column(Text)
    label = Column(Text)
    note = Column(Text)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)


class LanguageActivity(Base):
    __tablename__ = 'language_activities'
    __table_args__ = (
        Index('ix_language_activities_user_state_key', 'user_id', 'state', 'content_key'),
        # At most one in-progress accumulator per (user, content key)
        Index(
            'uq_language_activities_in_progress', 'user_id', 'content_key', unique=True,
            postgresql_where=Column('state') == ActivityState.IN_PROGRESS.value,
            sqlite_where=Column('state') == ActivityState.IN_PROGRESS.value,
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete="CASCADE"), nullable=False, index=True)
    user_target_language_id = Column(Uuid, ForeignKey('user_target_languages.id', ondelete="CASCADE"), nullable=False)
    content_key = Column(Text, nullable=True)
    content_source = Column(_enum_type(ContentSource, 'contentsource'), nullable=True)
    content_media_type = Column(_enum_type(MediaType, 'mediatype'), nullable=True)
    language_code = Column(_enum_type(LanguageCode, 'languagecode'), nullable=False)
    state = Column(_enum_type(ActivityState, 'activitystate'), nullable=False)
    title = Column(Text)
    description = Column(Text)
    external_url = Column(Text)
    duration_in_seconds = Column(Integer, nullable=False, default=0)
    occurred_at = Column(UTCDateTime, nullable=False, index=True)
    is_manually_tracked = Column(Boolean, nullable=False, default=False)
    awarded_experience = Column(Integer, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False)


class ExperienceLedgerEntry(Base):
    __tablename__ = 'experience_ledger_entries'
    __table_args__ = (
        Index('ix_experience_ledger_target_language_created', 'user_target_language_id', 'created_at'),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # Monotonic insertion order; created_at alone can tie within one transaction
    sequence = Column(BigInteger, nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete="CASCADE"), nullable=False, index=True)
    user_target_language_id = Column(Uuid, ForeignKey('user_target_languages.id', ondelete="CASCADE"), nullable=False)
    language_activity_id = Column(Uuid, ForeignKey('language_activities.id', ondelete="SET NULL"), nullable=True, index=True)
    base_experience = Column(Integer, nullable=False)
    delta_experience = Column(Integer, nullable=False)
    running_total_after = Column(Integer, nullable=False)
    streak_multiplier = Column(Float, nullable=True)
    previous_level = Column(Integer, nullable=False)
    new_level = Column(Integer, nullable=False)
    levels_gained = Column(Integer, nullable=False)
    remainder_towards_next_level = Column(Integer, nullable=False)
    next_level_cost = Column(Integer, nullable=False)
    last_level_cost = Column(Integer, nullable=False)
    note = Column(String(64), nullable=True)
    occurred_at = Column(UTCDateTime, nullable=False)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)


class PendingContentWork(Base):
    """One row per (user, content key) with events the session reconstructor has not consumed yet."""
    __tablename__ = 'pending_content_work'
    __table_args__ = (
        UniqueConstraint('user_id', 'content_key', name='uq_pending_work_user_content_key'),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete="CASCADE"), nullable=False, index=True)
    content_key = Column(Text, nullable=False)
    first_queued_at = Column(UTCDateTime, nullable=False)
    last_event_at = Column(UTCDateTime, nullable=False)
    # Set by each translate pass that leaves events behind; never-translated items sort first
    last_translated_at = Column(UTCDateTime, nullable=True)


class StreakDay(Base):
    __tablename__ = 'streak_days'
    __table_args__ = (
        UniqueConstraint('user_id', 'day_start', name='uq_streak_day_user_day'),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete="CASCADE"), nullable=False, index=True)
    day_start = Column(UTCDateTime, nullable=False)
    streak_length = Column(Integer, nullable=False, default=0)
    xp_gained = Column(Integer, nullable=False, default=0)
    credited = Column(Boolean, nullable=False, default=True)
    used_vacation = Column(Boolean, nullable=False, default=False)
