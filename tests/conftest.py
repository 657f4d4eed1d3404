import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from langlog_server.processing_service.db_models import (
    ActivityType, Base, ContentLabel, ContentSource, LabelStage, LanguageCode, MediaType, RawContentEvent, User
)
from langlog_server.processing_service.db_session import configure_engine
from langlog_server.processing_service.logic.job_queue import InMemoryJobQueue
from langlog_server.processing_service.logic.users import add_target_language

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    configure_engine(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def job_queue():
    return InMemoryJobQueue()


@pytest.fixture
def make_user(db):
    def _make_user(language_code=LanguageCode.JA, streak=0, vacations=0):
        user = User(id=uuid.uuid4(), display_name="learner", current_streak=streak, longest_streak=streak,
                    streak_vacations=vacations)
        db.add(user)
        db.flush()
        target = add_target_language(db, user, language_code) if language_code else None
        db.flush()
        return user, target
    return _make_user


@pytest.fixture
def user(make_user):
    return make_user()[0]


@pytest.fixture
def make_label(db):
    def _make_label(content_key, stage=LabelStage.COMPLETED, language=LanguageCode.JA, source=None, title=None):
        source = source or ContentSource(content_key.split(":", 1)[0])
        label = ContentLabel(
            id=uuid.uuid4(),
            content_key=content_key,
            stage=stage,
            content_source=source,
            content_url=f"https://example.com/{content_key}",
            content_media_type=MediaType.TEXT if source == ContentSource.WEBSITE else MediaType.VIDEO,
            title=title or f"Title of {content_key}",
            content_language_code=language if source != ContentSource.WEBSITE else None,
            attempts=1 if stage != LabelStage.QUEUED else 0,
            created_at=T0 - timedelta(days=1),
            updated_at=T0 - timedelta(days=1),
        )
        db.add(label)
        db.flush()
        return label
    return _make_label


@pytest.fixture
def add_events(db):
    def _add_events(user, content_key, ticks, waiting=False):
        """`ticks` is a list of (activity_type, seconds after T0)."""
        source = ContentSource(content_key.split(":", 1)[0])
        events = []
        for activity_type, seconds in ticks:
            ev = RawContentEvent(
                id=uuid.uuid4(),
                user_id=user.id,
                content_key=content_key,
                content_source=source,
                activity_type=ActivityType(activity_type),
                occurred_at=T0 + timedelta(seconds=seconds),
                is_waiting_on_labeling=waiting,
            )
            db.add(ev)
            events.append(ev)
        db.flush()
        return events
    return _add_events
