# langlog_server/processing_service/db_session.py
from contextlib import contextmanager
from typing import Generator, Optional
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session as SQLAlchemySession

from langlog_server.processing_service.logic.settings import settings

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def configure_engine(engine: Engine) -> None:
    """Binds the session factory to an explicit engine (tests, one-off scripts)."""
    global _engine
    _engine = engine
    SessionLocal.configure(bind=engine)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        configure_engine(create_engine(
            settings.SQLALCHEMY_DATABASE_URL,
            pool_pre_ping=True,  # Enable connection health checking
            pool_recycle=3600
        ))
    return _engine


@contextmanager
def get_db_session() -> Generator[SQLAlchemySession, None, None]:
    """
    Provide a transactional scope around a series of operations.
    Commits the transaction if it succeeds, rolls back and RE-RAISES the
    exception if it fails.
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
        db.commit()
        logger.debug("Database session committed.")
    except Exception as e:
        db.rollback()
        logger.error(f"Database session rolled back due to error: {e}", exc_info=True)
        raise
    finally:
        db.close()
        logger.debug("Database session closed.")


def check_db_connection() -> bool:
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
            logger.info("Successfully connected to the database.")
            return True
    except Exception as e:
        logger.error(f"Failed to connect to the database: {e}", exc_info=True)
        return False


def create_all_tables() -> None:
    from langlog_server.processing_service.db_models import Base
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables ensured.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    if check_db_connection():
        create_all_tables()
    else:
        logger.error("Database connection check failed.")
