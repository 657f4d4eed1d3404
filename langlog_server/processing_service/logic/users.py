# langlog_server/processing_service/logic/users.py
import logging
import uuid
from typing import Optional, Tuple

from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.processing_service.db_models import LanguageCode, User, UserTargetLanguage
from langlog_server.processing_service.errors import (
    TargetLanguageNotConfiguredError, UserNotFoundError
)

logger = logging.getLogger(__name__)


def get_user(db: SQLAlchemySession, user_id: uuid.UUID) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    return user


def get_current_target_language(db: SQLAlchemySession, user: User) -> Optional[UserTargetLanguage]:
    if user.current_target_language_id is None:
        return None
    target = db.get(UserTargetLanguage, user.current_target_language_id)
    if target is None or target.user_id != user.id:
        logger.warning(f"User {user.id} points at missing target language {user.current_target_language_id}")
        return None
    return target


def require_current_target_language(db: SQLAlchemySession, user_id: uuid.UUID) -> Tuple[User, UserTargetLanguage]:
    user = get_user(db, user_id)
    target = get_current_target_language(db, user)
    if target is None:
        raise TargetLanguageNotConfiguredError(user_id)
    return user, target


def get_target_language_by_code(db: SQLAlchemySession, user_id: uuid.UUID,
                                language_code: LanguageCode) -> Optional[UserTargetLanguage]:
    return (
        db.query(UserTargetLanguage)
        .filter(UserTargetLanguage.user_id == user_id, UserTargetLanguage.language_code == language_code)
        .one_or_none()
    )


def add_target_language(db: SQLAlchemySession, user: User, language_code: LanguageCode,
                        make_current: bool = True) -> UserTargetLanguage:
    target = get_target_language_by_code(db, user.id, language_code)
    if target is None:
        target = UserTargetLanguage(id=uuid.uuid4(), user_id=user.id, language_code=language_code)
        db.add(target)
        db.flush()
        logger.info(f"Added target language {language_code.value} for user {user.id}")
    if make_current:
        user.current_target_language_id = target.id
    return target
