# langlog_server/processing_service/logic/policies.py
"""
Per-user allow/block policies keyed by content key.

Only `block` is enforced (by the event recorder). `allow` rows are advisory:
they are stored and listed but never bypass labeling or language matching.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.processing_service.db_models import ContentSource, PolicyKind, UserContentLabelPolicy
from langlog_server.processing_service.logic.users import get_user
from langlog_server.shared.utils import split_content_key

logger = logging.getLogger(__name__)


def list_policies(db: SQLAlchemySession, user_id: uuid.UUID,
                  policy_kind: Optional[PolicyKind] = None) -> List[UserContentLabelPolicy]:
    query = db.query(UserContentLabelPolicy).filter(UserContentLabelPolicy.user_id == user_id)
    if policy_kind is not None:
        query = query.filter(UserContentLabelPolicy.policy_kind == policy_kind)
    return query.order_by(UserContentLabelPolicy.content_key).all()


def upsert_policy(db: SQLAlchemySession, user_id: uuid.UUID, content_key: str, policy_kind: PolicyKind,
                  content_url: Optional[str] = None, label: Optional[str] = None,
                  note: Optional[str] = None) -> UserContentLabelPolicy:
    get_user(db, user_id)
    prefix, _ = split_content_key(content_key)
    source = ContentSource(prefix)

    policy = (
        db.query(UserContentLabelPolicy)
        .filter(UserContentLabelPolicy.user_id == user_id, UserContentLabelPolicy.content_key == content_key)
        .one_or_none()
    )
    if policy is None:
        policy = UserContentLabelPolicy(id=uuid.uuid4(), user_id=user_id, content_key=content_key,
                                        content_source=source, policy_kind=policy_kind)
        db.add(policy)
    policy.policy_kind = policy_kind
    policy.content_url = content_url if content_url is not None else policy.content_url
    policy.label = label if label is not None else policy.label
    policy.note = note if note is not None else policy.note
    db.flush()
    logger.info(f"User {user_id} set {policy_kind.value} policy for {content_key}")
    return policy


def delete_policy(db: SQLAlchemySession, user_id: uuid.UUID, content_key: str) -> bool:
    deleted = (
        db.query(UserContentLabelPolicy)
        .filter(UserContentLabelPolicy.user_id == user_id, UserContentLabelPolicy.content_key == content_key)
        .delete(synchronize_session=False)
    )
    if deleted:
        logger.info(f"User {user_id} removed policy for {content_key}")
    return bool(deleted)
