import uuid
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session as SQLAlchemySession

from langlog_server.api_service import schemas
from langlog_server.api_service.api_v1.deps import get_current_user_id, get_db, http_error_from
from langlog_server.processing_service.db_models import PolicyKind
from langlog_server.processing_service.errors import LangLogError
from langlog_server.processing_service.logic.policies import delete_policy, list_policies, upsert_policy

router = APIRouter()


@router.get("", response_model=List[schemas.Policy])
def read_policies(
    policy_kind: Optional[PolicyKind] = Query(None, alias="policyKind", description="Only return this kind."),
    db: SQLAlchemySession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    return [schemas.Policy.model_validate(p) for p in list_policies(db, user_id, policy_kind)]


@router.post("", response_model=schemas.Policy)
def put_policy(
    policy_in: schemas.PolicyUpsert,
    db: SQLAlchemySession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """Creates or replaces the user's policy for one content key."""
    try:
        policy = upsert_policy(
            db,
            user_id=user_id,
            content_key=policy_in.content_key,
            policy_kind=policy_in.policy_kind,
            content_url=policy_in.content_url,
            label=policy_in.label,
            note=policy_in.note,
        )
    except (LangLogError, ValueError) as e:
        raise http_error_from(e)
    return schemas.Policy.model_validate(policy)


@router.delete("/{content_key}", status_code=status.HTTP_204_NO_CONTENT)
def remove_policy(
    content_key: str,
    db: SQLAlchemySession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    if not delete_policy(db, user_id, content_key):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Policy not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
