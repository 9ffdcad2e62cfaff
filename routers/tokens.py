"""
Personal API token management.

Session-authenticated: a user creates tokens here and pastes the raw value
into the mobile app or an iOS Shortcut.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from uuid import UUID

from core.auth import get_current_user
from core.database import get_db
from models import User
from schemas import ApiTokenCreate, ApiTokenUpdate
from services.api_token_service import (
    create_api_token,
    delete_api_token,
    list_api_tokens,
    serialize_api_token,
    set_api_token_active,
)

router = APIRouter(prefix="/v1/tokens", tags=["tokens"])


@router.post("", status_code=status.HTTP_201_CREATED)
def create_token(
    body: ApiTokenCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """The raw token is only ever included in this response."""
    row, raw = create_api_token(db, user=current_user, name=body.name, expires_in_days=body.expires_in_days)
    return {
        **serialize_api_token(row),
        "token": raw,
        "message": "Store this token now. It will not be shown again.",
    }


@router.get("")
def list_tokens(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"tokens": [serialize_api_token(t) for t in list_api_tokens(db, user=current_user)]}


@router.patch("/{token_id}")
def update_token(
    token_id: UUID,
    body: ApiTokenUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    row = set_api_token_active(db, user=current_user, token_id=token_id, is_active=body.is_active)
    return serialize_api_token(row)


@router.delete("/{token_id}")
def delete_token(
    token_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    delete_api_token(db, user=current_user, token_id=token_id)
    return {"success": True}
