"""
Personal API tokens.

Tokens authenticate the mobile app and iOS Shortcuts against the weight
logging endpoint. The raw value is "fc_" + 64 hex chars and is returned only
once; the database keeps a sha256 digest and a short preview.
"""
from __future__ import annotations

from datetime import timedelta
from typing import List, Optional, Tuple
from uuid import UUID

import logging
from sqlalchemy.orm import Session

from core.exceptions import ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from core.security import api_token_preview, generate_api_token, hash_api_token
from core.time_utils import ensure_utc, utcnow
from models import ApiToken, User

logger = logging.getLogger(__name__)


def create_api_token(
    db: Session,
    *,
    user: User,
    name: str,
    expires_in_days: Optional[int] = None,
) -> Tuple[ApiToken, str]:
    """Returns (row, raw_token). The raw token is not recoverable afterwards."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Token name is required", field="name")
    if expires_in_days is not None and expires_in_days <= 0:
        raise ValidationError("expires_in_days must be a positive integer", field="expires_in_days")

    raw = generate_api_token()
    row = ApiToken(
        user_id=user.id,
        name=name,
        token_hash=hash_api_token(raw),
        token_preview=api_token_preview(raw),
        is_active=True,
        expires_at=(utcnow() + timedelta(days=expires_in_days)) if expires_in_days else None,
    )
    db.add(row)
    db.flush()
    logger.info("API token created", extra={"extra_fields": {"user_id": str(user.id), "token_id": str(row.id)}})
    return row, raw


def list_api_tokens(db: Session, *, user: User) -> List[ApiToken]:
    return (
        db.query(ApiToken)
        .filter(ApiToken.user_id == user.id)
        .order_by(ApiToken.created_at.desc())
        .all()
    )


def _owned_token(db: Session, *, user: User, token_id: UUID) -> ApiToken:
    row = db.query(ApiToken).filter(ApiToken.id == token_id).first()
    if not row:
        raise NotFoundError("Token", str(token_id))
    if row.user_id != user.id:
        raise ForbiddenError("You do not own this token")
    return row


def delete_api_token(db: Session, *, user: User, token_id: UUID) -> None:
    row = _owned_token(db, user=user, token_id=token_id)
    db.delete(row)
    db.flush()


def set_api_token_active(db: Session, *, user: User, token_id: UUID, is_active: bool) -> ApiToken:
    row = _owned_token(db, user=user, token_id=token_id)
    row.is_active = bool(is_active)
    db.flush()
    return row


def authenticate_api_token(db: Session, raw_token: str) -> User:
    """
    Resolve a raw bearer token to its user.

    Raises UnauthorizedError for unknown, inactive or expired tokens and
    stamps last_used_at on success.
    """
    row = (
        db.query(ApiToken)
        .filter(ApiToken.token_hash == hash_api_token(raw_token), ApiToken.is_active.is_(True))
        .first()
    )
    if not row:
        raise UnauthorizedError("Invalid or inactive API token")

    expires_at = ensure_utc(row.expires_at)
    if expires_at is not None and expires_at < utcnow():
        raise UnauthorizedError("API token has expired")

    user = db.query(User).filter(User.id == row.user_id).first()
    if not user:
        raise UnauthorizedError("Invalid or inactive API token")
    if user.is_blocked:
        raise ForbiddenError("Account is blocked")

    row.last_used_at = utcnow()
    db.flush()
    return user


def serialize_api_token(row: ApiToken) -> dict:
    return {
        "id": str(row.id),
        "name": row.name,
        "token_preview": row.token_preview,
        "is_active": bool(row.is_active),
        "expires_at": row.expires_at.isoformat() if row.expires_at else None,
        "last_used_at": row.last_used_at.isoformat() if row.last_used_at else None,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }
