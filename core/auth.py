"""
Request authentication dependencies.

Three kinds of bearer credential reach the API: session JWTs from the web and
mobile apps, personal API tokens ("fc_...") from Shortcuts automations, and
the CRON_SECRET held by the scheduler.
"""
from typing import Iterable, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from core.database import get_db
from core.security import decode_access_token, is_api_token, verify_cron_secret
from models import User, ADMIN_ROLES

# auto_error=False so a missing header is a 401 rather than FastAPI's 403
bearer = HTTPBearer(auto_error=False)


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=message)


def resolve_session_user(token: str, db: Session) -> User:
    """Map a session JWT to an active user or raise."""
    claims = decode_access_token(token)
    if not claims:
        raise _unauthorized("Invalid authentication credentials")

    try:
        user_id = UUID(str(claims.get("sub")))
    except ValueError:
        raise _unauthorized("Invalid token subject")

    user = db.get(User, user_id)
    if user is None:
        raise _unauthorized("User not found")
    if user.is_blocked:
        raise _forbidden("Account is blocked")
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None:
        raise _unauthorized("Not authenticated")
    return resolve_session_user(credentials.credentials, db)


def get_current_user_or_api_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    """Session JWT or personal API token. Used by the weight and activity endpoints."""
    if credentials is None:
        raise _unauthorized("Missing or invalid Authorization header")

    token = credentials.credentials
    if not is_api_token(token):
        return resolve_session_user(token, db)

    from services.api_token_service import authenticate_api_token
    return authenticate_api_token(db, token)


def roles_required(roles: Iterable[str]):
    allowed = frozenset(roles)

    def check(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            raise _forbidden("Admin access required")
        return current_user

    return check


require_admin = roles_required(ADMIN_ROLES)


def require_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> None:
    if credentials is None or not verify_cron_secret(credentials.credentials):
        raise _unauthorized("Unauthorized")


def require_cron_or_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """
    Manual job triggers: the cron secret, or an admin signed in to the dashboard.

    Returns None for the scheduler, the admin user otherwise.
    """
    if credentials is None:
        raise _unauthorized("Unauthorized")
    if verify_cron_secret(credentials.credentials):
        return None

    user = resolve_session_user(credentials.credentials, db)
    if user.role not in ADMIN_ROLES:
        raise _forbidden("Admin access required")
    return user
