"""
Email/password accounts: register, login, me.
"""
import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import APIException, ForbiddenError, ValidationError
from core.security import ACCESS_TOKEN_EXPIRE_MINUTES, create_access_token, get_password_hash, verify_password
from models import User
from schemas import TokenResponse, UserLogin, UserRegister, UserResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])

MIN_PASSWORD_LENGTH = 8


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def find_user_by_email(db: Session, email: str):
    return db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()


def issue_session(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "email": user.email, "role": user.role})
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_in": ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        "user": UserResponse.model_validate(user),
    }


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(body: UserRegister, db: Session = Depends(get_db)):
    """Create an account and sign it in. display_name falls back to the email's local part."""
    email = normalize_email(body.email)
    if find_user_by_email(db, email) is not None:
        raise ValidationError("Email already registered", field="email")
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password")

    user = User(
        email=email,
        password_hash=get_password_hash(body.password),
        display_name=body.display_name or email.split("@")[0],
        first_name=body.first_name,
        last_name=body.last_name,
        role="user",
    )
    db.add(user)
    db.flush()

    logger.info("User registered", extra={"extra_fields": {"user_id": str(user.id)}})
    return issue_session(user)


@router.post("/login", response_model=TokenResponse)
def login(body: UserLogin, db: Session = Depends(get_db)):
    user = find_user_by_email(db, body.email)
    if user is None or not verify_password(body.password, user.password_hash):
        raise APIException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            error_code="INVALID_CREDENTIALS",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if user.is_blocked:
        raise ForbiddenError("Account is blocked")
    return issue_session(user)


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user
