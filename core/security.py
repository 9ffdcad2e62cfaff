"""
Credential primitives.

- bcrypt password hashes
- HS256 session JWTs signed with SECRET_KEY
- personal API tokens: "fc_" + 64 hex chars, shown once, stored as a sha256 digest
- constant-time CRON_SECRET check
"""
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import bcrypt
from jose import JWTError, jwt

from core.config import settings

JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 30

API_TOKEN_PREFIX = "fc_"


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    lifetime = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {**data, "exp": datetime.now(timezone.utc) + lifetime}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Claims of a valid, unexpired token, else None."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None


def generate_api_token() -> str:
    return API_TOKEN_PREFIX + secrets.token_hex(32)


def hash_api_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def api_token_preview(token: str) -> str:
    return f"{token[:4]}...{token[-4:]}"


def is_api_token(token: str) -> bool:
    return token.startswith(API_TOKEN_PREFIX)


def verify_cron_secret(token: Optional[str]) -> bool:
    """False when no CRON_SECRET is configured."""
    if not token or not settings.CRON_SECRET:
        return False
    return hmac.compare_digest(token, settings.CRON_SECRET)
