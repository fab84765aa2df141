"""
Authentication helpers: password hashing, signed access tokens and the
FastAPI dependencies that resolve the current user and enforce roles.

Tokens are HS256 JWTs carrying the user id in `sub`. A token whose user has
been deleted no longer authenticates.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, Header, HTTPException, status
from jose import JWTError, jwt
from passlib.context import CryptContext

from messconnect.config import Settings, get_settings
from messconnect.dependencies import get_kv_store
from messconnect.entities import UserEntity
from messconnect.kv import KeyValueStore

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
BEARER_PREFIX = "Bearer "

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(raw_password: str) -> str:
    return pwd_context.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(raw_password, hashed_password)
    except ValueError:
        # Stored value is not a recognised hash.
        return False


def create_access_token(
    user: Dict[str, Any], settings: Optional[Settings] = None
) -> str:
    settings = settings or get_settings()
    expire_at = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(
        minutes=settings.jwt_expire_minutes
    )
    claims = {"sub": user["id"], "role": user["role"], "exp": expire_at}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=ALGORITHM)


def decode_token(token: str, settings: Optional[Settings] = None) -> Optional[Dict[str, Any]]:
    """Return the claims of a valid token, None if invalid or expired."""
    settings = settings or get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None


def get_optional_user(
    authorization: Optional[str] = Header(default=None),
    store: KeyValueStore = Depends(get_kv_store),
    settings: Settings = Depends(get_settings),
) -> Optional[dict]:
    """Load the user named by the bearer token; None when unauthenticated."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    claims = decode_token(authorization[len(BEARER_PREFIX):].strip(), settings)
    if not claims or not claims.get("sub"):
        return None
    return UserEntity(store, claims["sub"]).get_state_or_none()


def require_roles(*roles: str) -> Callable[..., dict]:
    """Dependency factory admitting only users whose role is in `roles`."""

    def dependency(user: Optional[dict] = Depends(get_optional_user)) -> dict:
        if user is None or user.get("role") not in roles:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
            )
        return user

    return dependency


require_user = require_roles("student", "manager", "admin")
require_student = require_roles("student")
require_manager = require_roles("manager")
require_staff = require_roles("manager", "admin")
