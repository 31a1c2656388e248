"""Password hashing, TOTP checks, JWT issue/verify and the current-user dependency."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import pyotp
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession

from poster_studio.config import get_settings
from poster_studio.db import get_db
from poster_studio.errors import Unauthorized
from poster_studio.models import User
from poster_studio.storage import DatabaseStorage

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

AUTH_FAILED_MESSAGE = "Authentication failed"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_totp(secret: str | None, code: str | None) -> bool:
    """Accounts without a secret need no code; accounts with one need a valid code."""

    if not secret:
        return True
    if not code:
        return False
    return pyotp.TOTP(secret).verify(code.strip(), valid_window=1)


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    auth = get_settings().auth
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=auth.jwt_expiry_minutes)
    )
    payload = {"sub": str(user_id), "exp": expire}
    return jwt.encode(payload, auth.jwt_secret, algorithm=auth.jwt_algorithm)


def decode_access_token(token: str) -> int:
    """Return the user id encoded in ``token`` or raise :class:`Unauthorized`."""

    auth = get_settings().auth
    try:
        payload = jwt.decode(token, auth.jwt_secret, algorithms=[auth.jwt_algorithm])
    except JWTError as exc:
        raise Unauthorized() from exc
    subject = payload.get("sub")
    try:
        return int(subject)
    except (TypeError, ValueError) as exc:
        raise Unauthorized() from exc


async def authenticate(
    storage: DatabaseStorage, identifier: str, password: str, totp_code: str | None = None
) -> User:
    """Check credentials; every failure reason yields the same error."""

    user = await storage.get_user_by_username(identifier) if identifier else None
    if user is None or not verify_password(password, user.password_hash):
        logger.info("login rejected", extra={"reason": "credentials"})
        raise Unauthorized(AUTH_FAILED_MESSAGE)
    if not verify_totp(user.totp_secret, totp_code):
        logger.info("login rejected", extra={"reason": "second_factor", "user_id": user.id})
        raise Unauthorized(AUTH_FAILED_MESSAGE)
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise Unauthorized()
    user_id = decode_access_token(credentials.credentials)
    user = await DatabaseStorage(db).get_user(user_id)
    if user is None:
        raise Unauthorized()
    return user


async def seed_admin(storage: DatabaseStorage) -> None:
    auth = get_settings().auth
    if not auth.seeds_admin:
        return
    if await storage.get_user_by_username(auth.admin_username or "") is not None:
        return
    await storage.create_user(
        username=auth.admin_username,
        password_hash=get_password_hash(auth.admin_password or ""),
        role="store_owner",
    )
    logger.info("Seeded admin user", extra={"username": auth.admin_username})


__all__ = [
    "AUTH_FAILED_MESSAGE",
    "authenticate",
    "create_access_token",
    "decode_access_token",
    "get_current_user",
    "get_password_hash",
    "seed_admin",
    "verify_password",
    "verify_totp",
]
