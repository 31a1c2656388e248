from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from poster_studio.db import get_db
from poster_studio.errors import ValidationFailed
from poster_studio.models import User
from poster_studio.schemas import (
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    TokenResponse,
    UserPublic,
)
from poster_studio.security import (
    authenticate,
    create_access_token,
    get_current_user,
    get_password_hash,
)
from poster_studio.storage import DatabaseStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(req: LoginRequest, db: AsyncSession = Depends(get_db)) -> TokenResponse:
    user = await authenticate(DatabaseStorage(db), req.identifier, req.password, req.totp_code)
    logger.info("login ok", extra={"user_id": user.id})
    return TokenResponse(
        access_token=create_access_token(user.id),
        user=UserPublic.model_validate(user),
    )


@router.post("/register", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def register(req: RegisterRequest, db: AsyncSession = Depends(get_db)) -> UserPublic:
    storage = DatabaseStorage(db)
    if await storage.get_user_by_username(req.username) is not None:
        raise ValidationFailed("Username already registered", field="username")
    user = await storage.create_user(
        username=req.username,
        password_hash=get_password_hash(req.password),
        role="store_owner",
    )
    logger.info("user registered", extra={"user_id": user.id})
    return UserPublic.model_validate(user)


@router.get("/me", response_model=UserPublic)
async def me(user: User = Depends(get_current_user)) -> UserPublic:
    return UserPublic.model_validate(user)


@router.post("/logout", response_model=MessageResponse)
async def logout(user: User = Depends(get_current_user)) -> MessageResponse:
    # tokens are stateless; the client drops its copy
    logger.info("logout", extra={"user_id": user.id})
    return MessageResponse(message="Logged out")
