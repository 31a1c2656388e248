from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from poster_studio.db import get_db
from poster_studio.errors import NotFound
from poster_studio.models import User
from poster_studio.schemas import BackgroundOut, GenerateBackgroundRequest
from poster_studio.security import get_current_user
from poster_studio.services import backgrounds as background_service
from poster_studio.services.worker import GenerationWorker, get_worker
from poster_studio.storage import DatabaseStorage

router = APIRouter(prefix="/backgrounds", tags=["backgrounds"])


@router.get("", response_model=List[BackgroundOut])
async def list_backgrounds(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> List[BackgroundOut]:
    rows = await DatabaseStorage(db).list_backgrounds(user.id)
    return [BackgroundOut.model_validate(row) for row in rows]


@router.get("/{background_id}", response_model=BackgroundOut)
async def get_background(
    background_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BackgroundOut:
    background = await DatabaseStorage(db).get_background(background_id, owner_id=user.id)
    if background is None:
        raise NotFound("Background not found")
    return BackgroundOut.model_validate(background)


@router.post("/generate", response_model=BackgroundOut, status_code=status.HTTP_202_ACCEPTED)
async def generate_background(
    req: GenerateBackgroundRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    worker: GenerationWorker = Depends(get_worker),
) -> BackgroundOut:
    background = await background_service.start_generation(
        DatabaseStorage(db), worker, user, req.theme_text
    )
    return BackgroundOut.model_validate(background)


@router.post("/upload", response_model=BackgroundOut, status_code=status.HTTP_201_CREATED)
async def upload_background(
    file: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BackgroundOut:
    background = await background_service.upload_background(DatabaseStorage(db), user, file)
    return BackgroundOut.model_validate(background)
