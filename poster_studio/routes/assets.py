from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from poster_studio.db import get_db
from poster_studio.errors import NotFound, ValidationFailed
from poster_studio.models import User
from poster_studio.schemas import AssetOut, AssetUrl
from poster_studio.security import get_current_user
from poster_studio.services import asset_store
from poster_studio.storage import DatabaseStorage

router = APIRouter(prefix="/assets", tags=["assets"])

UPLOADABLE_KINDS = {"logo", "product"}


@router.get("/{asset_id}/url", response_model=AssetUrl)
async def asset_url(
    asset_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AssetUrl:
    asset = await DatabaseStorage(db).get_asset(asset_id, owner_id=user.id)
    if asset is None:
        raise NotFound("Asset not found")
    return AssetUrl(url=asset_store.resolve_url(asset.url, asset.key))


@router.post("/upload", response_model=AssetOut, status_code=status.HTTP_201_CREATED)
async def upload_asset(
    file: Optional[UploadFile] = File(None),
    kind: str = Form("product"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AssetOut:
    if kind not in UPLOADABLE_KINDS:
        raise ValidationFailed(f"kind must be one of {sorted(UPLOADABLE_KINDS)}", field="kind")
    if file is None:
        raise ValidationFailed("file is required", field="file")
    asset = await asset_store.persist_upload(DatabaseStorage(db), user.id, file, kind=kind)
    return AssetOut.model_validate(asset)
