from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Request, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from poster_studio.db import get_db
from poster_studio.errors import ValidationFailed
from poster_studio.models import User
from poster_studio.schemas import (
    ExportRequest,
    ExportResponse,
    GenerateBackgroundRequest,
    PosterCreate,
    PosterOut,
    PosterUpdate,
)
from poster_studio.security import get_current_user
from poster_studio.services import export as export_service
from poster_studio.services import posters as poster_service
from poster_studio.services.worker import GenerationWorker, get_worker
from poster_studio.storage import DatabaseStorage

router = APIRouter(prefix="/posters", tags=["posters"])


def _first_error(exc: ValidationError) -> ValidationFailed:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    message = first.get("msg") or "Invalid poster payload"
    return ValidationFailed(f"{field}: {message}" if field else message, field=field)


@router.get("", response_model=List[PosterOut])
async def list_posters(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> List[PosterOut]:
    rows = await DatabaseStorage(db).list_posters(user.id)
    return [PosterOut.model_validate(row) for row in rows]


@router.post("", response_model=PosterOut, status_code=status.HTTP_201_CREATED)
async def create_poster(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PosterOut:
    """Multipart bodies assemble a finished poster; JSON bodies create a draft."""

    storage = DatabaseStorage(db)
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith("multipart/form-data"):
        async with request.form() as form:
            poster = await poster_service.create_assembled_poster(storage, user, form)
        return PosterOut.model_validate(poster)

    try:
        payload = PosterCreate.model_validate(await request.json())
    except ValidationError as exc:
        raise _first_error(exc) from exc
    except ValueError as exc:
        raise ValidationFailed("Request body must be JSON or multipart/form-data") from exc
    poster = await poster_service.create_draft_poster(storage, user, payload)
    return PosterOut.model_validate(poster)


@router.get("/{poster_id}", response_model=PosterOut)
async def get_poster(
    poster_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PosterOut:
    poster = await poster_service.get_owned_poster(DatabaseStorage(db), user, poster_id)
    return PosterOut.model_validate(poster)


@router.patch("/{poster_id}", response_model=PosterOut)
async def patch_poster(
    poster_id: int,
    req: PosterUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PosterOut:
    poster = await poster_service.update_poster(DatabaseStorage(db), user, poster_id, req)
    return PosterOut.model_validate(poster)


@router.post(
    "/{poster_id}/generate-background",
    response_model=PosterOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def generate_poster_background(
    poster_id: int,
    req: GenerateBackgroundRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    worker: GenerationWorker = Depends(get_worker),
) -> PosterOut:
    poster = await poster_service.start_poster_background(
        DatabaseStorage(db), worker, user, poster_id, req.theme_text
    )
    return PosterOut.model_validate(poster)


@router.post("/{poster_id}/export", response_model=ExportResponse)
async def export_poster(
    poster_id: int,
    req: Optional[ExportRequest] = Body(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ExportResponse:
    return await export_service.export_poster(
        DatabaseStorage(db), user, poster_id, req or ExportRequest()
    )
