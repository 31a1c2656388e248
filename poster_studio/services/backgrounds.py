"""Background generation and direct upload."""

from __future__ import annotations

import asyncio
import logging

from fastapi import UploadFile

from poster_studio.config import get_settings
from poster_studio.errors import ValidationFailed
from poster_studio.models import Background, BackgroundStatus, User
from poster_studio.services import asset_store
from poster_studio.services.worker import GenerationJob, GenerationWorker
from poster_studio.storage import Storage

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = (
    "A professional marketing poster background for: {theme}. "
    "Minimalist, clean, suitable for overlaying text."
)


def validate_theme_text(theme_text: str | None) -> str:
    theme = (theme_text or "").strip()
    minimum = get_settings().generation.min_theme_length
    if len(theme) < minimum:
        raise ValidationFailed(
            f"theme_text must be at least {minimum} characters", field="theme_text"
        )
    return theme


def build_background_prompt(theme: str) -> str:
    return PROMPT_TEMPLATE.format(theme=theme.strip())


async def start_generation(
    storage: Storage, worker: GenerationWorker, user: User, theme_text: str | None
) -> Background:
    """Create a background row and hand it to the worker; never waits on the image API."""

    theme = validate_theme_text(theme_text)
    background = await storage.create_background(
        user.id, BackgroundStatus.QUEUED, theme_text=theme
    )
    background = await storage.set_background_status(background, BackgroundStatus.GENERATING)
    job = GenerationJob(
        kind="background",
        record_id=background.id,
        user_id=user.id,
        prompt=build_background_prompt(theme),
        theme_text=theme,
    )
    try:
        worker.submit(job)
    except asyncio.QueueFull:
        logger.warning("generation queue full", extra={"background_id": background.id})
        background = await storage.set_background_status(
            background, BackgroundStatus.FAILED, error="Generation queue is full, try again later"
        )
    return background


async def upload_background(storage: Storage, user: User, upload: UploadFile | None) -> Background:
    if upload is None:
        raise ValidationFailed("file is required", field="file")
    asset = await asset_store.persist_upload(storage, user.id, upload, kind="background")
    background = await storage.create_background(
        user.id, BackgroundStatus.READY, url=asset.url, asset_id=asset.id
    )
    logger.info("background uploaded", extra={"background_id": background.id, "asset_id": asset.id})
    return background


__all__ = [
    "PROMPT_TEMPLATE",
    "build_background_prompt",
    "start_generation",
    "upload_background",
    "validate_theme_text",
]
