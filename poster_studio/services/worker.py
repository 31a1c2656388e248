"""In-process generation worker.

Handlers enqueue a :class:`GenerationJob` and return immediately; the worker
calls the image collaborator off the event loop, stores the bytes and performs
the single completion write (``ready``/``failed`` for backgrounds,
``completed``/``failed`` for posters).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from io import BytesIO
from typing import Callable, Literal, Optional, Union

from fastapi import Request
from PIL import Image, UnidentifiedImageError
from starlette.concurrency import run_in_threadpool

from poster_studio.config import get_settings
from poster_studio.db import get_session_maker
from poster_studio.models import BackgroundStatus, PosterStatus
from poster_studio.services import asset_store
from poster_studio.services.image_provider import ImageGenerator, ImageProviderError, get_provider
from poster_studio.storage import DatabaseStorage

logger = logging.getLogger(__name__)

_MIME_BY_FORMAT = {"PNG": "image/png", "JPEG": "image/jpeg", "WEBP": "image/webp"}


@dataclass
class GenerationJob:
    kind: Literal["background", "poster"]
    record_id: Union[str, int]
    user_id: int
    prompt: str
    theme_text: str = ""
    trace: str = field(default_factory=lambda: uuid.uuid4().hex[:8])


def _sniff_content_type(data: bytes) -> str:
    try:
        with Image.open(BytesIO(data)) as image:
            image.verify()
            fmt = (image.format or "").upper()
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageProviderError("image backend returned an unreadable image") from exc
    return _MIME_BY_FORMAT.get(fmt, "image/png")


class GenerationWorker:
    def __init__(
        self,
        *,
        concurrency: int | None = None,
        queue_size: int | None = None,
        timeout: float | None = None,
        provider_factory: Callable[[], ImageGenerator] = get_provider,
    ) -> None:
        settings = get_settings()
        self.concurrency = concurrency or settings.generation.workers
        self.timeout = timeout or settings.image_api.timeout
        self.queue: asyncio.Queue[GenerationJob] = asyncio.Queue(
            maxsize=queue_size if queue_size is not None else settings.generation.queue_size
        )
        self._provider_factory = provider_factory
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._run(index), name=f"generation-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info("generation worker started", extra={"concurrency": self.concurrency})

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("generation worker stopped", extra={"pending": self.queue.qsize()})

    def submit(self, job: GenerationJob) -> None:
        """Enqueue ``job``; raises :class:`asyncio.QueueFull` when saturated."""

        self.queue.put_nowait(job)
        logger.info(
            "generation job queued",
            extra={"trace": job.trace, "kind": job.kind, "record_id": job.record_id},
        )

    async def join(self) -> None:
        await self.queue.join()

    async def _run(self, index: int) -> None:
        while True:
            job = await self.queue.get()
            try:
                await self.process(job)
            except Exception:
                # A broken job must not take the loop down with it.
                logger.exception(
                    "generation job crashed",
                    extra={"trace": job.trace, "kind": job.kind, "worker": index},
                )
            finally:
                self.queue.task_done()

    async def _generate(self, job: GenerationJob) -> asset_store.StoredObject:
        provider = self._provider_factory()
        data = await asyncio.wait_for(
            asyncio.to_thread(provider.generate, prompt=job.prompt),
            timeout=self.timeout,
        )
        if not data:
            raise ImageProviderError("image backend returned no image data")
        content_type = _sniff_content_type(data)
        filename = f"{job.kind}-{job.record_id}.{asset_store.extension_for(content_type)}"
        return await run_in_threadpool(
            asset_store.store_bytes,
            data,
            folder="backgrounds",
            filename=filename,
            content_type=content_type,
        )

    async def process(self, job: GenerationJob) -> None:
        error: Optional[str] = None
        stored: Optional[asset_store.StoredObject] = None
        try:
            stored = await self._generate(job)
        except asyncio.TimeoutError:
            error = f"Image generation timed out after {self.timeout:g}s"
            logger.warning("generation timed out", extra={"trace": job.trace, "record_id": job.record_id})
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.exception("generation failed", extra={"trace": job.trace, "record_id": job.record_id})

        async with get_session_maker()() as session:
            storage = DatabaseStorage(session)
            if job.kind == "background":
                await self._finish_background(storage, job, stored, error)
            else:
                await self._finish_poster(storage, job, stored, error)

    async def _finish_background(
        self,
        storage: DatabaseStorage,
        job: GenerationJob,
        stored: Optional[asset_store.StoredObject],
        error: Optional[str],
    ) -> None:
        background = await storage.get_background(str(job.record_id), owner_id=job.user_id)
        if background is None:
            logger.warning("background vanished before completion", extra={"trace": job.trace})
            return
        if stored is None:
            await storage.set_background_status(background, BackgroundStatus.FAILED, error=error)
            return
        asset = await storage.create_asset(
            job.user_id,
            kind="background",
            url=stored.url,
            key=stored.key,
            filename=stored.key.rsplit("/", 1)[-1],
            content_type=stored.content_type,
        )
        await storage.set_background_status(
            background, BackgroundStatus.READY, url=stored.url, asset_id=asset.id, error=None
        )

    async def _finish_poster(
        self,
        storage: DatabaseStorage,
        job: GenerationJob,
        stored: Optional[asset_store.StoredObject],
        error: Optional[str],
    ) -> None:
        poster = await storage.get_poster(int(job.record_id), owner_id=job.user_id)
        if poster is None:
            logger.warning("poster vanished before completion", extra={"trace": job.trace})
            return
        if stored is None:
            await storage.set_poster_status(poster, PosterStatus.FAILED, error=error)
            return
        asset = await storage.create_asset(
            job.user_id,
            kind="background",
            url=stored.url,
            key=stored.key,
            filename=stored.key.rsplit("/", 1)[-1],
            content_type=stored.content_type,
        )
        background = await storage.create_background(
            job.user_id,
            BackgroundStatus.READY,
            theme_text=job.theme_text,
            url=stored.url,
            asset_id=asset.id,
        )
        await storage.set_poster_status(
            poster,
            PosterStatus.COMPLETED,
            background_id=background.id,
            background_image_url=stored.url,
            error=None,
        )


def get_worker(request: Request) -> GenerationWorker:
    """FastAPI dependency returning the worker started by the app lifespan."""

    return request.app.state.worker


__all__ = ["GenerationJob", "GenerationWorker", "get_worker"]
