from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from poster_studio import __version__
from poster_studio.config import get_settings
from poster_studio.db import dispose_engine, get_session_maker, init_models
from poster_studio.errors import register_error_handlers
from poster_studio.middlewares import RejectHugeOrBase64
from poster_studio.routes import api_router
from poster_studio.security import seed_admin
from poster_studio.services.worker import GenerationWorker
from poster_studio.storage import DatabaseStorage

settings = get_settings()
LOG_LEVEL = settings.log_level

# uvicorn loggers follow the service level
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger("uvicorn").setLevel(LOG_LEVEL)
logging.getLogger("uvicorn.error").setLevel(LOG_LEVEL)
logging.getLogger("uvicorn.access").setLevel(LOG_LEVEL)
logging.getLogger("poster-studio").setLevel(LOG_LEVEL)

logger = logging.getLogger("poster-studio")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await init_models()
    async with get_session_maker()() as session:
        await seed_admin(DatabaseStorage(session))

    worker = GenerationWorker()
    app.state.worker = worker
    await worker.start()
    logger.info("poster-studio ready", extra={"api_prefix": get_settings().api_prefix})
    try:
        yield
    finally:
        await worker.stop()
        await dispose_engine()


def create_app() -> FastAPI:
    settings = get_settings()
    settings.check_startup()
    app = FastAPI(title="Poster Studio API", version=__version__, lifespan=lifespan)

    app.add_middleware(
        RejectHugeOrBase64,
        max_body_bytes=settings.guard.max_body_bytes,
        disallow_base64=settings.guard.disallow_base64,
        path_prefix=settings.api_prefix or "/",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials="*" not in settings.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    media_dir = Path(settings.uploads.asset_dir)
    media_dir.mkdir(parents=True, exist_ok=True)
    app.mount(
        settings.uploads.media_url_prefix,
        StaticFiles(directory=str(media_dir)),
        name="media",
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/", include_in_schema=False)
    def root() -> dict[str, Any]:
        return {"service": "poster-studio", "ok": True}

    @app.head("/", include_in_schema=False)
    def root_head() -> Response:
        return Response(status_code=200)

    @app.get("/health")
    def health() -> dict[str, bool]:
        return {"ok": True}

    logger.info(
        "CORS configured",
        extra={"allow_origins": settings.allowed_origins, "environment": settings.environment},
    )
    return app


app = create_app()
