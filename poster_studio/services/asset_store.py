"""Thin wrapper that persists image bytes to R2 or to the local media directory."""
from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
from PIL import Image, UnidentifiedImageError
from starlette.concurrency import run_in_threadpool

from poster_studio.config import get_settings
from poster_studio.errors import ValidationFailed
from poster_studio.services import r2_client

if TYPE_CHECKING:
    from fastapi import UploadFile

    from poster_studio.models import Asset
    from poster_studio.storage import Storage

logger = logging.getLogger(__name__)

_DEFAULT_EXT = "png"
_EXT_BY_TYPE = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "application/pdf": "pdf",
}


@dataclass
class StoredObject:
    key: str
    url: str
    content_type: str
    backend: str


def extension_for(content_type: str) -> str:
    return _EXT_BY_TYPE.get(content_type, _DEFAULT_EXT)


def asset_root() -> Path:
    return Path(get_settings().uploads.asset_dir).resolve()


def _media_prefix() -> str:
    return get_settings().uploads.media_url_prefix.rstrip("/")


def _local_path(key: str) -> Path:
    root = asset_root()
    path = (root / key).resolve()
    if root not in path.parents:
        raise ValueError(f"asset key escapes storage root: {key}")
    return path


def store_bytes(
    data: bytes,
    *,
    folder: str,
    filename: str,
    content_type: str | None = None,
) -> StoredObject:
    """Persist ``data`` and return where it can be fetched from.

    R2 is used when configured; otherwise the file lands under ``ASSET_DIR`` and
    is served by the app's media mount.
    """

    if not isinstance(data, (bytes, bytearray)):
        raise TypeError("asset payload must be bytes")

    guessed, _ = mimetypes.guess_type(filename)
    ct = content_type or guessed or "image/png"
    key = r2_client.make_key(folder, filename)

    r2 = get_settings().r2
    if r2.is_configured:
        try:
            url = r2_client.put_object(r2, key, bytes(data), content_type=ct)
        except r2_client.R2Error:
            logger.warning("R2 upload failed; falling back to local storage", extra={"key": key}, exc_info=True)
        else:
            return StoredObject(key=key, url=url, content_type=ct, backend="r2")

    path = _local_path(key)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as handle:
        handle.write(bytes(data))
    return StoredObject(key=key, url=f"{_media_prefix()}/{key}", content_type=ct, backend="local")


def load_bytes(url: str) -> bytes:
    """Fetch bytes previously returned by :func:`store_bytes` (or any http URL)."""

    prefix = _media_prefix() + "/"
    if url.startswith(prefix):
        with _local_path(url[len(prefix):]).open("rb") as handle:
            return handle.read()

    r2 = get_settings().r2
    key = r2_client.key_for_url(r2, url) if r2.is_configured else None
    if key:
        return r2_client.get_object(r2, key)

    if url.startswith(("http://", "https://")):
        with httpx.Client(timeout=30, follow_redirects=True) as client:
            response = client.get(url)
            response.raise_for_status()
            return response.content

    raise ValueError(f"Unsupported asset reference: {url}")


def resolve_url(url: str, key: str | None) -> str:
    """Current download URL for a stored asset; private R2 objects are re-signed."""

    r2 = get_settings().r2
    if key and r2.is_configured and not r2.public_base and not url.startswith(_media_prefix() + "/"):
        return r2_client.object_url(r2, key)
    return url


def inspect_image(data: bytes, *, content_type: str | None, field: str = "file") -> tuple[int, int]:
    """Validate an uploaded image and return its dimensions."""

    uploads = get_settings().uploads
    if not data:
        raise ValidationFailed("Uploaded file is empty", field=field)
    if uploads.max_bytes and len(data) > uploads.max_bytes:
        raise ValidationFailed("File exceeds permitted size", field=field)
    if uploads.allowed_mime and content_type not in uploads.allowed_mime:
        raise ValidationFailed(f"content_type not allowed: {content_type}", field=field)
    try:
        with Image.open(BytesIO(data)) as image:
            image.load()
            return image.size
    except (UnidentifiedImageError, OSError) as exc:
        logger.warning("[upload] cannot decode image payload", extra={"field": field})
        raise ValidationFailed("Uploaded file is not a readable image", field=field) from exc


async def stage_bytes(data: bytes, *, kind: str, filename: str, content_type: str) -> StoredObject:
    """Write the blob only; no row is created."""

    return await run_in_threadpool(
        store_bytes, data, folder=f"{kind}s", filename=filename, content_type=content_type
    )


async def record_asset(
    storage: "Storage",
    owner_id: int,
    stored: StoredObject,
    *,
    kind: str,
    filename: str,
    size: int | None = None,
) -> "Asset":
    asset = await storage.create_asset(
        owner_id,
        kind=kind,
        url=stored.url,
        key=stored.key,
        filename=filename,
        content_type=stored.content_type,
    )
    logger.info(
        "asset stored",
        extra={"asset_id": asset.id, "kind": kind, "backend": stored.backend, "bytes": size},
    )
    return asset


async def persist_bytes(
    storage: "Storage",
    owner_id: int,
    data: bytes,
    *,
    kind: str,
    filename: str,
    content_type: str,
) -> "Asset":
    """Store ``data`` and record it as a write-once asset row."""

    stored = await stage_bytes(data, kind=kind, filename=filename, content_type=content_type)
    return await record_asset(storage, owner_id, stored, kind=kind, filename=filename, size=len(data))


async def persist_upload(
    storage: "Storage",
    owner_id: int,
    upload: "UploadFile",
    *,
    kind: str,
    field: str = "file",
) -> "Asset":
    """Validate an uploaded image and store it as an asset of ``kind``."""

    data = await upload.read()
    content_type = (upload.content_type or "").split(";")[0].strip().lower() or None
    inspect_image(data, content_type=content_type, field=field)
    ct = content_type or "image/png"
    filename = upload.filename or f"{kind}.{extension_for(ct)}"
    return await persist_bytes(storage, owner_id, data, kind=kind, filename=filename, content_type=ct)


__all__ = [
    "StoredObject",
    "asset_root",
    "extension_for",
    "inspect_image",
    "load_bytes",
    "persist_bytes",
    "persist_upload",
    "record_asset",
    "resolve_url",
    "stage_bytes",
    "store_bytes",
]
