"""Poster assembly, draft editing and AI background requests."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from starlette.datastructures import FormData, UploadFile

from poster_studio.errors import NotFound, ValidationFailed
from poster_studio.models import Background, BackgroundStatus, Poster, PosterStatus, User
from poster_studio.schemas import PosterCreate, PosterUpdate, TemplateLayout
from poster_studio.services import asset_store
from poster_studio.services.backgrounds import build_background_prompt, validate_theme_text
from poster_studio.services.catalog import read_price
from poster_studio.services.worker import GenerationJob, GenerationWorker
from poster_studio.storage import Storage
from poster_studio.templates import load_layout

logger = logging.getLogger(__name__)

_ENTRY_FIELD_RX = re.compile(r"^(artikel_nr|sale_price|product_image)_(\d+)$")


@dataclass
class _ImagePayload:
    data: bytes
    filename: str
    content_type: str


@dataclass
class _ProductEntry:
    index: int
    article_number: str
    price: Decimal
    image: _ImagePayload


async def get_owned_poster(storage: Storage, user: User, poster_id: int) -> Poster:
    poster = await storage.get_poster(poster_id, owner_id=user.id)
    if poster is None:
        raise NotFound("Poster not found")
    return poster


async def _ready_background(storage: Storage, user: User, background_id: str | None) -> Background:
    if not background_id:
        raise ValidationFailed("background_id is required", field="background_id")
    background = await storage.get_background(background_id, owner_id=user.id)
    if background is None:
        raise ValidationFailed("Background not found", field="background_id")
    if background.status != BackgroundStatus.READY.value:
        raise ValidationFailed(
            f"Background is not ready (status: {background.status})", field="background_id"
        )
    return background


def _text(form: FormData, name: str) -> str:
    value = form.get(name)
    return value.strip() if isinstance(value, str) else ""


async def _read_image(upload: Any, *, field: str) -> _ImagePayload:
    if not isinstance(upload, UploadFile) or not upload.filename:
        raise ValidationFailed(f"{field} must be an image file", field=field)
    data = await upload.read()
    content_type = (upload.content_type or "").split(";")[0].strip().lower() or None
    asset_store.inspect_image(data, content_type=content_type, field=field)
    return _ImagePayload(data=data, filename=upload.filename, content_type=content_type or "image/png")


def _entry_indices(form: FormData) -> List[int]:
    indices = set()
    for key in form.keys():
        match = _ENTRY_FIELD_RX.match(key)
        if match:
            indices.add(int(match.group(2)))
    return sorted(indices)


def _check_product_count(layout: TemplateLayout, count: int, *, exact: bool, field: str) -> None:
    if exact and count != layout.max_products:
        raise ValidationFailed(
            f"Template {layout.key} requires exactly {layout.max_products} products, got {count}",
            field=field,
        )
    if count > layout.max_products:
        raise ValidationFailed(
            f"Template {layout.key} allows at most {layout.max_products} products, got {count}",
            field=field,
        )


async def create_assembled_poster(storage: Storage, user: User, form: FormData) -> Poster:
    """Validate a multipart submission fully, then write assets, products and the poster."""

    layout = load_layout(_text(form, "template_key"))

    sale_title = _text(form, "sale_title")
    if not sale_title:
        raise ValidationFailed("sale_title must not be empty", field="sale_title")

    background = await _ready_background(storage, user, _text(form, "background_id"))

    indices = _entry_indices(form)
    _check_product_count(layout, len(indices), exact=True, field="products")
    if indices != list(range(len(indices))):
        raise ValidationFailed("Product entries must be numbered from 0", field="products")

    entries: List[_ProductEntry] = []
    for index in indices:
        article = _text(form, f"artikel_nr_{index}")
        if not article:
            raise ValidationFailed(
                f"Product {index + 1} needs an article number", field=f"artikel_nr_{index}"
            )
        image = await _read_image(form.get(f"product_image_{index}"), field=f"product_image_{index}")
        entries.append(_ProductEntry(index=index, article_number=article, price=Decimal("0"), image=image))

    for entry in entries:
        try:
            entry.price = read_price(_text(form, f"sale_price_{entry.index}"))
        except ValueError as exc:
            raise ValidationFailed(
                f"Product {entry.index + 1}: {exc}", field=f"sale_price_{entry.index}"
            ) from exc

    logo: Optional[_ImagePayload] = None
    logo_upload = form.get("store_logo")
    if isinstance(logo_upload, UploadFile) and logo_upload.filename:
        logo = await _read_image(logo_upload, field="store_logo")

    # validation complete; nothing above has written a row
    staged = [
        await asset_store.stage_bytes(
            entry.image.data,
            kind="product",
            filename=entry.image.filename,
            content_type=entry.image.content_type,
        )
        for entry in entries
    ]
    staged_logo = None
    if logo is not None:
        staged_logo = await asset_store.stage_bytes(
            logo.data, kind="logo", filename=logo.filename, content_type=logo.content_type
        )

    asset_ids: List[int] = []
    product_ids: List[int] = []
    try:
        for entry, stored in zip(entries, staged):
            asset = await asset_store.record_asset(
                storage, user.id, stored, kind="product", filename=entry.image.filename, size=len(entry.image.data)
            )
            asset_ids.append(asset.id)
            product = await storage.create_product(
                user.id,
                name=entry.article_number,
                article_number=entry.article_number,
                price=entry.price,
                image_path=asset.url,
                slot_index=entry.index,
            )
            product_ids.append(product.id)

        logo_url = None
        if staged_logo is not None and logo is not None:
            logo_asset = await asset_store.record_asset(
                storage, user.id, staged_logo, kind="logo", filename=logo.filename, size=len(logo.data)
            )
            asset_ids.append(logo_asset.id)
            logo_url = logo_asset.url

        poster = await storage.create_poster(
            user.id,
            status=PosterStatus.COMPLETED,
            template_key=layout.key,
            sale_title=sale_title,
            theme_text=background.theme_text or "",
            background_id=background.id,
            background_image_url=background.url,
            store_logo_url=logo_url,
            disclaimer=_text(form, "disclaimer") or None,
            dates=_text(form, "dates") or None,
            product_ids=product_ids,
        )
    except Exception:
        logger.exception(
            "poster assembly aborted after partial writes",
            extra={"user_id": user.id, "orphan_asset_ids": asset_ids, "orphan_product_ids": product_ids},
        )
        raise

    logger.info(
        "poster assembled",
        extra={"poster_id": poster.id, "template": layout.key, "products": len(product_ids)},
    )
    return poster


async def _owned_product_ids(storage: Storage, user: User, product_ids: Sequence[int]) -> List[int]:
    ids = list(product_ids)
    if len(set(ids)) != len(ids):
        raise ValidationFailed("product_ids must not repeat", field="product_ids")
    found = await storage.get_products(user.id, ids)
    if len(found) != len(ids):
        raise ValidationFailed("Unknown product id in product_ids", field="product_ids")
    return ids


async def create_draft_poster(storage: Storage, user: User, payload: PosterCreate) -> Poster:
    layout = load_layout(payload.template_key)
    _check_product_count(layout, len(payload.product_ids), exact=False, field="product_ids")
    product_ids = await _owned_product_ids(storage, user, payload.product_ids)
    poster = await storage.create_poster(
        user.id,
        status=PosterStatus.DRAFT,
        template_key=layout.key,
        sale_title=payload.sale_title,
        theme_text=payload.theme_text.strip(),
        product_ids=product_ids,
        disclaimer=payload.disclaimer,
        dates=payload.dates,
        store_logo_url=payload.store_logo_url,
    )
    logger.info("draft poster created", extra={"poster_id": poster.id, "template": layout.key})
    return poster


_NON_NULLABLE = ("template_key", "sale_title", "theme_text", "product_ids")


async def update_poster(storage: Storage, user: User, poster_id: int, patch: PosterUpdate) -> Poster:
    poster = await get_owned_poster(storage, user, poster_id)
    changes: Dict[str, Any] = patch.model_dump(exclude_unset=True)
    for name in _NON_NULLABLE:
        if name in changes and changes[name] is None:
            changes.pop(name)

    template_key = changes.get("template_key", poster.template_key)
    layout = load_layout(template_key)
    changes["template_key"] = layout.key

    product_ids = changes.get("product_ids", poster.product_ids or [])
    _check_product_count(layout, len(product_ids), exact=False, field="product_ids")
    if "product_ids" in changes:
        changes["product_ids"] = await _owned_product_ids(storage, user, product_ids)

    if "background_id" in changes:
        if changes["background_id"]:
            background = await _ready_background(storage, user, changes["background_id"])
            changes["background_image_url"] = background.url
        else:
            changes["background_id"] = None
            changes["background_image_url"] = None

    if "theme_text" in changes:
        changes["theme_text"] = changes["theme_text"].strip()

    poster = await storage.update_poster(poster, **changes)
    logger.info("poster updated", extra={"poster_id": poster.id, "fields": sorted(changes)})
    return poster


async def start_poster_background(
    storage: Storage,
    worker: GenerationWorker,
    user: User,
    poster_id: int,
    theme_text: str | None,
) -> Poster:
    """Move the poster to ``generating`` and queue a background job for it.

    A poster already generating (or completed) answers 409 through the
    transition check.
    """

    theme = validate_theme_text(theme_text)
    poster = await get_owned_poster(storage, user, poster_id)
    poster = await storage.set_poster_status(
        poster, PosterStatus.GENERATING, theme_text=theme, error=None
    )
    job = GenerationJob(
        kind="poster",
        record_id=poster.id,
        user_id=user.id,
        prompt=build_background_prompt(theme),
        theme_text=theme,
    )
    try:
        worker.submit(job)
    except asyncio.QueueFull:
        logger.warning("generation queue full", extra={"poster_id": poster.id})
        poster = await storage.set_poster_status(
            poster, PosterStatus.FAILED, error="Generation queue is full, try again later"
        )
    return poster


__all__ = [
    "create_assembled_poster",
    "create_draft_poster",
    "get_owned_poster",
    "start_poster_background",
    "update_poster",
]
