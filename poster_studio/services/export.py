"""Compose a poster into a downloadable PNG or PDF with Pillow."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from io import BytesIO
from typing import List, Optional, Tuple

import httpx
from PIL import Image, ImageDraw, ImageFont, ImageOps
from starlette.concurrency import run_in_threadpool

from poster_studio.errors import ApiError, ExportFailed
from poster_studio.models import User
from poster_studio.schemas import ExportRequest, ExportResponse, TemplateLayout, TemplateSlot
from poster_studio.services import asset_store
from poster_studio.services.posters import get_owned_poster
from poster_studio.storage import Storage
from poster_studio.templates import load_layout

logger = logging.getLogger(__name__)

INK_BLACK = (24, 24, 24)
SALE_RED = (200, 16, 46)
GUIDE_GREY = (186, 186, 186)
PAPER = (244, 245, 247)

RESOLUTION_SCALE = {"digital": 1, "print": 2}

@dataclass
class ProductCard:
    article_number: str
    name: str
    price: Decimal
    image_url: Optional[str] = None


@dataclass
class PosterContent:
    """Plain snapshot of a poster row, safe to hand to a worker thread."""

    poster_id: int
    sale_title: str
    background_url: Optional[str] = None
    logo_url: Optional[str] = None
    disclaimer: Optional[str] = None
    dates: Optional[str] = None
    products: List[ProductCard] = field(default_factory=list)


def _load_font(size: int, *, weight: str = "regular") -> ImageFont.ImageFont:
    """Attempt to load a sans-serif font while falling back to Pillow's bundled one."""
    font_candidates = [
        "DejaVuSans-Bold.ttf" if weight != "regular" else "DejaVuSans.ttf",
        "Arial Bold.ttf" if weight != "regular" else "Arial.ttf",
        "LiberationSans-Bold.ttf" if weight != "regular" else "LiberationSans-Regular.ttf",
    ]
    for candidate in font_candidates:
        try:
            return ImageFont.truetype(candidate, size=size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def _draw_line(
    draw: ImageDraw.ImageDraw,
    text: str,
    font: ImageFont.ImageFont,
    fill: Tuple[int, int, int],
    left: int,
    right: int,
    y: int,
    align: str,
) -> None:
    width = draw.textlength(text, font=font)
    if align == "center":
        x = left + (right - left - width) / 2
    elif align == "right":
        x = right - width
    else:
        x = left
    draw.text((int(x), int(y)), text, font=font, fill=fill)


def _draw_wrapped_text(
    draw: ImageDraw.ImageDraw,
    text: str,
    box: Tuple[int, int, int, int],
    font: ImageFont.ImageFont,
    fill: Tuple[int, int, int],
    *,
    size: int,
    line_spacing: int = 6,
    align: str = "left",
) -> None:
    """Render multiline text constrained within ``(left, top, right, bottom)``."""
    left, top, right, bottom = box
    y = top
    max_width = max(right - left, 10)

    for paragraph in filter(None, [segment.strip() for segment in text.splitlines()]):
        line = ""
        for word in paragraph.split(" "):
            candidate = f"{line} {word}".strip()
            if draw.textlength(candidate, font=font) <= max_width:
                line = candidate
                continue
            if line:
                _draw_line(draw, line, font, fill, left, right, y, align)
                y += size + line_spacing
                if y + size > bottom:
                    return
            line = word
        if line:
            _draw_line(draw, line, font, fill, left, right, y, align)
            y += size + line_spacing
            if y + size > bottom:
                return


def _paste_image(
    canvas: Image.Image,
    asset: Image.Image,
    box: Tuple[int, int, int, int],
    *,
    mode: str = "contain",
) -> None:
    """Paste ``asset`` into ``box`` on ``canvas`` while preserving aspect ratio."""
    left, top, right, bottom = box
    target_size = (max(right - left, 1), max(bottom - top, 1))

    if mode == "cover":
        resized = ImageOps.fit(asset, target_size, Image.Resampling.LANCZOS)
    else:
        resized = asset.copy()
        resized.thumbnail(target_size, Image.Resampling.LANCZOS)

    offset_x = left + (target_size[0] - resized.width) // 2
    offset_y = top + (target_size[1] - resized.height) // 2
    converted = resized.convert("RGBA")
    canvas.paste(converted, (offset_x, offset_y), converted.split()[3])


def _load_image(url: Optional[str]) -> Optional[Image.Image]:
    if not url:
        return None
    try:
        data = asset_store.load_bytes(url)
        image = Image.open(BytesIO(data))
        image.load()
        return image
    except (OSError, ValueError, RuntimeError, httpx.HTTPError) as exc:
        logger.warning("export could not load image", extra={"url": url, "reason": str(exc)})
        return None


def format_price(price: Decimal) -> str:
    return f"{Decimal(price).quantize(Decimal('0.01'))} €".replace(".", ",")


def _render_slot_text(
    draw: ImageDraw.ImageDraw,
    text: Optional[str],
    slot: Optional[TemplateSlot],
    canvas_size: Tuple[int, int],
    scale: int,
    *,
    default_size: int,
    fill: Tuple[int, int, int] = INK_BLACK,
    weight: str = "regular",
) -> None:
    if not text or slot is None:
        return
    size = (slot.font_size or default_size) * scale
    font = _load_font(size, weight=weight)
    _draw_wrapped_text(
        draw, text, slot.to_box(*canvas_size), font, fill, size=size, align=slot.align
    )


def render_poster(content: PosterContent, layout: TemplateLayout, *, scale: int = 1) -> Image.Image:
    """Draw background, title, product cards, logo, dates and disclaimer."""

    width, height = layout.width * scale, layout.height * scale
    canvas = Image.new("RGBA", (width, height), (*PAPER, 255))
    draw = ImageDraw.Draw(canvas)

    background = _load_image(content.background_url)
    if background is not None:
        _paste_image(canvas, background, (0, 0, width, height), mode="cover")

    _render_slot_text(
        draw, content.sale_title, layout.title, (width, height), scale,
        default_size=72, fill=SALE_RED, weight="bold",
    )

    if layout.logo is not None:
        logo = _load_image(content.logo_url)
        if logo is not None:
            _paste_image(canvas, logo, layout.logo.to_box(width, height), mode="contain")

    for slot, product in zip(layout.products, content.products):
        left, top, right, bottom = slot.to_box(width, height)
        caption_height = int((bottom - top) * 0.25)
        image_box = (left, top, right, bottom - caption_height)
        image = _load_image(product.image_url)
        if image is not None:
            _paste_image(canvas, image, image_box, mode="contain")
        else:
            draw.rectangle(image_box, outline=GUIDE_GREY, width=3 * scale)

        size = (slot.font_size or 36) * scale
        price_font = _load_font(size, weight="bold")
        label_font = _load_font(max(size * 2 // 3, 10))
        caption_top = bottom - caption_height
        _draw_line(
            draw, format_price(product.price), price_font, SALE_RED,
            left, right, caption_top + 4 * scale, slot.align,
        )
        _draw_wrapped_text(
            draw,
            f"Art.-Nr. {product.article_number}" if product.article_number else product.name,
            (left, caption_top + size + 12 * scale, right, bottom),
            label_font,
            INK_BLACK,
            size=max(size * 2 // 3, 10),
            align=slot.align,
        )

    _render_slot_text(draw, content.dates, layout.dates, (width, height), scale, default_size=40, weight="bold")
    _render_slot_text(draw, content.disclaimer, layout.disclaimer, (width, height), scale, default_size=22)
    return canvas


def encode_image(image: Image.Image, fmt: str, *, scale: int = 1) -> Tuple[bytes, str]:
    buffer = BytesIO()
    if fmt == "pdf":
        image.convert("RGB").save(buffer, format="PDF", resolution=72.0 * scale)
        return buffer.getvalue(), "application/pdf"
    image.save(buffer, format="PNG")
    return buffer.getvalue(), "image/png"


def _compose(content: PosterContent, layout: TemplateLayout, fmt: str, scale: int) -> Tuple[bytes, str]:
    return encode_image(render_poster(content, layout, scale=scale), fmt, scale=scale)


async def export_poster(
    storage: Storage, user: User, poster_id: int, request: ExportRequest
) -> ExportResponse:
    poster = await get_owned_poster(storage, user, poster_id)
    layout = load_layout(poster.template_key)
    products = await storage.get_products(user.id, poster.product_ids or [])
    content = PosterContent(
        poster_id=poster.id,
        sale_title=poster.sale_title,
        background_url=poster.background_image_url,
        logo_url=poster.store_logo_url,
        disclaimer=poster.disclaimer,
        dates=poster.dates,
        products=[
            ProductCard(
                article_number=product.article_number or "",
                name=product.name,
                price=Decimal(product.price or 0),
                image_url=product.image_path,
            )
            for product in products
        ],
    )
    scale = RESOLUTION_SCALE[request.resolution]

    try:
        data, content_type = await run_in_threadpool(_compose, content, layout, request.format, scale)
        asset = await asset_store.persist_bytes(
            storage,
            user.id,
            data,
            kind="poster",
            filename=f"poster-{poster.id}-{request.resolution}.{request.format}",
            content_type=content_type,
        )
    except ApiError:
        raise
    except Exception as exc:
        logger.exception("poster export failed", extra={"poster_id": poster.id})
        raise ExportFailed("Poster export failed", poster_id=poster.id) from exc

    await storage.update_poster(poster, export_url=asset.url)
    logger.info(
        "poster exported",
        extra={"poster_id": poster.id, "asset_id": asset.id, "format": request.format, "scale": scale},
    )
    return ExportResponse(
        url=asset.url, asset_id=asset.id, format=request.format, resolution=request.resolution
    )


__all__ = ["PosterContent", "ProductCard", "encode_image", "export_poster", "render_poster"]
