"""Product catalog: single creation and CSV bulk import."""

from __future__ import annotations

import csv
import io
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List

from fastapi import UploadFile

from poster_studio.errors import ValidationFailed
from poster_studio.models import Product, User
from poster_studio.schemas import MAX_PRICE, ImportResult, ImportRowError, ProductCreate
from poster_studio.storage import Storage

logger = logging.getLogger(__name__)

# canonical column -> accepted header spellings (compared lower-cased and trimmed)
COLUMN_ALIASES: Dict[str, tuple[str, ...]] = {
    "name": ("name", "product_name", "product"),
    "price": ("price", "sale_price"),
    "image_path": ("image_path", "image", "image_url"),
    "article_number": ("article_number", "artikel_nr", "sku"),
}

MAX_NAME_LENGTH = 255
MAX_ARTICLE_LENGTH = 128

# "1,000" could be one thousand or one
_GROUPED_THOUSANDS = re.compile(r"^[1-9]\d{0,2}(,\d{3})+$")


def resolve_columns(header: List[str]) -> Dict[str, int]:
    """Map canonical column names to their index in ``header``."""

    normalised = [(cell or "").strip().lower() for cell in header]
    resolved: Dict[str, int] = {}
    for canonical, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in normalised:
                resolved[canonical] = normalised.index(alias)
                break
    return resolved


def read_price(raw: str | None) -> Decimal:
    """Parse a price cell; blank reads as 0.

    Accepts ``12.50``, ``12,50`` and a leading or trailing currency sign.
    Raises :class:`ValueError` naming why the cell is unusable.
    """

    text = (raw or "").strip().replace("€", "").replace("$", "").replace(" ", "")
    if not text:
        return Decimal("0")
    if "," in text and "." not in text:
        if _GROUPED_THOUSANDS.match(text):
            raise ValueError(f"price '{raw}' is ambiguous, write 1000 or 1000,00")
        text = text.replace(",", ".")
    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"price '{raw}' is not a number") from exc
    if not value.is_finite() or value < 0:
        raise ValueError(f"price '{raw}' must be a non-negative number")
    if value > MAX_PRICE:
        raise ValueError(f"price '{raw}' exceeds {MAX_PRICE}")
    try:
        return value.quantize(Decimal("0.01"))
    except InvalidOperation as exc:
        raise ValueError(f"price '{raw}' is not a number") from exc


def _cell(row: List[str], columns: Dict[str, int], name: str) -> str:
    index = columns.get(name)
    if index is None or index >= len(row):
        return ""
    return (row[index] or "").strip()


def _decode(payload: bytes) -> str:
    if not payload or not payload.strip():
        raise ValidationFailed("CSV file is empty", field="file")
    try:
        return payload.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationFailed("CSV file must be UTF-8 encoded", field="file") from exc


async def create_product(storage: Storage, user: User, payload: ProductCreate) -> Product:
    values: Dict[str, Any] = payload.model_dump()
    values["name"] = values["name"].strip()
    if not values["name"]:
        raise ValidationFailed("name must not be blank", field="name")
    values["price"] = Decimal(str(values["price"])).quantize(Decimal("0.01"))
    product = await storage.create_product(user.id, **values)
    logger.info("product created", extra={"product_id": product.id, "user_id": user.id})
    return product


async def import_products_csv(storage: Storage, user: User, upload: UploadFile | None) -> ImportResult:
    if upload is None:
        raise ValidationFailed("file is required", field="file")

    text = _decode(await upload.read())
    reader = csv.reader(io.StringIO(text))
    try:
        header = next(reader)
    except StopIteration as exc:
        raise ValidationFailed("CSV file is empty", field="file") from exc
    except csv.Error as exc:
        raise ValidationFailed(f"CSV header is unreadable: {exc}", field="file") from exc

    columns = resolve_columns(header)
    if "name" not in columns:
        raise ValidationFailed(
            "CSV header must include a name column (name, product_name or product)",
            field="file",
        )

    rows: List[Dict[str, Any]] = []
    errors: List[ImportRowError] = []
    warnings: List[ImportRowError] = []
    processed = 0

    try:
        for raw in reader:
            if not any((cell or "").strip() for cell in raw):
                continue
            processed += 1
            name = _cell(raw, columns, "name")
            if not name:
                errors.append(ImportRowError(row=processed, message="name is blank"))
                continue
            if len(name) > MAX_NAME_LENGTH:
                errors.append(
                    ImportRowError(row=processed, message=f"name exceeds {MAX_NAME_LENGTH} characters")
                )
                continue

            try:
                price = read_price(_cell(raw, columns, "price"))
            except ValueError as exc:
                warnings.append(ImportRowError(row=processed, message=f"{exc}, using 0"))
                price = Decimal("0")

            article = _cell(raw, columns, "article_number")[:MAX_ARTICLE_LENGTH] or None
            rows.append(
                {
                    "name": name,
                    "price": price,
                    "article_number": article,
                    "image_path": _cell(raw, columns, "image_path") or None,
                }
            )
    except csv.Error as exc:
        raise ValidationFailed(f"CSV is malformed near data row {processed}: {exc}", field="file") from exc

    created = await storage.bulk_create_products(user.id, rows)
    result = ImportResult(
        processed=processed,
        succeeded=len(created),
        failed=len(errors),
        errors=errors,
        warnings=warnings,
    )
    logger.info(
        "product import finished",
        extra={
            "user_id": user.id,
            "processed": result.processed,
            "succeeded": result.succeeded,
            "failed": result.failed,
        },
    )
    return result


__all__ = [
    "COLUMN_ALIASES",
    "create_product",
    "import_products_csv",
    "read_price",
    "resolve_columns",
]
