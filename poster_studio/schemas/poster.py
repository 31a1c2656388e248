"""Poster, template and export payload schemas."""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import Field, field_validator, model_validator

from poster_studio.schemas import _CompatModel, _reject_data_uri


class TemplateSlot(_CompatModel):
    """Box expressed as fractions of the canvas (0..1)."""

    x: float = Field(..., ge=0, le=1)
    y: float = Field(..., ge=0, le=1)
    width: float = Field(..., gt=0, le=1)
    height: float = Field(..., gt=0, le=1)
    align: Literal["left", "center", "right"] = "center"
    font_size: Optional[int] = Field(None, gt=0)

    def to_box(self, canvas_width: int, canvas_height: int) -> tuple[int, int, int, int]:
        """Return ``(left, top, right, bottom)`` in pixels."""

        left = int(self.x * canvas_width)
        top = int(self.y * canvas_height)
        return (
            left,
            top,
            left + int(self.width * canvas_width),
            top + int(self.height * canvas_height),
        )


class TemplateLayout(_CompatModel):
    key: str
    label: str
    max_products: int = Field(..., ge=1)
    width: int = Field(1080, gt=0)
    height: int = Field(1920, gt=0)
    title: TemplateSlot
    products: List[TemplateSlot]
    logo: Optional[TemplateSlot] = None
    disclaimer: Optional[TemplateSlot] = None
    dates: Optional[TemplateSlot] = None

    @model_validator(mode="after")
    def _slots_match_count(self) -> "TemplateLayout":
        if len(self.products) != self.max_products:
            raise ValueError(
                f"template {self.key} declares {self.max_products} products "
                f"but {len(self.products)} product slots"
            )
        return self


class TemplateOut(_CompatModel):
    key: str
    label: str
    max_products: int
    width: int
    height: int


class PosterCreate(_CompatModel):
    """JSON body for creating a draft poster."""

    template_key: str
    sale_title: str = Field(..., min_length=1, max_length=255)
    theme_text: str = ""
    product_ids: List[int] = Field(default_factory=list)
    disclaimer: Optional[str] = None
    dates: Optional[str] = None
    store_logo_url: Optional[str] = None

    @field_validator("sale_title", mode="before")
    @classmethod
    def _strip_title(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("store_logo_url", mode="before")
    @classmethod
    def _no_inline_logo(cls, value: Any) -> Any:
        return _reject_data_uri(value)


class PosterUpdate(_CompatModel):
    """Field-level patch; ``status`` is owned by the lifecycle and not accepted."""

    template_key: Optional[str] = None
    sale_title: Optional[str] = Field(None, min_length=1, max_length=255)
    theme_text: Optional[str] = None
    product_ids: Optional[List[int]] = None
    background_id: Optional[str] = None
    disclaimer: Optional[str] = None
    dates: Optional[str] = None
    store_logo_url: Optional[str] = None

    @field_validator("store_logo_url", mode="before")
    @classmethod
    def _no_inline_logo(cls, value: Any) -> Any:
        return _reject_data_uri(value)


class PosterOut(_CompatModel):
    id: int
    template_key: str
    sale_title: str
    theme_text: str
    status: Literal["draft", "generating", "completed", "failed"]
    background_id: Optional[str] = None
    background_image_url: Optional[str] = None
    store_logo_url: Optional[str] = None
    disclaimer: Optional[str] = None
    dates: Optional[str] = None
    product_ids: List[int] = Field(default_factory=list)
    export_url: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ExportRequest(_CompatModel):
    format: Literal["png", "pdf"] = "png"
    resolution: Literal["digital", "print"] = "digital"


class ExportResponse(_CompatModel):
    url: str
    asset_id: int
    format: str
    resolution: str


__all__ = [
    "ExportRequest",
    "ExportResponse",
    "PosterCreate",
    "PosterOut",
    "PosterUpdate",
    "TemplateLayout",
    "TemplateOut",
    "TemplateSlot",
]
