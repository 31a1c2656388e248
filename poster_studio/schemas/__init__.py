from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _CompatModel(BaseModel):
    """Base model that ignores unknown fields and reads ORM attributes."""

    model_config = ConfigDict(extra="ignore", from_attributes=True)


DATA_URL_RX = re.compile(r"^data:image/[^;]+;base64,", re.IGNORECASE)

# largest value a Numeric(10, 2) price column holds
MAX_PRICE = Decimal("99999999.99")


def _reject_data_uri(value: Any) -> Any:
    if isinstance(value, str) and DATA_URL_RX.match(value.strip()):
        raise ValueError("base64 data-url is not allowed; upload the image first")
    return value


# ---------------------------------------------------------------- auth


class LoginRequest(_CompatModel):
    """Credentials accepted by ``POST /auth/login``.

    The browser client sends ``email``; older callers send ``username``.
    Either one identifies the account.
    """

    username: Optional[str] = Field(None, description="Account name")
    email: Optional[str] = Field(None, description="Alias of username used by the web client")
    password: str = Field(..., description="Plain password")
    totp_code: Optional[str] = Field(None, description="Second factor when the account has one")

    @property
    def identifier(self) -> str:
        return (self.username or self.email or "").strip()


class RegisterRequest(_CompatModel):
    username: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=8)

    @field_validator("username", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class UserPublic(_CompatModel):
    id: int
    username: str
    role: str
    created_at: datetime


class TokenResponse(_CompatModel):
    access_token: str
    token_type: str = "bearer"
    user: UserPublic


class MessageResponse(_CompatModel):
    message: str


# ---------------------------------------------------------------- catalog


class ProductCreate(_CompatModel):
    name: str = Field(..., min_length=1, max_length=255)
    article_number: Optional[str] = Field(None, max_length=128)
    price: float = Field(0, ge=0, le=float(MAX_PRICE), allow_inf_nan=False)
    image_path: Optional[str] = None
    slot_index: Optional[int] = Field(None, ge=0)

    @field_validator("image_path", mode="before")
    @classmethod
    def _no_inline_images(cls, value: Any) -> Any:
        return _reject_data_uri(value)


class ProductOut(_CompatModel):
    id: int
    article_number: Optional[str] = None
    name: str
    price: float
    image_path: Optional[str] = None
    slot_index: Optional[int] = None
    created_at: datetime


class ImportRowError(_CompatModel):
    row: int = Field(..., description="1-based data row number (header excluded)")
    message: str


class ImportResult(_CompatModel):
    processed: int
    succeeded: int
    failed: int
    errors: List[ImportRowError] = Field(default_factory=list)
    warnings: List[ImportRowError] = Field(default_factory=list)


# ---------------------------------------------------------------- backgrounds


class GenerateBackgroundRequest(_CompatModel):
    theme_text: str = Field(..., description="Prompt describing the backdrop")


class BackgroundOut(_CompatModel):
    id: str
    status: Literal["queued", "generating", "ready", "failed"]
    url: Optional[str] = None
    theme_text: Optional[str] = None
    asset_id: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime


# ---------------------------------------------------------------- assets


class AssetOut(_CompatModel):
    id: int
    kind: str
    url: str
    filename: str
    content_type: str
    created_at: datetime


class AssetUrl(_CompatModel):
    url: str


from .poster import (  # noqa: E402
    ExportRequest,
    ExportResponse,
    PosterCreate,
    PosterOut,
    PosterUpdate,
    TemplateOut,
    TemplateLayout,
    TemplateSlot,
)

__all__ = [
    "AssetOut",
    "AssetUrl",
    "BackgroundOut",
    "DATA_URL_RX",
    "ExportRequest",
    "ExportResponse",
    "GenerateBackgroundRequest",
    "ImportResult",
    "ImportRowError",
    "LoginRequest",
    "MAX_PRICE",
    "MessageResponse",
    "PosterCreate",
    "PosterOut",
    "PosterUpdate",
    "ProductCreate",
    "ProductOut",
    "RegisterRequest",
    "TemplateLayout",
    "TemplateOut",
    "TemplateSlot",
    "TokenResponse",
    "UserPublic",
]
