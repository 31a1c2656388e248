"""ORM models and lifecycle states used across the poster service."""

from .entities import Asset, Background, Poster, Product, User  # noqa: F401
from .lifecycle import BackgroundStatus, PosterStatus  # noqa: F401

ASSET_KINDS = ("background", "logo", "product", "poster")

__all__ = [
    "ASSET_KINDS",
    "Asset",
    "Background",
    "BackgroundStatus",
    "Poster",
    "PosterStatus",
    "Product",
    "User",
]
