"""
Database models for Poster Studio.

Every product, poster, background and asset row belongs to exactly one user.
Rows are never deleted; assets are write-once.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String, Text

from poster_studio.db import Base
from poster_studio.models.lifecycle import BackgroundStatus, PosterStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_background_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(320), unique=True, nullable=False, index=True)
    password_hash = Column(String(512), nullable=False)
    role = Column(String(32), nullable=False, default="store_owner")
    totp_secret = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    article_number = Column(String(128), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    image_path = Column(String(1024), nullable=True)
    slot_index = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Background(Base):
    __tablename__ = "backgrounds"
    id = Column(String(36), primary_key=True, default=_new_background_id)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=BackgroundStatus.QUEUED.value)
    theme_text = Column(Text, nullable=True)
    url = Column(String(1024), nullable=True)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Poster(Base):
    __tablename__ = "posters"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    template_key = Column(String(32), nullable=False)
    sale_title = Column(String(255), nullable=False)
    theme_text = Column(Text, nullable=False, default="")
    status = Column(String(16), nullable=False, default=PosterStatus.DRAFT.value)
    background_id = Column(String(36), ForeignKey("backgrounds.id"), nullable=True)
    background_image_url = Column(String(1024), nullable=True)
    store_logo_url = Column(String(1024), nullable=True)
    disclaimer = Column(Text, nullable=True)
    dates = Column(String(255), nullable=True)
    product_ids = Column(JSON, nullable=False, default=list)
    export_url = Column(String(1024), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Asset(Base):
    __tablename__ = "assets"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    kind = Column(String(16), nullable=False)  # background, logo, product, poster
    url = Column(String(1024), nullable=False)
    key = Column(String(512), nullable=True)
    filename = Column(String(255), nullable=False)
    content_type = Column(String(64), nullable=False, default="image/png")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
