"""Narrow persistence surface the handlers and the generation worker depend on."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from poster_studio.errors import InvalidTransition
from poster_studio.models import Asset, Background, Poster, Product, User
from poster_studio.models.lifecycle import (
    BACKGROUND_INITIAL,
    POSTER_INITIAL,
    BackgroundStatus,
    PosterStatus,
    check_background_transition,
    check_poster_transition,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Storage(Protocol):
    async def get_user(self, user_id: int) -> Optional[User]: ...
    async def get_user_by_username(self, username: str) -> Optional[User]: ...
    async def create_user(self, **values: Any) -> User: ...

    async def list_products(self, owner_id: int, *, search: str | None = None) -> list[Product]: ...
    async def get_products(self, owner_id: int, product_ids: Sequence[int]) -> list[Product]: ...
    async def create_product(self, owner_id: int, **values: Any) -> Product: ...
    async def bulk_create_products(self, owner_id: int, rows: Iterable[dict[str, Any]]) -> list[Product]: ...

    async def list_posters(self, owner_id: int) -> list[Poster]: ...
    async def get_poster(self, poster_id: int, *, owner_id: int | None = None) -> Optional[Poster]: ...
    async def create_poster(self, owner_id: int, **values: Any) -> Poster: ...
    async def update_poster(self, poster: Poster, **values: Any) -> Poster: ...
    async def set_poster_status(self, poster: Poster, status: PosterStatus, **values: Any) -> Poster: ...

    async def list_backgrounds(self, owner_id: int) -> list[Background]: ...
    async def get_background(self, background_id: str, *, owner_id: int | None = None) -> Optional[Background]: ...
    async def create_background(self, owner_id: int, status: BackgroundStatus, **values: Any) -> Background: ...
    async def set_background_status(
        self, background: Background, status: BackgroundStatus, **values: Any
    ) -> Background: ...

    async def get_asset(self, asset_id: int, *, owner_id: int | None = None) -> Optional[Asset]: ...
    async def create_asset(self, owner_id: int, **values: Any) -> Asset: ...


class DatabaseStorage:
    """:class:`Storage` backed by an SQLAlchemy ``AsyncSession``.

    Every write commits a single row. Status columns are only written through
    :meth:`set_background_status` / :meth:`set_poster_status`, which consult
    the transition tables first.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _save(self, row: Any) -> Any:
        self.session.add(row)
        await self.session.commit()
        await self.session.refresh(row)
        return row

    # Users
    async def get_user(self, user_id: int) -> Optional[User]:
        return await self.session.get(User, user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.username == username))
        return result.scalars().first()

    async def create_user(self, **values: Any) -> User:
        return await self._save(User(**values))

    # Products
    async def list_products(self, owner_id: int, *, search: str | None = None) -> list[Product]:
        query = select(Product).where(Product.user_id == owner_id)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(Product.name.ilike(pattern), Product.article_number.ilike(pattern))
            )
        query = query.order_by(Product.created_at.desc(), Product.id.desc())
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_products(self, owner_id: int, product_ids: Sequence[int]) -> list[Product]:
        if not product_ids:
            return []
        result = await self.session.execute(
            select(Product).where(Product.user_id == owner_id, Product.id.in_(list(product_ids)))
        )
        by_id = {product.id: product for product in result.scalars().all()}
        return [by_id[pid] for pid in product_ids if pid in by_id]

    async def create_product(self, owner_id: int, **values: Any) -> Product:
        return await self._save(Product(user_id=owner_id, **values))

    async def bulk_create_products(self, owner_id: int, rows: Iterable[dict[str, Any]]) -> list[Product]:
        products = [Product(user_id=owner_id, **row) for row in rows]
        if not products:
            return []
        self.session.add_all(products)
        await self.session.commit()
        for product in products:
            await self.session.refresh(product)
        return products

    # Posters
    async def list_posters(self, owner_id: int) -> list[Poster]:
        result = await self.session.execute(
            select(Poster)
            .where(Poster.user_id == owner_id)
            .order_by(Poster.created_at.desc(), Poster.id.desc())
        )
        return list(result.scalars().all())

    async def get_poster(self, poster_id: int, *, owner_id: int | None = None) -> Optional[Poster]:
        poster = await self.session.get(Poster, poster_id)
        if poster is None or (owner_id is not None and poster.user_id != owner_id):
            return None
        return poster

    async def create_poster(self, owner_id: int, **values: Any) -> Poster:
        status = PosterStatus(values.pop("status", PosterStatus.DRAFT))
        if status not in POSTER_INITIAL:
            raise InvalidTransition("poster", "new", status.value)
        return await self._save(Poster(user_id=owner_id, status=status.value, **values))

    async def update_poster(self, poster: Poster, **values: Any) -> Poster:
        if "status" in values:
            raise ValueError("poster status must be changed through set_poster_status")
        for name, value in values.items():
            setattr(poster, name, value)
        poster.updated_at = _utcnow()
        return await self._save(poster)

    async def set_poster_status(self, poster: Poster, status: PosterStatus, **values: Any) -> Poster:
        previous = poster.status
        check_poster_transition(previous, status)
        poster.status = status.value
        for name, value in values.items():
            setattr(poster, name, value)
        poster.updated_at = _utcnow()
        saved = await self._save(poster)
        logger.info(
            "poster status changed",
            extra={"poster_id": poster.id, "from": previous, "to": status.value},
        )
        return saved

    # Backgrounds
    async def list_backgrounds(self, owner_id: int) -> list[Background]:
        result = await self.session.execute(
            select(Background)
            .where(Background.user_id == owner_id)
            .order_by(Background.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_background(
        self, background_id: str, *, owner_id: int | None = None
    ) -> Optional[Background]:
        background = await self.session.get(Background, background_id)
        if background is None or (owner_id is not None and background.user_id != owner_id):
            return None
        return background

    async def create_background(self, owner_id: int, status: BackgroundStatus, **values: Any) -> Background:
        if status not in BACKGROUND_INITIAL:
            raise InvalidTransition("background", "new", status.value)
        return await self._save(Background(user_id=owner_id, status=status.value, **values))

    async def set_background_status(
        self, background: Background, status: BackgroundStatus, **values: Any
    ) -> Background:
        previous = background.status
        check_background_transition(previous, status)
        background.status = status.value
        for name, value in values.items():
            setattr(background, name, value)
        background.updated_at = _utcnow()
        saved = await self._save(background)
        logger.info(
            "background status changed",
            extra={"background_id": background.id, "from": previous, "to": status.value},
        )
        return saved

    # Assets
    async def get_asset(self, asset_id: int, *, owner_id: int | None = None) -> Optional[Asset]:
        asset = await self.session.get(Asset, asset_id)
        if asset is None or (owner_id is not None and asset.user_id != owner_id):
            return None
        return asset

    async def create_asset(self, owner_id: int, **values: Any) -> Asset:
        return await self._save(Asset(user_id=owner_id, **values))


__all__ = ["DatabaseStorage", "Storage"]
