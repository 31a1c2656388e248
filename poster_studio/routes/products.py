from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from poster_studio.db import get_db
from poster_studio.models import User
from poster_studio.schemas import ImportResult, ProductCreate, ProductOut
from poster_studio.security import get_current_user
from poster_studio.services import catalog
from poster_studio.storage import DatabaseStorage

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=List[ProductOut])
async def list_products(
    search: Optional[str] = Query(None, description="Case-insensitive match on name or article number"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> List[ProductOut]:
    products = await DatabaseStorage(db).list_products(user.id, search=search)
    return [ProductOut.model_validate(product) for product in products]


@router.post("", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
async def create_product(
    req: ProductCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProductOut:
    product = await catalog.create_product(DatabaseStorage(db), user, req)
    return ProductOut.model_validate(product)


@router.post("/import", response_model=ImportResult)
async def import_products(
    file: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ImportResult:
    return await catalog.import_products_csv(DatabaseStorage(db), user, file)
