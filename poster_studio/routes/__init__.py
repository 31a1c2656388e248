from fastapi import APIRouter

from . import assets, auth, backgrounds, posters, products, templates

api_router = APIRouter()
for _module in (auth, products, backgrounds, templates, posters, assets):
    api_router.include_router(_module.router)

__all__ = ["api_router"]
