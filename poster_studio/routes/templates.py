from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from poster_studio.models import User
from poster_studio.schemas import TemplateOut
from poster_studio.security import get_current_user
from poster_studio.templates import list_layouts

router = APIRouter(prefix="/templates", tags=["templates"])


@router.get("", response_model=List[TemplateOut])
async def list_templates(user: User = Depends(get_current_user)) -> List[TemplateOut]:
    return [TemplateOut.model_validate(layout) for layout in list_layouts()]
