"""Load poster layout templates with relative coordinates."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from poster_studio.errors import ValidationFailed
from poster_studio.schemas import TemplateLayout

_TEMPLATES_DIR = Path(__file__).resolve().parent
_SUFFIX = "_layout.json"


def available_keys() -> list[str]:
    return sorted(path.name[: -len(_SUFFIX)] for path in _TEMPLATES_DIR.glob(f"*{_SUFFIX}"))


@lru_cache(maxsize=None)
def _read_layout(template_key: str) -> TemplateLayout:
    path = _TEMPLATES_DIR / f"{template_key}{_SUFFIX}"
    with path.open("r", encoding="utf-8") as handle:
        payload: dict[str, Any] = json.load(handle)
    return TemplateLayout.model_validate(payload)


def load_layout(template_key: str | None, *, field: str = "template_key") -> TemplateLayout:
    """Load a layout JSON by template key; unknown keys are a validation error."""

    key = (template_key or "").strip()
    if key not in available_keys():
        raise ValidationFailed(f"Unknown template: {template_key!r}", field=field)
    return _read_layout(key)


def list_layouts() -> list[TemplateLayout]:
    return [_read_layout(key) for key in available_keys()]


__all__ = ["available_keys", "list_layouts", "load_layout"]
