"""Bundled poster layouts."""

from .layouts import available_keys, list_layouts, load_layout  # noqa: F401
