"""Poster Studio: marketing poster backend."""

__version__ = "1.0.0"
