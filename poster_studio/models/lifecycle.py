"""Closed status sets and transition tables for backgrounds and posters."""

from __future__ import annotations

from enum import Enum
from typing import Mapping

from poster_studio.errors import InvalidTransition


class BackgroundStatus(str, Enum):
    QUEUED = "queued"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


class PosterStatus(str, Enum):
    DRAFT = "draft"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


BACKGROUND_INITIAL = frozenset({BackgroundStatus.QUEUED, BackgroundStatus.READY})
BACKGROUND_TRANSITIONS: Mapping[BackgroundStatus, frozenset[BackgroundStatus]] = {
    BackgroundStatus.QUEUED: frozenset({BackgroundStatus.GENERATING, BackgroundStatus.FAILED}),
    BackgroundStatus.GENERATING: frozenset({BackgroundStatus.READY, BackgroundStatus.FAILED}),
    BackgroundStatus.READY: frozenset(),
    BackgroundStatus.FAILED: frozenset(),
}

POSTER_INITIAL = frozenset({PosterStatus.DRAFT, PosterStatus.COMPLETED})
POSTER_TRANSITIONS: Mapping[PosterStatus, frozenset[PosterStatus]] = {
    PosterStatus.DRAFT: frozenset({PosterStatus.GENERATING, PosterStatus.COMPLETED}),
    PosterStatus.GENERATING: frozenset({PosterStatus.COMPLETED, PosterStatus.FAILED}),
    PosterStatus.COMPLETED: frozenset(),
    # explicit retry after a failed generation
    PosterStatus.FAILED: frozenset({PosterStatus.GENERATING}),
}


def is_terminal(status: BackgroundStatus | PosterStatus) -> bool:
    if isinstance(status, BackgroundStatus):
        return not BACKGROUND_TRANSITIONS[status]
    return not POSTER_TRANSITIONS[status]


def check_background_transition(current: str, target: BackgroundStatus) -> BackgroundStatus:
    state = BackgroundStatus(current)
    if target not in BACKGROUND_TRANSITIONS[state]:
        raise InvalidTransition("background", state.value, target.value)
    return target


def check_poster_transition(current: str, target: PosterStatus) -> PosterStatus:
    state = PosterStatus(current)
    if target not in POSTER_TRANSITIONS[state]:
        raise InvalidTransition("poster", state.value, target.value)
    return target


__all__ = [
    "BACKGROUND_INITIAL",
    "BACKGROUND_TRANSITIONS",
    "BackgroundStatus",
    "POSTER_INITIAL",
    "POSTER_TRANSITIONS",
    "PosterStatus",
    "check_background_transition",
    "check_poster_transition",
    "is_terminal",
]
