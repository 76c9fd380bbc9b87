from __future__ import annotations

from collections.abc import Sequence
from typing import TypeVar

from .nback_core import NO_MATCH, MatchResult, Stimulus

T = TypeVar("T")


def is_scorable(index: int, n_level: int) -> bool:
    """A turn can be compared only once a stimulus exists n turns back."""

    return index >= n_level


def evaluate_match(history: Sequence[Stimulus], n_level: int) -> MatchResult:
    """Ground truth for the last stimulus in ``history``.

    ``history`` includes the current stimulus as its final element, so the
    current turn index is ``len(history) - 1``. Warm-up turns return NO_MATCH.
    """

    if n_level < 1:
        raise ValueError("n_level must be >= 1")
    if not history:
        raise ValueError("history must include the current stimulus")

    index = len(history) - 1
    if not is_scorable(index, n_level):
        return NO_MATCH

    current = history[index]
    target = history[index - n_level]
    return MatchResult(
        visual=current.visual_position == target.visual_position,
        audio=current.audio_symbol == target.audio_symbol,
    )


def match_indices(values: Sequence[T], n_level: int) -> set[int]:
    """Indices i >= n_level where values[i] equals values[i - n_level]."""

    return {i for i in range(n_level, len(values)) if values[i] == values[i - n_level]}
