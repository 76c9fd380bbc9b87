"""Stimulus generation with a controlled n-back match density.

Two policies are available, selected by ``Settings.match_policy``:

- COIN_FLIP streams one stimulus at a time. Warm-up turns are uniform. The
  first scorable turn is a forced dual match (a teaching trial); after that
  each modality independently repeats its n-back value with probability
  ``match_rate``. A modality that is not forced never repeats by accident,
  so the ground-truth match density equals the forced rate.
- PLANNED lays out the whole session up front with exactly
  ceil((length - n) * match_rate) matches per modality, placing visual
  matches away from audio matches where it can, then replays the plan.

Both read the n-back value at ``history[len(history) - n_level]``, the same
offset ``matching.evaluate_match`` compares against.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from typing import Protocol, TypeVar

from .matching import match_indices
from .nback_core import SeededRng, Stimulus
from .settings import MatchPolicy, Settings

T = TypeVar("T")


class StimulusGenerator(Protocol):
    def next_stimulus(self, history: Sequence[Stimulus]) -> Stimulus:
        """Return the stimulus for turn ``len(history)``."""
        ...


GeneratorFactory = Callable[[Settings, SeededRng], StimulusGenerator]


def _draw_other(alphabet: Sequence[T], avoid: T, rng: SeededRng) -> T:
    candidates = [v for v in alphabet if v != avoid]
    if not candidates:
        raise ValueError("alphabet needs at least two distinct values")
    return rng.choice(candidates)


def next_stimulus(
    history: Sequence[Stimulus],
    *,
    n_level: int,
    symbols: Sequence[str],
    grid_cells: int,
    match_rate: float,
    rng: SeededRng,
) -> Stimulus:
    """Coin-flip policy as a function of history; randomness only from ``rng``."""

    positions = range(grid_cells)
    index = len(history)
    if index < n_level:
        return Stimulus(visual_position=rng.choice(positions), audio_symbol=rng.choice(symbols))

    target = history[index - n_level]
    if index == n_level:
        # Teaching trial: the first comparison is always a dual match.
        return Stimulus(visual_position=target.visual_position, audio_symbol=target.audio_symbol)

    force_visual = rng.chance(match_rate)
    force_audio = rng.chance(match_rate)

    if force_visual:
        position = target.visual_position
    else:
        position = _draw_other(positions, target.visual_position, rng)
    if force_audio:
        symbol = target.audio_symbol
    else:
        symbol = _draw_other(symbols, target.audio_symbol, rng)
    return Stimulus(visual_position=position, audio_symbol=symbol)


class CoinFlipStimulusGenerator:
    def __init__(self, settings: Settings, rng: SeededRng) -> None:
        self._n_level = int(settings.n_level)
        self._symbols = tuple(settings.symbols)
        self._grid_cells = int(settings.grid_cells)
        self._match_rate = float(settings.match_rate)
        self._rng = rng

    def next_stimulus(self, history: Sequence[Stimulus]) -> Stimulus:
        return next_stimulus(
            history,
            n_level=self._n_level,
            symbols=self._symbols,
            grid_cells=self._grid_cells,
            match_rate=self._match_rate,
            rng=self._rng,
        )


def planned_match_count(*, n_level: int, length: int, match_rate: float) -> int:
    return int(math.ceil((length - n_level) * match_rate))


def plan_nback_sequence(
    *,
    n_level: int,
    length: int,
    alphabet: Sequence[T],
    match_count: int,
    rng: SeededRng,
    avoid: frozenset[int] | set[int] = frozenset(),
) -> list[T]:
    """Plan ``length`` values with exactly ``match_count`` n-back matches.

    Match slots are drawn from scorable indices not in ``avoid`` first, and
    only fall back to ``avoid`` indices when there are too few of the former.
    """

    if n_level >= length:
        raise ValueError("n_level must be less than the sequence length")

    slots = list(range(n_level, length))
    preferred = [i for i in slots if i not in avoid]
    fallback = [i for i in slots if i in avoid]
    rng.shuffle(preferred)
    rng.shuffle(fallback)

    count = max(0, min(int(match_count), len(slots)))
    chosen = set(preferred[:count])
    if len(chosen) < count:
        chosen.update(fallback[: count - len(chosen)])

    sequence: list[T] = []
    for i in range(length):
        if i < n_level:
            sequence.append(rng.choice(alphabet))
        elif i in chosen:
            sequence.append(sequence[i - n_level])
        else:
            sequence.append(_draw_other(alphabet, sequence[i - n_level], rng))
    return sequence


def plan_dual_nback_sequences(settings: Settings, rng: SeededRng) -> tuple[list[int], list[str]]:
    """Plan (visual positions, audio symbols) for a whole session.

    Audio is planned first; visual matches then avoid the audio match turns
    so that dual matches only happen when the session is too short to avoid them.
    """

    count = planned_match_count(
        n_level=settings.n_level,
        length=settings.session_length,
        match_rate=settings.match_rate,
    )
    audio = plan_nback_sequence(
        n_level=settings.n_level,
        length=settings.session_length,
        alphabet=settings.symbols,
        match_count=count,
        rng=rng,
    )
    visual = plan_nback_sequence(
        n_level=settings.n_level,
        length=settings.session_length,
        alphabet=range(settings.grid_cells),
        match_count=count,
        rng=rng,
        avoid=match_indices(audio, settings.n_level),
    )
    return visual, audio


class PlannedStimulusGenerator:
    def __init__(self, settings: Settings, rng: SeededRng) -> None:
        visual, audio = plan_dual_nback_sequences(settings, rng)
        self._plan = tuple(
            Stimulus(visual_position=v, audio_symbol=a) for v, a in zip(visual, audio)
        )

    @property
    def plan(self) -> tuple[Stimulus, ...]:
        return self._plan

    def next_stimulus(self, history: Sequence[Stimulus]) -> Stimulus:
        index = len(history)
        if index >= len(self._plan):
            raise IndexError(f"no planned stimulus for turn {index}")
        return self._plan[index]


def build_stimulus_generator(settings: Settings, rng: SeededRng) -> StimulusGenerator:
    if settings.match_policy is MatchPolicy.PLANNED:
        return PlannedStimulusGenerator(settings, rng)
    return CoinFlipStimulusGenerator(settings, rng)
