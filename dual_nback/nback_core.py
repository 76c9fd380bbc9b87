from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

T = TypeVar("T")


class SessionPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass(frozen=True, slots=True)
class Stimulus:
    visual_position: int
    audio_symbol: str


@dataclass(frozen=True, slots=True)
class TurnResponse:
    visual: bool = False
    audio: bool = False


NO_RESPONSE = TurnResponse()


@dataclass(frozen=True, slots=True)
class MatchResult:
    visual: bool
    audio: bool

    @property
    def any(self) -> bool:
        return self.visual or self.audio


NO_MATCH = MatchResult(visual=False, audio=False)


@dataclass(frozen=True, slots=True)
class Turn:
    """A closed turn: stimulus, ground truth and the user's merged response."""

    index: int
    stimulus: Stimulus
    ground_truth: MatchResult
    response: TurnResponse
    # False for warm-up turns: ground truth is NO_MATCH and nothing was folded.
    scored: bool = True


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)

    def randrange(self, n: int) -> int:
        return self._rng.randrange(n)

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)

    def random(self) -> float:
        return self._rng.random()

    def chance(self, p: float) -> bool:
        """True with probability ``p``; p <= 0 never, p >= 1 always (no draw)."""

        if p <= 0.0:
            return False
        if p >= 1.0:
            return True
        return self._rng.random() < p

    def shuffle(self, items: list[T]) -> None:
        self._rng.shuffle(items)

    def uniform(self, a: float, b: float) -> float:
        return self._rng.uniform(a, b)


def new_seed(rng: SeededRng) -> int:
    return rng.randint(1, 2**31 - 1)
