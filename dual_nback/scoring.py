"""Signal-detection bookkeeping for match judgments.

Each modality keeps its own confusion matrix. A matrix only ever grows by
one cell per scorable turn; it is replaced wholesale at session start.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from .nback_core import MatchResult, TurnResponse


class Outcome(str, Enum):
    TRUE_POSITIVE = "true_positive"
    TRUE_NEGATIVE = "true_negative"
    FALSE_POSITIVE = "false_positive"  # false alarm
    FALSE_NEGATIVE = "false_negative"  # miss


def classify(*, ground_truth: bool, user_response: bool) -> Outcome:
    if ground_truth:
        return Outcome.TRUE_POSITIVE if user_response else Outcome.FALSE_NEGATIVE
    return Outcome.FALSE_POSITIVE if user_response else Outcome.TRUE_NEGATIVE


@dataclass(frozen=True, slots=True)
class ModalityRates:
    hit_rate: float
    miss_rate: float
    false_alarm_rate: float
    correct_rejection_rate: float

    @property
    def balanced_accuracy(self) -> float:
        return (self.hit_rate + self.correct_rejection_rate) / 2.0


@dataclass(frozen=True, slots=True)
class ConfusionMatrix:
    true_positives: int = 0
    true_negatives: int = 0
    false_positives: int = 0
    false_negatives: int = 0

    @property
    def total(self) -> int:
        return self.true_positives + self.true_negatives + self.false_positives + self.false_negatives

    @property
    def matches(self) -> int:
        return self.true_positives + self.false_negatives

    @property
    def non_matches(self) -> int:
        return self.true_negatives + self.false_positives

    @property
    def hit_rate(self) -> float:
        # Nothing to miss counts as a perfect hit rate.
        if self.matches == 0:
            return 1.0
        return self.true_positives / self.matches

    @property
    def false_alarm_rate(self) -> float:
        if self.non_matches == 0:
            return 0.0
        return self.false_positives / self.non_matches

    @property
    def miss_rate(self) -> float:
        return 1.0 - self.hit_rate

    @property
    def correct_rejection_rate(self) -> float:
        return 1.0 - self.false_alarm_rate

    @property
    def balanced_accuracy(self) -> float:
        return (self.hit_rate + self.correct_rejection_rate) / 2.0

    def rates(self) -> ModalityRates:
        return ModalityRates(
            hit_rate=self.hit_rate,
            miss_rate=self.miss_rate,
            false_alarm_rate=self.false_alarm_rate,
            correct_rejection_rate=self.correct_rejection_rate,
        )

    def count(self, outcome: Outcome) -> int:
        return int(getattr(self, _FIELD_BY_OUTCOME[outcome]))

    def to_dict(self) -> dict[str, int]:
        return {
            "true_positives": self.true_positives,
            "true_negatives": self.true_negatives,
            "false_positives": self.false_positives,
            "false_negatives": self.false_negatives,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConfusionMatrix":
        return cls(
            true_positives=int(data.get("true_positives", 0)),
            true_negatives=int(data.get("true_negatives", 0)),
            false_positives=int(data.get("false_positives", 0)),
            false_negatives=int(data.get("false_negatives", 0)),
        )


_FIELD_BY_OUTCOME = {
    Outcome.TRUE_POSITIVE: "true_positives",
    Outcome.TRUE_NEGATIVE: "true_negatives",
    Outcome.FALSE_POSITIVE: "false_positives",
    Outcome.FALSE_NEGATIVE: "false_negatives",
}


def fold(*, ground_truth: bool, user_response: bool, matrix: ConfusionMatrix) -> ConfusionMatrix:
    """Return ``matrix`` with exactly one cell incremented."""

    name = _FIELD_BY_OUTCOME[classify(ground_truth=ground_truth, user_response=user_response)]
    return replace(matrix, **{name: getattr(matrix, name) + 1})


class ScoreAccumulator:
    """Visual and audio confusion matrices for one session."""

    def __init__(self) -> None:
        self._visual = ConfusionMatrix()
        self._audio = ConfusionMatrix()

    @property
    def visual(self) -> ConfusionMatrix:
        return self._visual

    @property
    def audio(self) -> ConfusionMatrix:
        return self._audio

    def fold_turn(self, *, ground_truth: MatchResult, response: TurnResponse) -> tuple[Outcome, Outcome]:
        visual_outcome = classify(ground_truth=ground_truth.visual, user_response=response.visual)
        audio_outcome = classify(ground_truth=ground_truth.audio, user_response=response.audio)
        self._visual = fold(ground_truth=ground_truth.visual, user_response=response.visual, matrix=self._visual)
        self._audio = fold(ground_truth=ground_truth.audio, user_response=response.audio, matrix=self._audio)
        return visual_outcome, audio_outcome
