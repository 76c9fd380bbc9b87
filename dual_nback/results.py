from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .nback_core import MatchResult, Stimulus, Turn, TurnResponse
from .scoring import ConfusionMatrix, ModalityRates
from .settings import Settings


@dataclass(frozen=True, slots=True)
class SessionSummary:
    """Record without the turn log, for list views."""

    id: str
    timestamp: datetime
    seed: int
    settings: Settings
    visual_stats: ConfusionMatrix
    audio_stats: ConfusionMatrix

    @property
    def visual_accuracy(self) -> float:
        return self.visual_stats.balanced_accuracy

    @property
    def audio_accuracy(self) -> float:
        return self.audio_stats.balanced_accuracy


@dataclass(frozen=True, slots=True)
class SessionRecord:
    """Persistable result of a completed session.

    Created once when the last turn closes and never mutated afterwards.
    """

    id: str
    timestamp: datetime
    seed: int
    settings: Settings
    visual_stats: ConfusionMatrix
    audio_stats: ConfusionMatrix
    turns: tuple[Turn, ...]

    @property
    def visual_rates(self) -> ModalityRates:
        return self.visual_stats.rates()

    @property
    def audio_rates(self) -> ModalityRates:
        return self.audio_stats.rates()

    @property
    def visual_accuracy(self) -> float:
        return self.visual_stats.balanced_accuracy

    @property
    def audio_accuracy(self) -> float:
        return self.audio_stats.balanced_accuracy

    def summary(self) -> SessionSummary:
        return SessionSummary(
            id=self.id,
            timestamp=self.timestamp,
            seed=self.seed,
            settings=self.settings,
            visual_stats=self.visual_stats,
            audio_stats=self.audio_stats,
        )


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def make_session_id(timestamp: datetime) -> str:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    delta = timestamp - _EPOCH
    ns = (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1000
    return f"session_{ns}"


def timestamp_to_iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def timestamp_from_iso(raw: str) -> datetime:
    ts = datetime.fromisoformat(str(raw))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def turn_to_dict(turn: Turn) -> dict[str, Any]:
    return {
        "index": turn.index,
        "visual_position": turn.stimulus.visual_position,
        "audio_symbol": turn.stimulus.audio_symbol,
        "is_visual_match": turn.ground_truth.visual,
        "is_audio_match": turn.ground_truth.audio,
        "user_visual_match": turn.response.visual,
        "user_audio_match": turn.response.audio,
        "scored": turn.scored,
    }


def turn_from_dict(data: dict[str, Any]) -> Turn:
    return Turn(
        index=int(data["index"]),
        stimulus=Stimulus(
            visual_position=int(data["visual_position"]),
            audio_symbol=str(data["audio_symbol"]),
        ),
        ground_truth=MatchResult(
            visual=bool(data["is_visual_match"]),
            audio=bool(data["is_audio_match"]),
        ),
        response=TurnResponse(
            visual=bool(data["user_visual_match"]),
            audio=bool(data["user_audio_match"]),
        ),
        scored=bool(data.get("scored", True)),
    )


def summary_to_dict(summary: SessionSummary | SessionRecord) -> dict[str, Any]:
    return {
        "id": summary.id,
        "timestamp": timestamp_to_iso(summary.timestamp),
        "seed": summary.seed,
        "settings": summary.settings.to_dict(),
        "visual_stats": summary.visual_stats.to_dict(),
        "audio_stats": summary.audio_stats.to_dict(),
    }


def record_to_dict(record: SessionRecord) -> dict[str, Any]:
    data = summary_to_dict(record)
    data["turns"] = [turn_to_dict(t) for t in record.turns]
    return data


def record_from_dict(data: dict[str, Any]) -> SessionRecord:
    return SessionRecord(
        id=str(data["id"]),
        timestamp=timestamp_from_iso(data["timestamp"]),
        seed=int(data.get("seed", 0)),
        settings=Settings.from_dict(data["settings"]),
        visual_stats=ConfusionMatrix.from_dict(data["visual_stats"]),
        audio_stats=ConfusionMatrix.from_dict(data["audio_stats"]),
        turns=tuple(turn_from_dict(t) for t in data.get("turns", [])),
    )


def suggest_next_n_level(
    record: SessionRecord | SessionSummary,
    *,
    high: float = 0.9,
    low: float = 0.5,
) -> int:
    """Level to play next based on mean balanced accuracy of both modalities."""

    if not (0.0 <= low <= high <= 1.0):
        raise ValueError("expected 0 <= low <= high <= 1")
    n = int(record.settings.n_level)
    accuracy = (record.visual_accuracy + record.audio_accuracy) / 2.0
    if accuracy >= high:
        return n + 1
    if accuracy < low and n > 1:
        return n - 1
    return n
