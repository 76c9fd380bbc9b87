"""Simulated sessions, used to seed a history store with plausible data."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger

from .clock import SystemWallClock, WallClock
from .engine import SessionEngine
from .nback_core import SeededRng, SessionPhase
from .persistence import HistoryStore
from .results import SessionRecord
from .settings import Settings


@dataclass(frozen=True, slots=True)
class FixedWallClock:
    at: datetime

    def utc_now(self) -> datetime:
        return self.at


def simulate_session(
    settings: Settings,
    *,
    seed: int,
    press_probability: float = 0.2,
    wall_clock: WallClock | None = None,
    store: HistoryStore | None = None,
) -> SessionRecord:
    """Play a whole session pressing each button at random."""

    if not (0.0 <= press_probability <= 1.0):
        raise ValueError("press_probability must be in [0.0, 1.0]")

    presser = SeededRng(seed)
    engine = SessionEngine(seed=seed, store=store, wall_clock=wall_clock)
    snap = engine.start(settings)
    while snap.phase is SessionPhase.RUNNING:
        snap = engine.submit_response(
            visual=presser.chance(press_probability),
            audio=presser.chance(press_probability),
        )
    assert snap.last_record is not None
    return snap.last_record


def generate_practice_history(
    store: HistoryStore,
    *,
    seed: int,
    count: int = 15,
    now: datetime | None = None,
) -> list[SessionRecord]:
    """Save ``count`` simulated sessions, one per day going back from ``now``."""

    if count < 0:
        raise ValueError("count must be >= 0")
    rng = SeededRng(seed)
    end = now if now is not None else SystemWallClock().utc_now()

    records: list[SessionRecord] = []
    for i in range(count):
        settings = Settings(
            n_level=rng.randint(2, 4),
            turn_interval_ms=rng.randint(2000, 3000),
            session_length=rng.randint(20, 30),
        )
        record = simulate_session(
            settings,
            seed=rng.randint(1, 2**31 - 1),
            wall_clock=FixedWallClock(end - timedelta(days=i)),
            store=store,
        )
        records.append(record)
    logger.info("Generated {} simulated sessions", len(records))
    return records
