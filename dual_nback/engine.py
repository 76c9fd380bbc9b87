"""Dual n-back session engine.

The engine is a three-phase machine, IDLE -> RUNNING -> FINISHED, where
FINISHED can be restarted. Each phase has its own state object, so a running
session always has a current stimulus and a finished one always has a record.

Turn advancement is driven entirely by ``submit_response``: the engine holds
no timers. The caller owns the inter-turn interval and merges partial
presses into one response per turn (see ``pacing.TurnPacer``). A timeout
with no press is submitted as ``(False, False)``.

Starting while a session is RUNNING is rejected with ``StateError``; use
``abandon()`` first to drop the running session without a record.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from loguru import logger

from .clock import SystemWallClock, WallClock
from .errors import PersistenceError, StateError
from .matching import evaluate_match, is_scorable
from .nback_core import MatchResult, SeededRng, SessionPhase, Stimulus, Turn, TurnResponse, new_seed
from .persistence import HistoryStore
from .results import SessionRecord, SessionSummary, make_session_id
from .scoring import ConfusionMatrix, ScoreAccumulator
from .settings import Settings, validate_settings
from .stimulus import GeneratorFactory, StimulusGenerator, build_stimulus_generator


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Read-only view of the engine for a caller (pure data)."""

    phase: SessionPhase
    settings: Settings | None
    current_turn_index: int
    current_stimulus: Stimulus | None
    turns_remaining: int
    visual_stats: ConfusionMatrix
    audio_stats: ConfusionMatrix
    # Ground truth of the turn that just closed, for "missed" feedback.
    last_turn_visual_match: bool | None = None
    last_turn_audio_match: bool | None = None
    last_record: SessionRecord | None = None

    @property
    def is_running(self) -> bool:
        return self.phase is SessionPhase.RUNNING

    @property
    def visual_hit_rate(self) -> float:
        return self.visual_stats.hit_rate

    @property
    def visual_false_alarm_rate(self) -> float:
        return self.visual_stats.false_alarm_rate

    @property
    def audio_hit_rate(self) -> float:
        return self.audio_stats.hit_rate

    @property
    def audio_false_alarm_rate(self) -> float:
        return self.audio_stats.false_alarm_rate


@dataclass(slots=True)
class _Idle:
    pass


@dataclass(slots=True)
class _Running:
    settings: Settings
    seed: int
    generator: StimulusGenerator
    current: Stimulus
    stimuli: list[Stimulus] = field(default_factory=list)
    turns: list[Turn] = field(default_factory=list)
    scores: ScoreAccumulator = field(default_factory=ScoreAccumulator)
    last_truth: MatchResult | None = None

    @property
    def index(self) -> int:
        return len(self.turns)


@dataclass(slots=True)
class _Finished:
    record: SessionRecord
    last_truth: MatchResult | None


_EngineState = _Idle | _Running | _Finished


class SessionEngine:
    """Runs one session at a time.

    - Deterministic: every session draws its stimuli from a ``SeededRng``
      seeded with a per-session seed, itself drawn from the engine seed
      unless passed to ``start``.
    - Time of day comes only from the injected ``WallClock``.
    """

    def __init__(
        self,
        *,
        seed: int,
        store: HistoryStore | None = None,
        wall_clock: WallClock | None = None,
        generator_factory: GeneratorFactory | None = None,
    ) -> None:
        self._seed = int(seed)
        self._master_rng = SeededRng(self._seed)
        self._store = store
        self._wall_clock: WallClock = wall_clock if wall_clock is not None else SystemWallClock()
        self._generator_factory: GeneratorFactory = (
            generator_factory if generator_factory is not None else build_stimulus_generator
        )
        self._state: _EngineState = _Idle()
        self._lock = threading.RLock()

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def phase(self) -> SessionPhase:
        state = self._state
        if isinstance(state, _Running):
            return SessionPhase.RUNNING
        if isinstance(state, _Finished):
            return SessionPhase.FINISHED
        return SessionPhase.IDLE

    @property
    def settings(self) -> Settings | None:
        state = self._state
        if isinstance(state, _Running):
            return state.settings
        if isinstance(state, _Finished):
            return state.record.settings
        return None

    @property
    def turns(self) -> tuple[Turn, ...]:
        state = self._state
        if isinstance(state, _Running):
            return tuple(state.turns)
        if isinstance(state, _Finished):
            return state.record.turns
        return ()

    @property
    def last_record(self) -> SessionRecord | None:
        state = self._state
        return state.record if isinstance(state, _Finished) else None

    def start(self, settings: Settings, *, seed: int | None = None) -> SessionSnapshot:
        with self._lock:
            if isinstance(self._state, _Running):
                raise StateError("a session is already running; abandon it before starting another")
            settings = validate_settings(settings)

            session_seed = new_seed(self._master_rng) if seed is None else int(seed)
            generator = self._generator_factory(settings, SeededRng(session_seed))
            first = generator.next_stimulus(())

            running = _Running(
                settings=settings,
                seed=session_seed,
                generator=generator,
                current=first,
                stimuli=[first],
            )
            logger.info(
                "Session started: n={} length={} interval={}ms policy={} seed={}",
                settings.n_level,
                settings.session_length,
                settings.turn_interval_ms,
                settings.match_policy.value,
                session_seed,
            )
            self._state = running
            return self._snapshot_locked()

    def submit_response(self, visual: bool = False, audio: bool = False) -> SessionSnapshot:
        """Close the current turn with the merged user response and advance."""

        with self._lock:
            state = self._state
            if not isinstance(state, _Running):
                raise StateError(f"cannot submit a response while {self.phase.value}")

            settings = state.settings
            index = state.index
            response = TurnResponse(visual=bool(visual), audio=bool(audio))

            truth = evaluate_match(state.stimuli, settings.n_level)
            scored = is_scorable(index, settings.n_level)
            if scored:
                state.scores.fold_turn(ground_truth=truth, response=response)

            state.turns.append(
                Turn(
                    index=index,
                    stimulus=state.current,
                    ground_truth=truth,
                    response=response,
                    scored=scored,
                )
            )
            state.last_truth = truth
            logger.debug(
                "Turn {} closed: stimulus=({}, {}) truth=({}, {}) response=({}, {})",
                index,
                state.current.visual_position,
                state.current.audio_symbol,
                truth.visual,
                truth.audio,
                response.visual,
                response.audio,
            )

            if index + 1 == settings.session_length:
                self._finish_locked(state)
                return self._snapshot_locked()

            nxt = state.generator.next_stimulus(tuple(state.stimuli))
            state.stimuli.append(nxt)
            state.current = nxt
            return self._snapshot_locked()

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def abandon(self) -> None:
        """Drop the current session without producing a record."""

        with self._lock:
            state = self._state
            if isinstance(state, _Running):
                logger.info("Session abandoned at turn {} of {}", state.index, state.settings.session_length)
            self._state = _Idle()

    def history(self) -> list[SessionSummary]:
        return self._require_store().list_summaries()

    def session_details(self, session_id: str) -> SessionRecord | None:
        return self._require_store().load(session_id)

    def _require_store(self) -> HistoryStore:
        if self._store is None:
            raise StateError("no history store configured")
        return self._store

    def _finish_locked(self, state: _Running) -> None:
        timestamp = self._wall_clock.utc_now()
        record = SessionRecord(
            id=make_session_id(timestamp),
            timestamp=timestamp,
            seed=state.seed,
            settings=state.settings,
            visual_stats=state.scores.visual,
            audio_stats=state.scores.audio,
            turns=tuple(state.turns),
        )
        # The in-memory result is authoritative even if storing it fails.
        self._state = _Finished(record=record, last_truth=state.last_truth)
        logger.info(
            "Session {} finished: visual={} audio={}",
            record.id,
            record.visual_stats.to_dict(),
            record.audio_stats.to_dict(),
        )

        if self._store is None:
            return
        try:
            self._store.save(record)
        except PersistenceError as exc:
            logger.error("Failed to store session {}: {}", record.id, exc)
            if exc.record is None:
                exc.record = record
            raise
        except Exception as exc:
            logger.error("Failed to store session {}: {}", record.id, exc)
            raise PersistenceError(f"failed to store {record.id}: {exc}", record=record) from exc

    def _snapshot_locked(self) -> SessionSnapshot:
        state = self._state
        if isinstance(state, _Running):
            truth = state.last_truth
            return SessionSnapshot(
                phase=SessionPhase.RUNNING,
                settings=state.settings,
                current_turn_index=state.index,
                current_stimulus=state.current,
                turns_remaining=state.settings.session_length - state.index,
                visual_stats=state.scores.visual,
                audio_stats=state.scores.audio,
                last_turn_visual_match=None if truth is None else truth.visual,
                last_turn_audio_match=None if truth is None else truth.audio,
            )
        if isinstance(state, _Finished):
            record = state.record
            truth = state.last_truth
            return SessionSnapshot(
                phase=SessionPhase.FINISHED,
                settings=record.settings,
                current_turn_index=record.settings.session_length,
                current_stimulus=None,
                turns_remaining=0,
                visual_stats=record.visual_stats,
                audio_stats=record.audio_stats,
                last_turn_visual_match=None if truth is None else truth.visual,
                last_turn_audio_match=None if truth is None else truth.audio,
                last_record=record,
            )
        return SessionSnapshot(
            phase=SessionPhase.IDLE,
            settings=None,
            current_turn_index=0,
            current_stimulus=None,
            turns_remaining=0,
            visual_stats=ConfusionMatrix(),
            audio_stats=ConfusionMatrix(),
        )
