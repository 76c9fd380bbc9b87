from __future__ import annotations

from loguru import logger

from .clock import Clock
from .engine import SessionEngine, SessionSnapshot
from .errors import PersistenceError
from .nback_core import SessionPhase, TurnResponse
from .settings import Settings


class TurnPacer:
    """Caller-side interval timer that merges presses into one response per turn.

    Presses arrive whenever the user hits a key. Each modality latches on its
    first press; repeats in the same turn are ignored. When the turn interval
    has elapsed, ``update`` submits the merged pair exactly once and starts
    timing the next turn. A turn with no presses is submitted as a double
    "no match".
    """

    def __init__(self, engine: SessionEngine, clock: Clock) -> None:
        self._engine = engine
        self._clock = clock
        self._presented_at_s: float | None = None
        self._visual = False
        self._audio = False
        self._persistence_error: PersistenceError | None = None
        self._last_response: TurnResponse | None = None

    @property
    def engine(self) -> SessionEngine:
        return self._engine

    @property
    def visual_pressed(self) -> bool:
        return self._visual

    @property
    def audio_pressed(self) -> bool:
        return self._audio

    @property
    def last_response(self) -> TurnResponse | None:
        """Merged presses submitted for the turn that just closed."""

        return self._last_response

    @property
    def persistence_error(self) -> PersistenceError | None:
        """Store failure from the last finished session, if any."""

        return self._persistence_error

    def start(self, settings: Settings) -> SessionSnapshot:
        snap = self._engine.start(settings)
        self._persistence_error = None
        self._last_response = None
        self._arm()
        return snap

    def stop(self) -> None:
        self._engine.abandon()
        self._presented_at_s = None
        self._visual = False
        self._audio = False
        self._last_response = None

    def press_visual(self) -> bool:
        if not self._accepting() or self._visual:
            return False
        self._visual = True
        return True

    def press_audio(self) -> bool:
        if not self._accepting() or self._audio:
            return False
        self._audio = True
        return True

    def time_remaining_s(self) -> float | None:
        if not self._accepting():
            return None
        settings = self._engine.settings
        assert settings is not None
        assert self._presented_at_s is not None
        elapsed = self._clock.now() - self._presented_at_s
        return max(0.0, settings.turn_interval_ms / 1000.0 - elapsed)

    def update(self) -> SessionSnapshot | None:
        """Submit the merged response if the interval expired.

        Returns the engine snapshot after a submission, else None. At most one
        turn is advanced per call, so a stalled caller never skips turns.
        """

        remaining = self.time_remaining_s()
        if remaining is None or remaining > 0.0:
            return None

        visual, audio = self._visual, self._audio
        self._last_response = TurnResponse(visual=visual, audio=audio)
        try:
            snap = self._engine.submit_response(visual=visual, audio=audio)
        except PersistenceError as exc:
            # The engine already finished; keep the error for the caller to show.
            logger.warning("Session finished but was not stored: {}", exc)
            self._persistence_error = exc
            self._presented_at_s = None
            return self._engine.snapshot()

        if snap.phase is SessionPhase.RUNNING:
            self._arm()
        else:
            self._presented_at_s = None
        return snap

    def _accepting(self) -> bool:
        return self._presented_at_s is not None and self._engine.phase is SessionPhase.RUNNING

    def _arm(self) -> None:
        self._presented_at_s = self._clock.now()
        self._visual = False
        self._audio = False
