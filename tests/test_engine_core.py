from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from dual_nback.engine import SessionEngine
from dual_nback.errors import PersistenceError, StateError, ValidationError
from dual_nback.nback_core import NO_MATCH, SeededRng, SessionPhase, Stimulus
from dual_nback.persistence import InMemoryHistoryStore
from dual_nback.results import SessionRecord
from dual_nback.settings import MatchPolicy, Settings
from dual_nback.stimulus import PlannedStimulusGenerator, build_stimulus_generator


@dataclass
class FakeWallClock:
    at: datetime = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def utc_now(self) -> datetime:
        return self.at


class ScriptedGenerator:
    def __init__(self, positions: Sequence[int], symbols: Sequence[str]) -> None:
        self._stimuli = [Stimulus(visual_position=p, audio_symbol=s) for p, s in zip(positions, symbols)]

    def next_stimulus(self, history: Sequence[Stimulus]) -> Stimulus:
        return self._stimuli[len(history)]


def _scripted(positions: Sequence[int], symbols: Sequence[str]):
    def factory(settings: Settings, rng: SeededRng) -> ScriptedGenerator:
        return ScriptedGenerator(positions, symbols)

    return factory


class FailingStore(InMemoryHistoryStore):
    def __init__(self, exc: Exception) -> None:
        super().__init__()
        self._exc = exc

    def save(self, record: SessionRecord) -> None:
        raise self._exc


def _play_silently(engine: SessionEngine) -> None:
    while engine.phase is SessionPhase.RUNNING:
        engine.submit_response()


def test_invalid_settings_are_rejected_and_state_is_unchanged() -> None:
    engine = SessionEngine(seed=1)

    for bad in (
        Settings(n_level=0),
        Settings(turn_interval_ms=0),
        Settings(n_level=3, session_length=3),
    ):
        with pytest.raises(ValidationError):
            engine.start(bad)
        assert engine.phase is SessionPhase.IDLE


def test_submit_outside_running_is_a_state_error() -> None:
    engine = SessionEngine(seed=1, wall_clock=FakeWallClock())
    with pytest.raises(StateError):
        engine.submit_response(visual=True)

    engine.start(Settings(n_level=1, session_length=2))
    _play_silently(engine)
    assert engine.phase is SessionPhase.FINISHED
    with pytest.raises(StateError):
        engine.submit_response()


def test_start_while_running_is_rejected() -> None:
    engine = SessionEngine(seed=3)
    engine.start(Settings())
    engine.submit_response()

    with pytest.raises(StateError):
        engine.start(Settings(n_level=1))

    snap = engine.snapshot()
    assert snap.is_running
    assert snap.current_turn_index == 1
    assert snap.settings == Settings()


def test_worked_two_back_session() -> None:
    engine = SessionEngine(
        seed=0,
        wall_clock=FakeWallClock(),
        generator_factory=_scripted([3, 5, 3, 1, 5], ["A", "B", "C", "D", "B"]),
    )
    snap = engine.start(Settings(n_level=2, session_length=5))
    assert snap.current_stimulus == Stimulus(visual_position=3, audio_symbol="A")
    assert snap.turns_remaining == 5

    engine.submit_response()
    engine.submit_response()
    snap = engine.submit_response(visual=True)

    assert snap.visual_stats.true_positives == 1
    assert snap.audio_stats.true_negatives == 1
    assert snap.last_turn_visual_match is True
    assert snap.last_turn_audio_match is False

    engine.submit_response()
    snap = engine.submit_response()

    assert snap.phase is SessionPhase.FINISHED
    assert snap.current_turn_index == 5
    assert snap.current_stimulus is None
    assert snap.turns_remaining == 0
    assert snap.visual_stats.true_positives == 1
    assert snap.visual_stats.true_negatives == 2
    assert snap.audio_stats.true_negatives == 3
    assert snap.visual_hit_rate == 1.0
    assert snap.visual_false_alarm_rate == 0.0
    # No audio match occurred, so the hit rate falls back to its default.
    assert snap.audio_hit_rate == 1.0

    record = snap.last_record
    assert record is not None
    assert [t.index for t in record.turns] == [0, 1, 2, 3, 4]
    assert [t.scored for t in record.turns] == [False, False, True, True, True]


def test_warmup_turns_are_never_matches() -> None:
    engine = SessionEngine(
        seed=0,
        wall_clock=FakeWallClock(),
        generator_factory=_scripted([4, 4, 4, 4], ["K", "K", "K", "K"]),
    )
    engine.start(Settings(n_level=3, session_length=4))
    for _ in range(3):
        snap = engine.submit_response(visual=True, audio=True)
        assert snap.visual_stats.total == 0
        assert snap.audio_stats.total == 0

    snap = engine.submit_response(visual=True, audio=True)
    record = snap.last_record
    assert record is not None
    assert all(t.ground_truth == NO_MATCH for t in record.turns[:3])
    assert snap.visual_stats.true_positives == 1
    assert snap.audio_stats.true_positives == 1


def test_totals_equal_scorable_turns() -> None:
    settings = Settings(n_level=3, session_length=24)
    engine = SessionEngine(seed=21, wall_clock=FakeWallClock())
    engine.start(settings)
    presser = SeededRng(4)
    while engine.phase is SessionPhase.RUNNING:
        engine.submit_response(visual=presser.chance(0.5), audio=presser.chance(0.5))

    record = engine.last_record
    assert record is not None
    assert len(record.turns) == 24
    assert record.visual_stats.total == 21
    assert record.audio_stats.total == 21


def test_never_responding_scores_zero_hits() -> None:
    engine = SessionEngine(seed=8, wall_clock=FakeWallClock())
    engine.start(Settings(n_level=2, session_length=20))
    _play_silently(engine)

    snap = engine.snapshot()
    # The teaching trial guarantees at least one match per modality.
    assert snap.visual_stats.matches >= 1
    assert snap.visual_hit_rate == 0.0
    assert snap.audio_hit_rate == 0.0
    assert snap.visual_false_alarm_rate == 0.0
    assert snap.audio_false_alarm_rate == 0.0


def test_snapshot_is_idempotent() -> None:
    engine = SessionEngine(seed=2)
    engine.start(Settings())
    engine.submit_response(audio=True)

    assert engine.snapshot() == engine.snapshot()
    assert engine.snapshot().current_turn_index == 1


def test_same_seed_same_record() -> None:
    def play() -> SessionRecord:
        engine = SessionEngine(seed=1234, wall_clock=FakeWallClock())
        engine.start(Settings(n_level=2, session_length=25))
        presser = SeededRng(99)
        while engine.phase is SessionPhase.RUNNING:
            engine.submit_response(visual=presser.chance(0.3), audio=presser.chance(0.3))
        assert engine.last_record is not None
        return engine.last_record

    assert play() == play()


def test_explicit_seed_overrides_master_stream() -> None:
    a = SessionEngine(seed=1)
    b = SessionEngine(seed=2)
    assert a.start(Settings(), seed=50).current_stimulus == b.start(Settings(), seed=50).current_stimulus


def test_restart_after_finish_resets_statistics() -> None:
    engine = SessionEngine(seed=6, wall_clock=FakeWallClock())
    engine.start(Settings(n_level=1, session_length=5))
    _play_silently(engine)
    assert engine.snapshot().visual_stats.total == 4

    snap = engine.start(Settings(n_level=1, session_length=5))
    assert snap.phase is SessionPhase.RUNNING
    assert snap.current_turn_index == 0
    assert snap.visual_stats.total == 0
    assert snap.last_record is None


def test_abandon_returns_to_idle_without_record() -> None:
    store = InMemoryHistoryStore()
    engine = SessionEngine(seed=5, store=store)
    engine.start(Settings())
    engine.submit_response()
    engine.abandon()

    assert engine.phase is SessionPhase.IDLE
    assert engine.last_record is None
    assert engine.turns == ()
    assert store.list_summaries() == []


def test_finished_session_is_stored_and_queryable() -> None:
    store = InMemoryHistoryStore()
    engine = SessionEngine(seed=10, store=store, wall_clock=FakeWallClock())
    engine.start(Settings(n_level=1, session_length=6))
    _play_silently(engine)

    record = engine.last_record
    assert record is not None
    assert [s.id for s in engine.history()] == [record.id]
    assert engine.session_details(record.id) == record
    assert engine.session_details("session_0") is None


def test_history_requires_a_store() -> None:
    engine = SessionEngine(seed=1)
    with pytest.raises(StateError):
        engine.history()
    with pytest.raises(StateError):
        engine.session_details("session_1")


@pytest.mark.parametrize("exc", [PersistenceError("disk full"), OSError("read-only file system")])
def test_store_failure_keeps_result_authoritative(exc: Exception) -> None:
    engine = SessionEngine(seed=4, store=FailingStore(exc), wall_clock=FakeWallClock())
    engine.start(Settings(n_level=1, session_length=3))
    engine.submit_response()
    engine.submit_response()

    with pytest.raises(PersistenceError) as excinfo:
        engine.submit_response()

    assert engine.phase is SessionPhase.FINISHED
    assert excinfo.value.record is not None
    assert excinfo.value.record == engine.last_record
    assert engine.snapshot().visual_stats.total == 2


def test_enum_values_given_as_strings_are_normalised() -> None:
    built: list[object] = []

    def factory(settings: Settings, rng: SeededRng):
        gen = build_stimulus_generator(settings, rng)
        built.append(gen)
        return gen

    engine = SessionEngine(seed=1, generator_factory=factory)
    snap = engine.start(Settings(match_policy="planned", auditory_symbol_set="non_confusing_letters"))

    assert snap.phase is SessionPhase.RUNNING
    assert snap.settings is not None
    assert snap.settings.match_policy is MatchPolicy.PLANNED
    assert isinstance(built[0], PlannedStimulusGenerator)


def test_unknown_enum_string_leaves_engine_idle() -> None:
    engine = SessionEngine(seed=1)
    with pytest.raises(ValidationError) as excinfo:
        engine.start(Settings(match_policy="sometimes"))
    assert excinfo.value.field == "match_policy"
    assert engine.phase is SessionPhase.IDLE


def test_failed_start_does_not_replace_finished_session() -> None:
    calls = {"n": 0}

    def flaky(settings: Settings, rng: SeededRng):
        calls["n"] += 1
        if calls["n"] > 1:
            raise RuntimeError("generator unavailable")
        return ScriptedGenerator([0, 1], ["A", "B"])

    engine = SessionEngine(seed=1, wall_clock=FakeWallClock(), generator_factory=flaky)
    engine.start(Settings(n_level=1, session_length=2))
    _play_silently(engine)
    record = engine.last_record

    with pytest.raises(RuntimeError):
        engine.start(Settings(n_level=1, session_length=2))
    assert engine.phase is SessionPhase.FINISHED
    assert engine.last_record == record


def test_abandon_after_finish_clears_the_record() -> None:
    engine = SessionEngine(seed=5, wall_clock=FakeWallClock())
    engine.start(Settings(n_level=1, session_length=3))
    _play_silently(engine)
    assert engine.last_record is not None

    engine.abandon()

    assert engine.phase is SessionPhase.IDLE
    assert engine.last_record is None
    assert engine.snapshot().last_record is None


def test_concurrent_starts_admit_exactly_one_session() -> None:
    engine = SessionEngine(seed=1, wall_clock=FakeWallClock())
    barrier = threading.Barrier(2)
    outcomes: list[str] = []

    def attempt() -> None:
        barrier.wait()
        try:
            engine.start(Settings(n_level=2, session_length=300))
        except StateError:
            outcomes.append("rejected")
        else:
            outcomes.append("started")

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["rejected", "started"]
    assert engine.phase is SessionPhase.RUNNING


def test_concurrent_submissions_never_interleave_turns() -> None:
    engine = SessionEngine(seed=2, wall_clock=FakeWallClock())
    engine.start(Settings(n_level=2, session_length=300))
    barrier = threading.Barrier(2)

    def press(visual: bool) -> None:
        barrier.wait()
        for _ in range(100):
            engine.submit_response(visual=visual, audio=not visual)

    threads = [threading.Thread(target=press, args=(flag,)) for flag in (True, False)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    turns = engine.turns
    assert [t.index for t in turns] == list(range(200))
    snap = engine.snapshot()
    assert snap.current_turn_index == 200
    assert snap.visual_stats.total == 198
    assert snap.audio_stats.total == 198
    assert sum(t.response.visual for t in turns) == 100
