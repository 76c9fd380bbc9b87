"""Pygame shell for the dual n-back trainer.

Screens:
- Play: square grid with the current position lit and the current symbol shown
  as text; position keys (P, H, [, Right) and audio keys (A, L, ], Left).
- Settings: n-level, interval, session length, symbol set, match policy;
  R resets all data (history and settings).
- History: stored sessions, newest first, with balanced accuracy per modality;
  Enter opens the turn-by-turn detail, G generates practice history.

Deterministic timing/scoring/RNG/state lives in dual_nback/* (core modules).
This module only renders and forwards key presses to a TurnPacer.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Protocol

import pygame
from loguru import logger

from .clock import RealClock
from .config import SettingsStore, default_db_path
from .engine import SessionEngine, SessionSnapshot
from .errors import NBackError
from .nback_core import SessionPhase, Turn, TurnResponse
from .pacing import TurnPacer
from .persistence import HistoryStore, InMemoryHistoryStore, SqliteHistoryStore
from .results import SessionRecord, SessionSummary, suggest_next_n_level
from .scoring import ConfusionMatrix
from .settings import AuditorySymbolSet, MatchPolicy, Settings, recommended_session_length
from .simulation import generate_practice_history

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

POSITION_KEYS = (pygame.K_p, pygame.K_h, pygame.K_LEFTBRACKET, pygame.K_RIGHT)
AUDIO_KEYS = (pygame.K_a, pygame.K_l, pygame.K_RIGHTBRACKET, pygame.K_LEFT)

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
CELL_OFF = (9, 20, 106)
CELL_ON = (244, 248, 255)
HIT = (90, 200, 120)
MISS = (220, 90, 90)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


def _draw_frame(surface: pygame.Surface, title: str, title_font: pygame.font.Font) -> pygame.Rect:
    w, h = surface.get_size()
    surface.fill(BG)
    margin = max(10, min(26, w // 34))
    frame = pygame.Rect(margin, margin, max(260, w - margin * 2), max(220, h - margin * 2))
    pygame.draw.rect(surface, PANEL_BG, frame)
    pygame.draw.rect(surface, BORDER, frame, 2)
    label = title_font.render(title, True, TEXT_MAIN)
    surface.blit(label, label.get_rect(midtop=(frame.centerx, frame.y + 12)))
    return frame


def turn_feedback(snap: SessionSnapshot, response: TurnResponse | None) -> list[tuple[str, bool]]:
    """Feedback for the turn that just closed, as (text, good) pairs.

    A match without a press is reported as missed and a press without a
    match as a false alarm; correct rejections and warm-up turns stay silent.
    """

    if response is None or snap.settings is None:
        return []
    if snap.current_turn_index - 1 < snap.settings.n_level:
        return []

    lines: list[tuple[str, bool]] = []
    for label, truth, pressed in (
        ("position", snap.last_turn_visual_match, response.visual),
        ("audio", snap.last_turn_audio_match, response.audio),
    ):
        if truth and pressed:
            lines.append((f"Last turn: {label} match", True))
        elif truth:
            lines.append((f"Last turn: {label} match missed", False))
        elif pressed:
            lines.append((f"Last turn: {label} false alarm", False))
    return lines


def format_history_row(summary: SessionSummary) -> str:
    local = summary.timestamp.astimezone()
    return (
        f"{local:%Y-%m-%d %H:%M}  N={summary.settings.n_level}  "
        f"len={summary.settings.session_length}  "
        f"visual {summary.visual_accuracy * 100:5.1f}%  audio {summary.audio_accuracy * 100:5.1f}%"
    )


def format_rates(label: str, stats: ConfusionMatrix) -> str:
    return (
        f"{label}: hit {stats.hit_rate * 100:.1f}%  miss {stats.miss_rate * 100:.1f}%  "
        f"FA {stats.false_alarm_rate * 100:.1f}%  CR {stats.correct_rejection_rate * 100:.1f}%"
    )


def format_turn_row(turn: Turn) -> str:
    """One line of the turn log: ``*`` marks an expected match, ``<`` a press."""

    def cell(value: object, match: bool, pressed: bool) -> str:
        return f"{value}{'*' if match else ' '}{'<' if pressed else ' '}"

    visual = cell(turn.stimulus.visual_position, turn.ground_truth.visual, turn.response.visual)
    audio = cell(turn.stimulus.audio_symbol, turn.ground_truth.audio, turn.response.audio)
    row = f"{turn.index + 1:>3}   position {visual:<6} audio {audio:<12}"
    return row if turn.scored else f"{row}(warm-up)"


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        key = event.key
        if key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            if self._items:
                self._items[self._selected].action()
        elif key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            if self._is_root:
                self._app.quit()
            else:
                self._app.pop()

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def render(self, surface: pygame.Surface) -> None:
        frame = _draw_frame(surface, self._title, self._title_font)
        y = frame.y + 80
        for idx, item in enumerate(self._items):
            row = pygame.Rect(frame.x + 40, y, frame.w - 80, 40)
            selected = idx == self._selected
            pygame.draw.rect(surface, CELL_ON if selected else CELL_OFF, row)
            pygame.draw.rect(surface, (62, 84, 152), row, 1)
            color = (14, 26, 74) if selected else TEXT_MAIN
            text = self._item_font.render(item.label, True, color)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += 48
        foot = self._hint_font.render("Enter/Space: Select  |  Esc/Backspace: Back", True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))


class SessionScreen:
    def __init__(self, app: App, *, pacer: TurnPacer, settings: Settings) -> None:
        self._app = app
        self._pacer = pacer
        self._settings = settings
        self._title_font = pygame.font.Font(None, 42)
        self._symbol_font = pygame.font.Font(None, 96)
        self._small_font = pygame.font.Font(None, 24)
        self._error: str | None = None
        try:
            self._pacer.start(settings)
        except NBackError as exc:
            logger.warning("Could not start session: {}", exc)
            self._error = str(exc)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            # Leaving mid-session abandons it; no record is produced.
            if self._pacer.engine.phase is SessionPhase.RUNNING:
                self._pacer.stop()
            self._app.pop()
            return
        if event.key in POSITION_KEYS:
            self._pacer.press_visual()
        elif event.key in AUDIO_KEYS:
            self._pacer.press_audio()
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER) and self._pacer.engine.phase is SessionPhase.FINISHED:
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        self._pacer.update()
        snap = self._pacer.engine.snapshot()
        frame = _draw_frame(surface, f"Dual {self._settings.n_level}-Back", self._title_font)

        if self._error is not None:
            msg = self._small_font.render(self._error, True, MISS)
            surface.blit(msg, (frame.x + 40, frame.y + 80))
            return
        if snap.phase is SessionPhase.FINISHED:
            self._render_results(surface, frame, snap)
            return

        self._render_grid(surface, frame, snap)
        self._render_status(surface, frame, snap)

    def _render_grid(self, surface: pygame.Surface, frame: pygame.Rect, snap: SessionSnapshot) -> None:
        size = self._settings.grid_size
        side = min(frame.h - 120, frame.w // 2)
        cell = side // size
        origin_x = frame.x + 40
        origin_y = frame.y + 70
        lit = None if snap.current_stimulus is None else snap.current_stimulus.visual_position
        for i in range(size * size):
            r, c = divmod(i, size)
            rect = pygame.Rect(origin_x + c * cell + 3, origin_y + r * cell + 3, cell - 6, cell - 6)
            pygame.draw.rect(surface, CELL_ON if i == lit else CELL_OFF, rect)
            pygame.draw.rect(surface, (62, 84, 152), rect, 1)

    def _render_status(self, surface: pygame.Surface, frame: pygame.Rect, snap: SessionSnapshot) -> None:
        x = frame.centerx + 40
        y = frame.y + 70
        if snap.current_stimulus is not None:
            sym = self._symbol_font.render(snap.current_stimulus.audio_symbol.upper(), True, TEXT_MAIN)
            surface.blit(sym, (x, y))
            y += sym.get_height() + 16

        lines = [
            f"Turn {snap.current_turn_index + 1} / {self._settings.session_length}",
            f"Position: {'PRESSED' if self._pacer.visual_pressed else '-'}   Audio: {'PRESSED' if self._pacer.audio_pressed else '-'}",
            f"Visual hit {snap.visual_hit_rate * 100:.0f}%  FA {snap.visual_false_alarm_rate * 100:.0f}%",
            f"Audio  hit {snap.audio_hit_rate * 100:.0f}%  FA {snap.audio_false_alarm_rate * 100:.0f}%",
        ]
        for line in lines:
            txt = self._small_font.render(line, True, TEXT_MUTED)
            surface.blit(txt, (x, y))
            y += 28

        for text, good in turn_feedback(snap, self._pacer.last_response):
            txt = self._small_font.render(text, True, HIT if good else MISS)
            surface.blit(txt, (x, y))
            y += 28

    def _render_results(self, surface: pygame.Surface, frame: pygame.Rect, snap: SessionSnapshot) -> None:
        record = snap.last_record
        assert record is not None
        lines = [
            "Session complete",
            "",
            f"Visual accuracy: {record.visual_accuracy * 100:.1f}%",
            f"Audio accuracy:  {record.audio_accuracy * 100:.1f}%",
            f"Suggested next level: N = {suggest_next_n_level(record)}",
        ]
        if self._pacer.persistence_error is not None:
            lines.append("Warning: this session could not be saved.")
        lines += ["", "Press Enter to return."]
        y = frame.y + 80
        for line in lines:
            txt = self._small_font.render(line, True, TEXT_MAIN)
            surface.blit(txt, (frame.x + 40, y))
            y += 28


class SettingsScreen:
    _FIELDS = ("n_level", "turn_interval_ms", "session_length", "auditory_symbol_set", "match_policy")

    def __init__(
        self,
        app: App,
        *,
        store: SettingsStore,
        on_change: Callable[[Settings], None],
        on_reset: Callable[[], Settings],
    ) -> None:
        self._app = app
        self._store = store
        self._on_change = on_change
        self._on_reset = on_reset
        self._settings = store.load()
        self._selected = 0
        self._status: str | None = None
        self._title_font = pygame.font.Font(None, 42)
        self._font = pygame.font.Font(None, 30)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._app.pop()
        elif event.key in (pygame.K_UP, pygame.K_w):
            self._selected = (self._selected - 1) % len(self._FIELDS)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._selected = (self._selected + 1) % len(self._FIELDS)
        elif event.key in (pygame.K_LEFT, pygame.K_RIGHT):
            self._adjust(-1 if event.key == pygame.K_LEFT else 1)
        elif event.key == pygame.K_r:
            self._reset()

    def _reset(self) -> None:
        try:
            self._settings = self._on_reset()
        except (NBackError, OSError) as exc:
            logger.warning("Reset failed: {}", exc)
            self._status = f"Reset failed: {exc}"
            return
        self._status = "History and settings reset."

    def _adjust(self, step: int) -> None:
        s = self._settings
        name = self._FIELDS[self._selected]
        if name == "n_level":
            n = max(1, min(9, s.n_level + step))
            candidate = replace(s, n_level=n, session_length=max(s.session_length, recommended_session_length(n)))
        elif name == "turn_interval_ms":
            candidate = replace(s, turn_interval_ms=max(500, min(5000, s.turn_interval_ms + 250 * step)))
        elif name == "session_length":
            candidate = replace(s, session_length=max(s.n_level + 1, min(100, s.session_length + 5 * step)))
        elif name == "auditory_symbol_set":
            options = list(AuditorySymbolSet)
            idx = (options.index(s.auditory_symbol_set) + step) % len(options)
            candidate = replace(s, auditory_symbol_set=options[idx])
        else:
            options = list(MatchPolicy)
            idx = (options.index(s.match_policy) + step) % len(options)
            candidate = replace(s, match_policy=options[idx])
        try:
            self._store.save(candidate)
        except (NBackError, OSError) as exc:
            logger.warning("Settings not saved: {}", exc)
            return
        self._settings = candidate
        self._status = None
        self._on_change(candidate)

    def render(self, surface: pygame.Surface) -> None:
        frame = _draw_frame(surface, "Settings", self._title_font)
        y = frame.y + 80
        for idx, name in enumerate(self._FIELDS):
            value = getattr(self._settings, name)
            label = f"{name.replace('_', ' ')}: {getattr(value, 'value', value)}"
            color = CELL_ON if idx == self._selected else TEXT_MUTED
            txt = self._font.render(label, True, color)
            surface.blit(txt, (frame.x + 40, y))
            y += 40
        if self._status is not None:
            surface.blit(self._font.render(self._status, True, TEXT_MAIN), (frame.x + 40, y + 10))
        foot = self._hint_font.render("Left/Right: Change  |  R: Reset all data  |  Esc: Back", True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))


class HistoryScreen:
    _VISIBLE_ROWS = 14

    def __init__(self, app: App, *, engine: SessionEngine, store: HistoryStore) -> None:
        self._app = app
        self._engine = engine
        self._store = store
        self._title_font = pygame.font.Font(None, 42)
        self._font = pygame.font.Font(None, 24)
        self._hint_font = pygame.font.Font(None, 22)
        self._summaries: list[SessionSummary] = []
        self._selected = 0
        self._error: str | None = None
        self.refresh()

    def refresh(self) -> None:
        try:
            self._summaries = self._engine.history()
            self._error = None
        except NBackError as exc:
            self._summaries = []
            self._error = str(exc)
        self._selected = min(self._selected, max(0, len(self._summaries) - 1))

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._app.pop()
        elif event.key in (pygame.K_UP, pygame.K_w) and self._summaries:
            self._selected = (self._selected - 1) % len(self._summaries)
        elif event.key in (pygame.K_DOWN, pygame.K_s) and self._summaries:
            self._selected = (self._selected + 1) % len(self._summaries)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER) and self._summaries:
            self._open_selected()
        elif event.key == pygame.K_g:
            self._generate()

    def _open_selected(self) -> None:
        summary = self._summaries[self._selected]
        try:
            record = self._engine.session_details(summary.id)
        except NBackError as exc:
            self._error = str(exc)
            return
        if record is None:
            # Removed since the list was read.
            self.refresh()
            return
        self._app.push(SessionDetailScreen(self._app, record=record))

    def _generate(self) -> None:
        try:
            generate_practice_history(self._store, seed=_new_seed())
        except NBackError as exc:
            logger.warning("Could not generate practice history: {}", exc)
            self._error = str(exc)
            return
        self.refresh()

    def render(self, surface: pygame.Surface) -> None:
        frame = _draw_frame(surface, "History", self._title_font)
        foot = self._hint_font.render(
            "Up/Down: Select  |  Enter: Details  |  G: Generate practice history  |  Esc: Back", True, TEXT_MUTED
        )
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))
        y = frame.y + 70
        if self._error is not None:
            surface.blit(self._font.render(self._error, True, MISS), (frame.x + 40, y))
            return
        if not self._summaries:
            surface.blit(self._font.render("No sessions yet.", True, TEXT_MUTED), (frame.x + 40, y))
            return
        first = max(0, self._selected - self._VISIBLE_ROWS + 1)
        for idx in range(first, min(len(self._summaries), first + self._VISIBLE_ROWS)):
            color = CELL_ON if idx == self._selected else TEXT_MAIN
            surface.blit(self._font.render(format_history_row(self._summaries[idx]), True, color), (frame.x + 40, y))
            y += 26


class SessionDetailScreen:
    """Stats for one stored session plus its turn-by-turn log."""

    _VISIBLE_ROWS = 10

    def __init__(self, app: App, *, record: SessionRecord) -> None:
        self._app = app
        self._record = record
        self._offset = 0
        self._title_font = pygame.font.Font(None, 36)
        self._font = pygame.font.Font(None, 24)
        self._row_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        last = max(0, len(self._record.turns) - self._VISIBLE_ROWS)
        if event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._app.pop()
        elif event.key in (pygame.K_UP, pygame.K_w):
            self._offset = max(0, self._offset - 1)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._offset = min(last, self._offset + 1)
        elif event.key == pygame.K_PAGEDOWN:
            self._offset = min(last, self._offset + self._VISIBLE_ROWS)
        elif event.key == pygame.K_PAGEUP:
            self._offset = max(0, self._offset - self._VISIBLE_ROWS)

    def render(self, surface: pygame.Surface) -> None:
        record = self._record
        settings = record.settings
        frame = _draw_frame(surface, f"Session {record.timestamp.astimezone():%Y-%m-%d %H:%M}", self._title_font)
        header = [
            f"N={settings.n_level}  interval={settings.turn_interval_ms}ms  "
            f"length={settings.session_length}  symbols={settings.auditory_symbol_set.value}",
            format_rates("Visual", record.visual_stats),
            format_rates("Audio", record.audio_stats),
            "* expected match   < your press",
        ]
        y = frame.y + 56
        for line in header:
            surface.blit(self._font.render(line, True, TEXT_MUTED), (frame.x + 40, y))
            y += 24
        y += 6
        for turn in record.turns[self._offset : self._offset + self._VISIBLE_ROWS]:
            surface.blit(self._row_font.render(format_turn_row(turn), True, TEXT_MAIN), (frame.x + 40, y))
            y += 22


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    db_path: Path | None = None,
    persist: bool = True,
    settings_store: SettingsStore | None = None,
) -> int:
    pygame.init()

    pygame.display.set_caption("Dual N-Back Trainer")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)

    store: HistoryStore
    if persist:
        store = SqliteHistoryStore(db_path if db_path is not None else default_db_path())
    else:
        store = InMemoryHistoryStore()
    engine = SessionEngine(seed=_new_seed(), store=store)
    pacer = TurnPacer(engine, RealClock())

    settings_store = settings_store if settings_store is not None else SettingsStore.default()
    current = {"settings": settings_store.load()}

    def set_settings(s: Settings) -> None:
        current["settings"] = s

    def reset_all_data() -> Settings:
        store.clear()
        s = settings_store.reset()
        set_settings(s)
        logger.info("History and settings reset")
        return s

    def open_play() -> None:
        app.push(SessionScreen(app, pacer=pacer, settings=current["settings"]))

    def open_settings() -> None:
        app.push(SettingsScreen(app, store=settings_store, on_change=set_settings, on_reset=reset_all_data))

    def open_history() -> None:
        app.push(HistoryScreen(app, engine=engine, store=store))

    main_items = [
        MenuItem("Play", open_play),
        MenuItem("Settings", open_settings),
        MenuItem("History", open_history),
        MenuItem("Quit", app.quit),
    ]
    app.push(MenuScreen(app, "Dual N-Back", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        if engine.phase is SessionPhase.RUNNING:
            engine.abandon()
        pygame.quit()

    return 0
