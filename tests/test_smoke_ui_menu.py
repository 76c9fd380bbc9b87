from __future__ import annotations

import os
from pathlib import Path


def test_ui_smoke_play_then_change_settings_then_history(tmp_path: Path) -> None:
    # Headless SDL for CI.
    os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
    os.environ.setdefault("SDL_AUDIODRIVER", "dummy")

    import pygame

    from dual_nback.app import run
    from dual_nback.config import SettingsStore

    def key(k: int) -> None:
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, {"key": k, "unicode": ""}))

    # Main Menu -> Play (press both buttons, leave) -> Settings (n-back up) -> History
    script = {
        1: pygame.K_RETURN,
        2: pygame.K_p,
        3: pygame.K_a,
        4: pygame.K_ESCAPE,
        5: pygame.K_DOWN,
        6: pygame.K_RETURN,
        7: pygame.K_RIGHT,
        8: pygame.K_ESCAPE,
        9: pygame.K_DOWN,
        10: pygame.K_RETURN,
        11: pygame.K_ESCAPE,
    }

    def inject(frame: int) -> None:
        if frame in script:
            key(script[frame])

    store = SettingsStore(tmp_path / "settings.json")
    assert run(max_frames=20, event_injector=inject, persist=False, settings_store=store) == 0
    assert store.load().n_level == 3


def test_ui_smoke_generate_history_and_open_details(tmp_path: Path) -> None:
    os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
    os.environ.setdefault("SDL_AUDIODRIVER", "dummy")

    import pygame

    from dual_nback.app import run
    from dual_nback.config import SettingsStore
    from dual_nback.persistence import SqliteHistoryStore

    # Main Menu -> History -> generate -> second session details -> scroll -> back
    script = {
        1: pygame.K_DOWN,
        2: pygame.K_DOWN,
        3: pygame.K_RETURN,
        4: pygame.K_g,
        5: pygame.K_DOWN,
        6: pygame.K_RETURN,
        7: pygame.K_DOWN,
        8: pygame.K_PAGEDOWN,
        9: pygame.K_ESCAPE,
        10: pygame.K_ESCAPE,
    }

    def inject(frame: int) -> None:
        if frame in script:
            pygame.event.post(pygame.event.Event(pygame.KEYDOWN, {"key": script[frame], "unicode": ""}))

    db = tmp_path / "history.db"
    store = SettingsStore(tmp_path / "settings.json")
    assert run(max_frames=15, event_injector=inject, db_path=db, settings_store=store) == 0
    assert len(SqliteHistoryStore(db).list_summaries()) == 15


def test_ui_smoke_reset_all_data_from_settings(tmp_path: Path) -> None:
    os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
    os.environ.setdefault("SDL_AUDIODRIVER", "dummy")

    import pygame

    from dual_nback.app import run
    from dual_nback.config import SettingsStore
    from dual_nback.persistence import SqliteHistoryStore
    from dual_nback.settings import Settings
    from dual_nback.simulation import generate_practice_history

    db = tmp_path / "history.db"
    generate_practice_history(SqliteHistoryStore(db), seed=1, count=3)
    store = SettingsStore(tmp_path / "settings.json")
    store.save(Settings(n_level=4, session_length=40))

    # Main Menu -> Settings -> R -> back
    script = {1: pygame.K_DOWN, 2: pygame.K_RETURN, 3: pygame.K_r, 4: pygame.K_ESCAPE}

    def inject(frame: int) -> None:
        if frame in script:
            pygame.event.post(pygame.event.Event(pygame.KEYDOWN, {"key": script[frame], "unicode": ""}))

    assert run(max_frames=8, event_injector=inject, db_path=db, settings_store=store) == 0
    assert SqliteHistoryStore(db).list_summaries() == []
    assert not store.path.exists()
    assert store.load() == Settings()
