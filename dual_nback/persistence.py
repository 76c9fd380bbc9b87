from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Protocol

from loguru import logger

from .errors import PersistenceError
from .nback_core import MatchResult, Stimulus, Turn, TurnResponse
from .results import (
    SessionRecord,
    SessionSummary,
    timestamp_from_iso,
    timestamp_to_iso,
)
from .scoring import ConfusionMatrix
from .settings import Settings

SCHEMA_VERSION = 1


class HistoryStore(Protocol):
    """Durable, append-only store of completed sessions."""

    def save(self, record: SessionRecord) -> None: ...

    def list_summaries(self) -> list[SessionSummary]:
        """Newest first."""
        ...

    def load(self, session_id: str) -> SessionRecord | None: ...

    def clear(self) -> None: ...


class InMemoryHistoryStore:
    def __init__(self) -> None:
        self._records: dict[str, SessionRecord] = {}

    def save(self, record: SessionRecord) -> None:
        if record.id in self._records:
            raise PersistenceError(f"session {record.id} already stored", record=record)
        self._records[record.id] = record

    def list_summaries(self) -> list[SessionSummary]:
        records = sorted(self._records.values(), key=lambda r: r.timestamp, reverse=True)
        return [r.summary() for r in records]

    def load(self, session_id: str) -> SessionRecord | None:
        return self._records.get(session_id)

    def clear(self) -> None:
        self._records.clear()


def open_db(path: Path) -> sqlite3.Connection:
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session_record (
                id TEXT PRIMARY KEY,
                timestamp_utc TEXT NOT NULL,
                rng_seed INTEGER NOT NULL,
                settings_json TEXT NOT NULL,
                visual_tp INTEGER NOT NULL,
                visual_tn INTEGER NOT NULL,
                visual_fp INTEGER NOT NULL,
                visual_fn INTEGER NOT NULL,
                audio_tp INTEGER NOT NULL,
                audio_tn INTEGER NOT NULL,
                audio_fp INTEGER NOT NULL,
                audio_fn INTEGER NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS turn_event (
                session_id TEXT NOT NULL REFERENCES session_record(id) ON DELETE CASCADE,
                turn_index INTEGER NOT NULL,
                visual_position INTEGER NOT NULL,
                audio_symbol TEXT NOT NULL,
                is_visual_match INTEGER NOT NULL,
                is_audio_match INTEGER NOT NULL,
                user_visual_match INTEGER NOT NULL,
                user_audio_match INTEGER NOT NULL,
                scored INTEGER NOT NULL,
                PRIMARY KEY (session_id, turn_index)
            );
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_session_record_timestamp ON session_record(timestamp_utc);"
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


_SUMMARY_COLUMNS = (
    "id, timestamp_utc, rng_seed, settings_json, "
    "visual_tp, visual_tn, visual_fp, visual_fn, "
    "audio_tp, audio_tn, audio_fp, audio_fn"
)


def _summary_from_row(row: tuple) -> SessionSummary:
    return SessionSummary(
        id=str(row[0]),
        timestamp=timestamp_from_iso(row[1]),
        seed=int(row[2]),
        settings=Settings.from_dict(json.loads(row[3])),
        visual_stats=ConfusionMatrix(int(row[4]), int(row[5]), int(row[6]), int(row[7])),
        audio_stats=ConfusionMatrix(int(row[8]), int(row[9]), int(row[10]), int(row[11])),
    )


class SqliteHistoryStore:
    """sqlite-backed history: session_record -> turn_event.

    One connection per call, so the store is safe to hand to any caller
    thread.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        try:
            return open_db(self._path)
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"cannot open history db {self._path}: {exc}") from exc

    def save(self, record: SessionRecord) -> None:
        conn = self._connect()
        try:
            _insert_record(conn=conn, record=record)
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to save {record.id}: {exc}", record=record) from exc
        finally:
            conn.close()
        logger.debug("Stored session {} ({} turns) in {}", record.id, len(record.turns), self._path)

    def list_summaries(self) -> list[SessionSummary]:
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT {_SUMMARY_COLUMNS} FROM session_record ORDER BY timestamp_utc DESC, id DESC"
            ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to list sessions: {exc}") from exc
        finally:
            conn.close()

        summaries: list[SessionSummary] = []
        for row in rows:
            try:
                summaries.append(_summary_from_row(row))
            except (ValueError, KeyError) as exc:
                logger.warning("Skipping unreadable session {}: {}", row[0], exc)
        return summaries

    def load(self, session_id: str) -> SessionRecord | None:
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT {_SUMMARY_COLUMNS} FROM session_record WHERE id = ?",
                (str(session_id),),
            ).fetchone()
            if row is None:
                return None
            turn_rows = conn.execute(
                """
                SELECT turn_index, visual_position, audio_symbol,
                       is_visual_match, is_audio_match,
                       user_visual_match, user_audio_match, scored
                FROM turn_event WHERE session_id = ? ORDER BY turn_index
                """,
                (str(session_id),),
            ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to load {session_id}: {exc}") from exc
        finally:
            conn.close()

        summary = _summary_from_row(row)
        turns = tuple(
            Turn(
                index=int(t[0]),
                stimulus=Stimulus(visual_position=int(t[1]), audio_symbol=str(t[2])),
                ground_truth=MatchResult(visual=bool(t[3]), audio=bool(t[4])),
                response=TurnResponse(visual=bool(t[5]), audio=bool(t[6])),
                scored=bool(t[7]),
            )
            for t in turn_rows
        )
        return SessionRecord(
            id=summary.id,
            timestamp=summary.timestamp,
            seed=summary.seed,
            settings=summary.settings,
            visual_stats=summary.visual_stats,
            audio_stats=summary.audio_stats,
            turns=turns,
        )

    def clear(self) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute("DELETE FROM turn_event")
                conn.execute("DELETE FROM session_record")
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to clear history: {exc}") from exc
        finally:
            conn.close()


def _insert_record(*, conn: sqlite3.Connection, record: SessionRecord) -> None:
    v = record.visual_stats
    a = record.audio_stats
    with conn:
        conn.execute(
            f"""
            INSERT INTO session_record({_SUMMARY_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                timestamp_to_iso(record.timestamp),
                int(record.seed),
                json.dumps(record.settings.to_dict(), sort_keys=True),
                v.true_positives,
                v.true_negatives,
                v.false_positives,
                v.false_negatives,
                a.true_positives,
                a.true_negatives,
                a.false_positives,
                a.false_negatives,
            ),
        )
        conn.executemany(
            """
            INSERT INTO turn_event(
                session_id, turn_index, visual_position, audio_symbol,
                is_visual_match, is_audio_match, user_visual_match, user_audio_match, scored
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    record.id,
                    int(t.index),
                    int(t.stimulus.visual_position),
                    str(t.stimulus.audio_symbol),
                    1 if t.ground_truth.visual else 0,
                    1 if t.ground_truth.audio else 0,
                    1 if t.response.visual else 0,
                    1 if t.response.audio else 0,
                    1 if t.scored else 0,
                )
                for t in record.turns
            ],
        )
