from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .results import SessionRecord


class NBackError(Exception):
    """Base class for errors raised by the session core."""


class ValidationError(NBackError, ValueError):
    """Settings out of range. Nothing was mutated."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


class StateError(NBackError, RuntimeError):
    """Operation not valid in the engine's current phase."""


class PersistenceError(NBackError):
    """The history store failed to read or write.

    When raised from a finished session, ``record`` holds the computed
    result, which stays authoritative even though it was not stored.
    """

    def __init__(self, message: str, *, record: SessionRecord | None = None) -> None:
        super().__init__(message)
        self.record = record
