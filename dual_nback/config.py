from __future__ import annotations

import json
import os
import sys
from pathlib import Path

from loguru import logger

from .errors import ValidationError
from .settings import Settings, validate_settings

DB_PATH_ENV = "DUAL_NBACK_DB_PATH"
SETTINGS_PATH_ENV = "DUAL_NBACK_SETTINGS_PATH"
LOG_LEVEL_ENV = "DUAL_NBACK_LOG_LEVEL"

DEFAULT_LOG_LEVEL = "WARNING"
_DATA_DIR_NAME = ".dual_nback"


def _data_dir() -> Path:
    return Path.home() / _DATA_DIR_NAME


def default_db_path() -> Path:
    explicit = os.environ.get(DB_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return _data_dir() / "history.db"


def default_settings_path() -> Path:
    explicit = os.environ.get(SETTINGS_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return _data_dir() / "settings.json"


def configure_logging(level: str | None = None) -> int:
    """Route loguru output to stderr at ``level`` (or $DUAL_NBACK_LOG_LEVEL).

    Returns the loguru handler id.
    """

    chosen = (level or os.environ.get(LOG_LEVEL_ENV) or DEFAULT_LOG_LEVEL).strip().upper()
    logger.remove()
    return logger.add(sys.stderr, level=chosen, format="{time:HH:mm:ss} | {level: <8} | {name}:{function} - {message}")


class SettingsStore:
    """JSON file holding the user's last saved settings."""

    _version = 1

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @classmethod
    def default(cls) -> "SettingsStore":
        return cls(default_settings_path())

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Settings:
        """Saved settings, or defaults when the file is missing or unusable."""

        if not self._path.exists():
            return Settings()
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable settings file {}: {}", self._path, exc)
            return Settings()
        if not isinstance(payload, dict):
            logger.warning("Ignoring settings file {}: expected an object", self._path)
            return Settings()

        try:
            return validate_settings(Settings.from_dict(payload.get("settings", {})))
        except ValidationError as exc:
            logger.warning("Ignoring invalid settings in {}: {}", self._path, exc)
            return Settings()

    def save(self, settings: Settings) -> None:
        settings = validate_settings(settings)
        payload = {"version": self._version, "settings": settings.to_dict()}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self._path)

    def reset(self) -> Settings:
        if self._path.exists():
            self._path.unlink()
        return Settings()
