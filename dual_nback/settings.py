from __future__ import annotations

import string
from dataclasses import asdict, dataclass, fields, replace
from enum import StrEnum
from typing import Any

from .errors import ValidationError


class AuditorySymbolSet(StrEnum):
    ALL_LETTERS = "all_letters"
    NON_CONFUSING_LETTERS = "non_confusing_letters"
    TIAN_GAN_DI_ZHI = "tian_gan_di_zhi"


class MatchPolicy(StrEnum):
    COIN_FLIP = "coin_flip"
    PLANNED = "planned"


ALL_LETTERS: tuple[str, ...] = tuple(string.ascii_uppercase)
NON_CONFUSING_LETTERS: tuple[str, ...] = ("A", "K", "Q", "R", "U", "W", "H", "L", "O")
# Heavenly stems then earthly branches; "wu" appears in both, so the branch gets a suffix.
TIAN_GAN_DI_ZHI: tuple[str, ...] = (
    "jia", "yi", "bing", "ding", "wu", "ji", "geng", "xin", "ren", "gui",
    "zi", "chou", "yin", "mao", "chen", "si", "wu_branch", "wei", "shen", "you", "xu", "hai",
)

_SYMBOLS_BY_SET: dict[AuditorySymbolSet, tuple[str, ...]] = {
    AuditorySymbolSet.ALL_LETTERS: ALL_LETTERS,
    AuditorySymbolSet.NON_CONFUSING_LETTERS: NON_CONFUSING_LETTERS,
    AuditorySymbolSet.TIAN_GAN_DI_ZHI: TIAN_GAN_DI_ZHI,
}

DEFAULT_MATCH_RATE = 0.25
MIN_GRID_SIZE = 2
MAX_GRID_SIZE = 6


def symbols_for(symbol_set: AuditorySymbolSet) -> tuple[str, ...]:
    return _SYMBOLS_BY_SET[AuditorySymbolSet(symbol_set)]


def recommended_session_length(n_level: int) -> int:
    """Product policy for session length. The engine only needs length > n."""

    return max(20, 5 * int(n_level))


@dataclass(frozen=True, slots=True)
class Settings:
    n_level: int = 2
    turn_interval_ms: int = 2000
    session_length: int = 30
    auditory_symbol_set: AuditorySymbolSet = AuditorySymbolSet.ALL_LETTERS
    match_rate: float = DEFAULT_MATCH_RATE
    match_policy: MatchPolicy = MatchPolicy.COIN_FLIP
    grid_size: int = 3

    @property
    def grid_cells(self) -> int:
        return self.grid_size * self.grid_size

    @property
    def symbols(self) -> tuple[str, ...]:
        return symbols_for(self.auditory_symbol_set)

    @property
    def scorable_turns(self) -> int:
        return max(0, self.session_length - self.n_level)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["auditory_symbol_set"] = str(self.auditory_symbol_set.value)
        data["match_policy"] = str(self.match_policy.value)
        return data

    @classmethod
    def from_dict(cls, data: object) -> "Settings":
        """Build settings from a loosely-typed mapping.

        Unknown keys are ignored and missing keys fall back to defaults. Values
        that cannot be coerced raise ``ValidationError``; range checks are left
        to ``validate_settings``.
        """

        if not isinstance(data, dict):
            raise ValidationError("settings", "expected a mapping")
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                continue
            try:
                if key == "auditory_symbol_set":
                    kwargs[key] = AuditorySymbolSet(str(value))
                elif key == "match_policy":
                    kwargs[key] = MatchPolicy(str(value))
                elif key == "match_rate":
                    kwargs[key] = float(value)
                else:
                    if isinstance(value, bool) or isinstance(value, float) and not value.is_integer():
                        raise ValueError(value)
                    kwargs[key] = int(value)
            except (TypeError, ValueError) as exc:
                raise ValidationError(key, f"invalid value {value!r}") from exc
        return cls(**kwargs)


def validate_settings(settings: Settings) -> Settings:
    """Return settings usable by the engine, else raise ``ValidationError``.

    Enum fields given as their string values come back as enum members;
    already-normalised settings are returned unchanged.
    """

    if not isinstance(settings, Settings):
        raise ValidationError("settings", f"expected Settings, got {type(settings).__name__}")
    if settings.n_level < 1:
        raise ValidationError("n_level", "must be >= 1")
    if settings.turn_interval_ms <= 0:
        raise ValidationError("turn_interval_ms", "must be > 0")
    if settings.session_length <= settings.n_level:
        raise ValidationError("session_length", "must be greater than n_level")
    if not (0.0 <= settings.match_rate <= 1.0):
        raise ValidationError("match_rate", "must be in [0.0, 1.0]")
    if not (MIN_GRID_SIZE <= settings.grid_size <= MAX_GRID_SIZE):
        raise ValidationError("grid_size", f"must be in [{MIN_GRID_SIZE}, {MAX_GRID_SIZE}]")
    try:
        symbol_set = AuditorySymbolSet(settings.auditory_symbol_set)
    except ValueError as exc:
        raise ValidationError("auditory_symbol_set", "unknown symbol set") from exc
    try:
        policy = MatchPolicy(settings.match_policy)
    except ValueError as exc:
        raise ValidationError("match_policy", "unknown match policy") from exc

    if symbol_set is settings.auditory_symbol_set and policy is settings.match_policy:
        return settings
    return replace(settings, auditory_symbol_set=symbol_set, match_policy=policy)
