"""
Operational parameters for refresh and listing: cooldown and time window.

Resolution order per value: explicit override, then the app_params
record, then the Config default.
"""

import math
from dataclasses import dataclass
from datetime import timedelta

from .config import Config
from .database import Database

COOLDOWN_PARAM_KEY = "posts_refresh_cooldown_seconds"
WINDOW_PARAM_KEY = "posts_time_window_days"


@dataclass
class OperationalParams:
    cooldown_seconds: int
    window_days: int

    @property
    def cooldown(self) -> timedelta:
        return timedelta(seconds=self.cooldown_seconds)

    @property
    def window(self) -> timedelta:
        return timedelta(days=self.window_days)


def _is_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def normalize_cooldown_seconds(value, default: int | None = None) -> int:
    """Truncate to an integer, floored at 0."""
    if not _is_number(value):
        return Config.POSTS_REFRESH_COOLDOWN_SECONDS if default is None else default
    return max(0, int(value))


def normalize_window_days(value, default: int | None = None) -> int:
    """Truncate to an integer, minimum 1."""
    if not _is_number(value):
        return Config.POSTS_TIME_WINDOW_DAYS if default is None else default
    return max(1, int(value))


def resolve_cooldown_seconds(db: Database | None = None, override: int | float | None = None) -> int:
    if override is not None:
        return normalize_cooldown_seconds(override)
    stored = db.app_params.get_int(COOLDOWN_PARAM_KEY) if db is not None else None
    return normalize_cooldown_seconds(stored)


def resolve_window_days(db: Database | None = None, override: int | float | None = None) -> int:
    if override is not None:
        return normalize_window_days(override)
    stored = db.app_params.get_int(WINDOW_PARAM_KEY) if db is not None else None
    return normalize_window_days(stored)


def resolve_operational_params(
    db: Database | None = None,
    cooldown_seconds: int | float | None = None,
    window_days: int | float | None = None,
) -> OperationalParams:
    return OperationalParams(
        cooldown_seconds=resolve_cooldown_seconds(db, cooldown_seconds),
        window_days=resolve_window_days(db, window_days),
    )
