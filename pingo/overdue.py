"""Overdue evaluation shared by the backend and the device."""

from dataclasses import dataclass
from typing import Any

DEFAULT_INTERVAL_HOURS = 24
HOUR_MS = 3600 * 1000


@dataclass(frozen=True)
class OverdueState:
    """Result of evaluate(): remaining time before the deadline, or time past it.

    Both durations are in milliseconds. Exactly one of them is meaningful,
    selected by ``overdue``.
    """

    overdue: bool
    remaining_ms: int = 0
    elapsed_past_deadline_ms: int = 0

    @classmethod
    def normal(cls, remaining_ms: int) -> "OverdueState":
        return cls(overdue=False, remaining_ms=remaining_ms)

    @classmethod
    def late(cls, elapsed_past_deadline_ms: int) -> "OverdueState":
        return cls(overdue=True, elapsed_past_deadline_ms=elapsed_past_deadline_ms)


def deadline_ms(last_checkin_ms: int, interval_hours: float) -> int:
    return int(last_checkin_ms + interval_hours * HOUR_MS)


def evaluate(last_checkin_ms: int, interval_hours: float, now_ms: int) -> OverdueState:
    """Classify a member as NORMAL or OVERDUE.

    The deadline instant itself is still NORMAL (zero remaining); anything
    after it is OVERDUE. A ``last_checkin_ms`` of 0 simply yields a very
    large overdue value, callers that treat "never checked in" differently
    have to check for it themselves.
    """
    if interval_hours is None or interval_hours <= 0:
        raise ValueError(f"interval_hours must be positive, got {interval_hours!r}")

    past = now_ms - deadline_ms(last_checkin_ms, interval_hours)
    if past > 0:
        return OverdueState.late(past)
    return OverdueState.normal(-past)


def coerce_interval_hours(value: Any, default: int = DEFAULT_INTERVAL_HOURS) -> int:
    """Read a configured interval, falling back to ``default`` when unusable.

    Stored configs may carry ints, numeric strings, empty strings or None.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        hours = int(str(value).strip())
    except ValueError:
        return default
    return hours if hours > 0 else default


def format_countdown(state: OverdueState) -> str:
    if state.overdue:
        return "⚠️ OVERDUE"
    total = state.remaining_ms // 1000
    h, m, s = total // 3600, (total % 3600) // 60, total % 60
    return f"{h:02d}:{m:02d}:{s:02d}"
