"""Detention timer and billing arithmetic.

Two computations live here and they intentionally round differently:

* :func:`compute_timer_state` is the *live* view refreshed every second while a
  driver waits at a facility. It works in whole seconds and only rounds the
  final currency value.
* :func:`compute_detention_amount` is the *settlement* used when the driver
  checks out and the event is invoiced. It rounds the detention to whole
  minutes first and bills exactly that minute count.

Both paths must stay as they are; merging them changes invoiced totals.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from pydantic import BaseModel

DEFAULT_GRACE_PERIOD_MINUTES = 120
DEFAULT_HOURLY_RATE = 75.0


class TimerState(BaseModel):
    model_config = {"frozen": True}

    elapsed_seconds: int
    grace_period_seconds: int
    detention_seconds: int
    is_in_grace_period: bool
    is_detention_active: bool
    current_earnings: float


class DetentionAmount(BaseModel):
    model_config = {"frozen": True}

    detention_minutes: int
    total_amount: float


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _to_cents(hours: float, hourly_rate: float) -> float:
    return _round_half_up(hours * hourly_rate * 100) / 100


def compute_timer_state(
    arrival: datetime,
    now: datetime,
    grace_period_minutes: int = DEFAULT_GRACE_PERIOD_MINUTES,
    hourly_rate: float = DEFAULT_HOURLY_RATE,
) -> TimerState:
    """Return the live timer for a driver who arrived at ``arrival``.

    A ``now`` earlier than ``arrival`` (clock skew on the device) clamps the
    elapsed time to zero instead of failing.
    """

    elapsed_seconds = max(0, math.floor((now - arrival).total_seconds()))
    grace_period_seconds = grace_period_minutes * 60
    is_in_grace_period = elapsed_seconds < grace_period_seconds

    detention_seconds = max(0, elapsed_seconds - grace_period_seconds)
    detention_hours = detention_seconds / 3600

    return TimerState(
        elapsed_seconds=elapsed_seconds,
        grace_period_seconds=grace_period_seconds,
        detention_seconds=detention_seconds,
        is_in_grace_period=is_in_grace_period,
        is_detention_active=detention_seconds > 0,
        current_earnings=_to_cents(detention_hours, hourly_rate),
    )


def compute_detention_amount(
    arrival: datetime,
    departure: datetime,
    grace_period_minutes: int,
    hourly_rate: float,
) -> DetentionAmount:
    """Settle a completed stay: billable minutes and the amount owed."""

    total_minutes = (departure - arrival).total_seconds() / 60
    detention_minutes = _round_half_up(max(0.0, total_minutes - grace_period_minutes))

    return DetentionAmount(
        detention_minutes=detention_minutes,
        total_amount=_to_cents(detention_minutes / 60, hourly_rate),
    )


def grace_period_end(arrival: datetime, grace_period_minutes: int = DEFAULT_GRACE_PERIOD_MINUTES) -> datetime:
    return arrival + timedelta(minutes=grace_period_minutes)


def detention_start(arrival: datetime, grace_period_minutes: int = DEFAULT_GRACE_PERIOD_MINUTES) -> datetime:
    """Detention begins the moment the grace period ends."""

    return grace_period_end(arrival, grace_period_minutes)


def format_time(seconds: int) -> str:
    """Format ``seconds`` as ``HH:MM:SS``; hours grow past two digits."""

    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_duration(seconds: int) -> str:
    hours, remainder = divmod(int(seconds), 3600)
    minutes = remainder // 60
    if hours == 0:
        return f"{minutes}m"
    if minutes == 0:
        return f"{hours}h"
    return f"{hours}h {minutes}m"


def format_currency(amount: float) -> str:
    return f"${amount:.2f}"
