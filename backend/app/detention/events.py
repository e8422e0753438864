"""Helpers for working with detention event documents from the store."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from fastapi import HTTPException

from app.auth.dependencies import CurrentUser
from app.common.enums import EventStatus
from app.common.utils import from_millis
from app.detention.timer import (
    DetentionAmount,
    TimerState,
    compute_detention_amount,
    compute_timer_state,
    format_currency,
    format_time,
)


def event_grace_minutes(event: Dict[str, Any]) -> int:
    """Grace period recorded at check-in, derived from ``gracePeriodEnd``.

    Events without a grace end accrue detention from arrival.
    """
    arrival = event.get("arrivalTime")
    grace_end = event.get("gracePeriodEnd")
    if arrival is None or grace_end is None:
        return 0
    return max(0, round((grace_end - arrival) / 60000))


def event_timer(event: Dict[str, Any], now: datetime) -> TimerState:
    """Live timer for an event; completed events freeze at their departure."""
    end = from_millis(event.get("departureTime")) or now
    return compute_timer_state(
        from_millis(event["arrivalTime"]),
        end,
        event_grace_minutes(event),
        float(event.get("hourlyRate") or 0),
    )


def settle_event(event: Dict[str, Any], departure: datetime) -> DetentionAmount:
    return compute_detention_amount(
        from_millis(event["arrivalTime"]),
        departure,
        event_grace_minutes(event),
        float(event.get("hourlyRate") or 0),
    )


def timer_payload(state: TimerState) -> Dict[str, Any]:
    payload = state.model_dump()
    payload.update(
        {
            "elapsed": format_time(state.elapsed_seconds),
            "detention": format_time(state.detention_seconds),
            "earnings": format_currency(state.current_earnings),
        }
    )
    return payload


def is_owned_by(event: Dict[str, Any], user: CurrentUser) -> bool:
    return event.get("userId") == user.id


async def load_owned_event(store: Any, event_id: str, user: CurrentUser) -> Dict[str, Any]:
    event = await store.query("detentionEvents:get", {"id": event_id})
    if not event:
        raise HTTPException(status_code=404, detail="Detention event not found")
    if not is_owned_by(event, user):
        raise HTTPException(status_code=403, detail="Unauthorized to access detention event")
    return dict(event)


def is_active(event: Dict[str, Any]) -> bool:
    return event.get("status") == EventStatus.ACTIVE.value
