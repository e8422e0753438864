"""Allowed status transitions for detention events."""

from __future__ import annotations

from typing import Dict, FrozenSet

from fastapi import HTTPException

from app.common.enums import EventStatus

TRANSITIONS: Dict[EventStatus, FrozenSet[EventStatus]] = {
    EventStatus.ACTIVE: frozenset({EventStatus.COMPLETED}),
    EventStatus.COMPLETED: frozenset({EventStatus.INVOICED}),
    EventStatus.INVOICED: frozenset({EventStatus.PAID}),
    EventStatus.PAID: frozenset(),
}

DELETABLE: FrozenSet[EventStatus] = frozenset({EventStatus.ACTIVE, EventStatus.COMPLETED})


def can_transition(current: str, target: str) -> bool:
    try:
        return EventStatus(target) in TRANSITIONS[EventStatus(current)]
    except ValueError:
        return False


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise HTTPException(
            status_code=409,
            detail=f"Cannot move detention event from '{current}' to '{target}'",
        )


def is_deletable(status: str) -> bool:
    try:
        return EventStatus(status) in DELETABLE
    except ValueError:
        return False
