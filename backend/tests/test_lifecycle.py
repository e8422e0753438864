from __future__ import annotations

import pytest
from fastapi import HTTPException

from app.detention.lifecycle import can_transition, ensure_transition, is_deletable


def test_forward_transitions_only() -> None:
    assert can_transition("active", "completed")
    assert can_transition("completed", "invoiced")
    assert can_transition("invoiced", "paid")
    assert not can_transition("active", "paid")
    assert not can_transition("paid", "active")
    assert not can_transition("unknown", "completed")


def test_ensure_transition_raises_conflict() -> None:
    with pytest.raises(HTTPException) as excinfo:
        ensure_transition("completed", "completed")
    assert excinfo.value.status_code == 409


def test_only_uninvoiced_events_are_deletable() -> None:
    assert is_deletable("active")
    assert is_deletable("completed")
    assert not is_deletable("invoiced")
    assert not is_deletable("paid")
