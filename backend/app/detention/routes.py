"""Detention tracking routes.

Drivers check in when they arrive at a facility and check out when they
leave. The live timer and the settlement amount are computed here from the
stored arrival time, grace period and hourly rate; the store only persists
the results.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from app.auth.dependencies import CurrentUser, effective_tier, get_current_user
from app.common.enums import EventStatus, EventType, SubscriptionTier
from app.common.utils import ensure_utc, from_millis, month_start, to_millis, utcnow
from app.common.validation import validate_grace_period, validate_hourly_rate
from app.core.config import settings
from app.db.convex_client import db
from app.detention.events import (
    event_grace_minutes,
    event_timer,
    load_owned_event,
    settle_event,
    timer_payload,
)
from app.detention.geo import find_nearest_facility
from app.detention.lifecycle import ensure_transition, is_deletable
from app.detention.timer import (
    compute_detention_amount,
    compute_timer_state,
    detention_start,
    format_currency,
    format_duration,
    grace_period_end,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/detention", tags=["Detention"])


class CheckInRequest(BaseModel):
    event_type: EventType
    facility_id: Optional[str] = None
    load_reference: Optional[str] = Field(default=None, max_length=100)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    hourly_rate: Optional[float] = None
    grace_period_minutes: Optional[int] = None


class SettleRequest(BaseModel):
    arrival: datetime
    departure: datetime
    grace_period_minutes: int = settings.detention.default_grace_period_minutes
    hourly_rate: float = settings.detention.default_hourly_rate


def _first_set(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _validate_billing_terms(hourly_rate: Any, grace_period_minutes: Any) -> None:
    validate_hourly_rate(hourly_rate)
    validate_grace_period(grace_period_minutes)


async def _ensure_monthly_allowance(user: CurrentUser, tier: SubscriptionTier, now: datetime) -> None:
    if tier != SubscriptionTier.FREE:
        return
    events: List[Dict[str, Any]] = await db.query("detentionEvents:list", {"userId": user.id}) or []
    since = to_millis(month_start(now))
    used = sum(1 for event in events if (event.get("arrivalTime") or 0) >= since)
    if used >= settings.detention.free_events_per_month:
        raise HTTPException(
            status_code=402,
            detail=f"Free plan is limited to {settings.detention.free_events_per_month} events per month",
        )


async def _detect_facility(lat: float, lng: float) -> Optional[str]:
    """The closest facility whose geofence contains the driver, if any."""
    facilities = await db.query("facilities:list") or []
    nearest = find_nearest_facility(lat, lng, facilities)
    if nearest is None or nearest[1] > settings.detention.geofence_radius_meters:
        return None
    return nearest[0]["_id"]


@router.get("/timer", summary="Compute a live detention timer")
async def live_timer(
    arrival: datetime,
    now: Optional[datetime] = None,
    grace_period_minutes: int = settings.detention.default_grace_period_minutes,
    hourly_rate: float = settings.detention.default_hourly_rate,
    user: CurrentUser = Depends(get_current_user),
) -> Dict[str, Any]:
    state = compute_timer_state(
        ensure_utc(arrival),
        ensure_utc(now) if now else utcnow(),
        grace_period_minutes,
        hourly_rate,
    )
    return timer_payload(state)


@router.post("/settle", summary="Compute the billable detention for a completed stay")
async def settle(payload: SettleRequest, user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    amount = compute_detention_amount(
        ensure_utc(payload.arrival),
        ensure_utc(payload.departure),
        payload.grace_period_minutes,
        payload.hourly_rate,
    )
    result = amount.model_dump()
    result.update(
        {
            "detention": format_duration(amount.detention_minutes * 60),
            "amount": format_currency(amount.total_amount),
        }
    )
    return result


@router.post("/events", status_code=201, summary="Check in at a facility")
async def check_in(payload: CheckInRequest, user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    now = utcnow()
    async with db.session():
        active = await db.query("detentionEvents:getActive", {"userId": user.id})
        if active:
            raise HTTPException(status_code=409, detail="A detention event is already active")

        profile = await db.query("users:get", {"id": user.id}) or {}
        hourly_rate = _first_set(
            payload.hourly_rate, profile.get("hourlyRate"), settings.detention.default_hourly_rate
        )
        grace_minutes = _first_set(
            payload.grace_period_minutes,
            profile.get("gracePeriodMinutes"),
            settings.detention.default_grace_period_minutes,
        )
        _validate_billing_terms(hourly_rate, grace_minutes)
        await _ensure_monthly_allowance(user, effective_tier(user, profile), now)

        facility_id = payload.facility_id
        if facility_id:
            facility = await db.query("facilities:get", {"id": facility_id})
            if not facility:
                raise HTTPException(status_code=404, detail="Facility not found")
        elif payload.lat is not None and payload.lng is not None:
            facility_id = await _detect_facility(payload.lat, payload.lng)

        arrival_ms = to_millis(now)
        grace_end_ms = to_millis(grace_period_end(now, grace_minutes))
        event_id = await db.mutation(
            "detentionEvents:start",
            {
                "userId": user.id,
                "facilityId": facility_id,
                "loadReference": payload.load_reference,
                "eventType": payload.event_type.value,
                "hourlyRate": float(hourly_rate),
                "gracePeriodMinutes": int(grace_minutes),
                "arrivalTime": arrival_ms,
                "gracePeriodEnd": grace_end_ms,
            },
        )

    logger.info("User %s checked in (event %s, grace %s min, $%s/h)", user.id, event_id, grace_minutes, hourly_rate)
    return {
        "id": event_id,
        "status": EventStatus.ACTIVE.value,
        "eventType": payload.event_type.value,
        "facilityId": facility_id,
        "arrivalTime": arrival_ms,
        "gracePeriodEnd": grace_end_ms,
        "gracePeriodMinutes": int(grace_minutes),
        "hourlyRate": float(hourly_rate),
    }


@router.get("/events", summary="List the driver's detention events")
async def list_events(
    status: Optional[EventStatus] = None,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    user: CurrentUser = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    async with db.session():
        events = await db.query(
            "detentionEvents:list",
            {"userId": user.id, "status": status.value if status else None, "limit": limit},
        )
    return [dict(event) for event in events or []]


@router.get("/events/active", summary="Current active event with its live timer")
async def get_active_event(user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    async with db.session():
        event = await db.query("detentionEvents:getActive", {"userId": user.id})
    if not event:
        raise HTTPException(status_code=404, detail="No active detention event")
    return {"event": dict(event), "timer": timer_payload(event_timer(event, utcnow()))}


@router.get("/events/{event_id}", summary="Retrieve a detention event")
async def get_event(event_id: str, user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    async with db.session():
        event = await load_owned_event(db, event_id, user)
    return {"event": event, "timer": timer_payload(event_timer(event, utcnow()))}


@router.get("/events/{event_id}/timer", summary="Live timer for a detention event")
async def get_event_timer(event_id: str, user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    async with db.session():
        event = await load_owned_event(db, event_id, user)
    return timer_payload(event_timer(event, utcnow()))


@router.post("/events/{event_id}/check-out", summary="Check out and settle a detention event")
async def check_out(event_id: str, user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    departure = utcnow()
    async with db.session():
        event = await load_owned_event(db, event_id, user)
        ensure_transition(event.get("status"), EventStatus.COMPLETED.value)

        amount = settle_event(event, departure)
        grace_minutes = event_grace_minutes(event)
        start = detention_start(from_millis(event["arrivalTime"]), grace_minutes)
        detention_start_ms = to_millis(start) if departure > start else None

        await db.mutation(
            "detentionEvents:complete",
            {
                "id": event_id,
                "departureTime": to_millis(departure),
                "detentionStart": detention_start_ms,
                "detentionMinutes": amount.detention_minutes,
                "totalAmount": amount.total_amount,
            },
        )

    logger.info(
        "User %s checked out of event %s: %s min detention, %s",
        user.id,
        event_id,
        amount.detention_minutes,
        format_currency(amount.total_amount),
    )
    return {
        "id": event_id,
        "status": EventStatus.COMPLETED.value,
        "departureTime": to_millis(departure),
        "detentionStart": detention_start_ms,
        "detentionMinutes": amount.detention_minutes,
        "totalAmount": amount.total_amount,
        "detention": format_duration(amount.detention_minutes * 60),
        "amount": format_currency(amount.total_amount),
    }


@router.delete("/events/{event_id}", summary="Delete an uninvoiced detention event")
async def delete_event(event_id: str, user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    async with db.session():
        event = await load_owned_event(db, event_id, user)
        if not is_deletable(event.get("status")):
            raise HTTPException(status_code=409, detail="Cannot delete invoiced or paid events")
        await db.mutation("detentionEvents:remove", {"id": event_id})
    logger.info("User %s deleted event %s", user.id, event_id)
    return {"message": "Detention event deleted", "id": event_id}
