"""GPS breadcrumbs and photo evidence attached to detention events.

Photo binaries are uploaded directly to object storage by the client; this
module records their metadata and enforces the per-event photo allowance.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.auth.dependencies import CurrentUser, effective_tier, get_current_user
from app.common.enums import PhotoCategory, SubscriptionTier
from app.common.utils import to_millis, utcnow
from app.common.validation import sanitize_string
from app.core.config import settings
from app.db.convex_client import db
from app.detention.events import is_active, load_owned_event
from app.detention.geo import distance_to_facility, format_distance, is_within_geofence

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/evidence", tags=["Evidence"])


class GPSPing(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = Field(default=None, ge=0)
    timestamp: Optional[datetime] = None


class PhotoCreate(BaseModel):
    storage_url: str = Field(min_length=1)
    storage_key: Optional[str] = None
    category: PhotoCategory = PhotoCategory.OTHER
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    caption: Optional[str] = Field(default=None, max_length=500)


def photo_limit(tier: SubscriptionTier) -> int:
    if tier == SubscriptionTier.FREE:
        return settings.detention.photos_per_event_free
    return settings.detention.photos_per_event_pro


@router.post("/events/{event_id}/gps", status_code=201, summary="Record a GPS breadcrumb")
async def record_gps_ping(
    event_id: str, ping: GPSPing, user: CurrentUser = Depends(get_current_user)
) -> Dict[str, Any]:
    recorded_at = ping.timestamp or utcnow()
    geofence: Dict[str, Any] = {"facilityId": None, "distanceMeters": None, "withinGeofence": None}
    async with db.session():
        event = await load_owned_event(db, event_id, user)
        if not is_active(event):
            raise HTTPException(status_code=409, detail="GPS can only be logged for active events")

        log_id = await db.mutation(
            "gpsLogs:add",
            {
                "detentionEventId": event_id,
                "lat": ping.lat,
                "lng": ping.lng,
                "accuracy": ping.accuracy,
                "timestamp": to_millis(recorded_at),
            },
        )

        facility_id = event.get("facilityId")
        if facility_id:
            facility = await db.query("facilities:get", {"id": facility_id})
            if facility:
                distance = distance_to_facility(ping.lat, ping.lng, facility)
                geofence = {
                    "facilityId": facility_id,
                    "distanceMeters": round(distance, 1),
                    "distance": format_distance(distance),
                    "withinGeofence": is_within_geofence(
                        ping.lat, ping.lng, facility, settings.detention.geofence_radius_meters
                    ),
                }

    if geofence["withinGeofence"] is False:
        logger.info("Event %s ping is %s from its facility", event_id, geofence["distance"])
    return {"id": log_id, "timestamp": to_millis(recorded_at), **geofence}


@router.get("/events/{event_id}/gps", summary="GPS breadcrumbs for an event")
async def list_gps_logs(event_id: str, user: CurrentUser = Depends(get_current_user)) -> List[Dict[str, Any]]:
    async with db.session():
        await load_owned_event(db, event_id, user)
        logs = await db.query("gpsLogs:getByEvent", {"detentionEventId": event_id}) or []
    return sorted((dict(log) for log in logs), key=lambda log: log.get("timestamp") or 0)


@router.post("/events/{event_id}/photos", status_code=201, summary="Attach a photo to an event")
async def add_photo(
    event_id: str, payload: PhotoCreate, user: CurrentUser = Depends(get_current_user)
) -> Dict[str, Any]:
    async with db.session():
        await load_owned_event(db, event_id, user)
        profile = await db.query("users:get", {"id": user.id})
        limit = photo_limit(effective_tier(user, profile))
        existing = await db.query("photos:getByEvent", {"detentionEventId": event_id}) or []
        if len(existing) >= limit:
            raise HTTPException(status_code=402, detail=f"Photo limit of {limit} per event reached")

        photo_id = await db.mutation(
            "photos:add",
            {
                "detentionEventId": event_id,
                "storageUrl": payload.storage_url,
                "storageKey": payload.storage_key,
                "category": payload.category.value,
                "lat": payload.lat,
                "lng": payload.lng,
                "timestamp": to_millis(utcnow()),
                "caption": sanitize_string(payload.caption) or None,
            },
        )
    return {"id": photo_id, "category": payload.category.value, "remaining": limit - len(existing) - 1}


@router.get("/events/{event_id}/photos", summary="Photos attached to an event")
async def list_photos(event_id: str, user: CurrentUser = Depends(get_current_user)) -> List[Dict[str, Any]]:
    async with db.session():
        await load_owned_event(db, event_id, user)
        photos = await db.query("photos:getByEvent", {"detentionEventId": event_id}) or []
    return [dict(photo) for photo in photos]
