"""Facility lookup and reputation routes."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from app.auth.dependencies import CurrentUser, get_current_user
from app.common.validation import sanitize_string
from app.db.convex_client import db
from app.detention.events import load_owned_event
from app.detention.geo import calculate_bearing, cardinal_direction, distance_to_facility, format_distance
from app.facilities.stats import average_rating, average_wait_minutes, payment_stats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/facilities", tags=["Facilities"])


class ReviewCreate(BaseModel):
    overall_rating: int = Field(ge=1, le=5)
    detention_event_id: Optional[str] = None
    wait_time_rating: Optional[int] = Field(default=None, ge=1, le=5)
    staff_rating: Optional[int] = Field(default=None, ge=1, le=5)
    restroom_rating: Optional[int] = Field(default=None, ge=1, le=5)
    parking_rating: Optional[int] = Field(default=None, ge=1, le=5)
    safety_rating: Optional[int] = Field(default=None, ge=1, le=5)
    cleanliness_rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)


class PaymentReport(BaseModel):
    review_id: str
    got_paid: bool
    payment_days: Optional[int] = Field(default=None, ge=0, le=365)
    payment_amount: Optional[float] = Field(default=None, ge=0)
    partial_payment: Optional[bool] = None


@router.get("/nearby", summary="Facilities near a coordinate, closest first")
async def nearby_facilities(
    lat: float = Query(ge=-90, le=90),
    lng: float = Query(ge=-180, le=180),
    radius_meters: float = Query(default=50_000, gt=0),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    async with db.session():
        facilities = await db.query("facilities:list") or []

    ranked: List[Dict[str, Any]] = []
    for facility in facilities:
        distance = distance_to_facility(lat, lng, facility)
        if distance > radius_meters:
            continue
        bearing = calculate_bearing(lat, lng, float(facility["lat"]), float(facility["lng"]))
        ranked.append(
            {
                **dict(facility),
                "distanceMeters": round(distance, 1),
                "distance": format_distance(distance),
                "direction": cardinal_direction(bearing),
            }
        )
    ranked.sort(key=lambda item: item["distanceMeters"])
    return ranked[:limit] if limit else ranked


@router.get("/{facility_id}/stats", summary="Ratings, wait times and payment reliability")
async def facility_stats(facility_id: str, user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    async with db.session():
        facility = await db.query("facilities:get", {"id": facility_id})
        if not facility:
            raise HTTPException(status_code=404, detail="Facility not found")
        reviews = await db.query("facilityReviews:getByFacility", {"facilityId": facility_id}) or []
        events = await db.query("detentionEvents:getByFacility", {"facilityId": facility_id}) or []

    return {
        "facilityId": facility_id,
        "name": facility.get("name"),
        "totalReviews": len(reviews),
        "avgRating": average_rating(reviews),
        "avgWaitMinutes": average_wait_minutes(events),
        "payments": payment_stats(reviews),
    }


@router.post("/{facility_id}/reviews", status_code=201, summary="Rate a facility")
async def create_review(
    facility_id: str, payload: ReviewCreate, user: CurrentUser = Depends(get_current_user)
) -> Dict[str, Any]:
    async with db.session():
        facility = await db.query("facilities:get", {"id": facility_id})
        if not facility:
            raise HTTPException(status_code=404, detail="Facility not found")

        if payload.detention_event_id:
            event = await load_owned_event(db, payload.detention_event_id, user)
            if event.get("facilityId") != facility_id:
                raise HTTPException(status_code=409, detail="Detention event was at a different facility")
            existing = await db.query("facilityReviews:getByEvent", {"detentionEventId": payload.detention_event_id})
            if existing:
                raise HTTPException(status_code=409, detail="Detention event has already been reviewed")

        review_id = await db.mutation(
            "facilityReviews:create",
            {
                "userId": user.id,
                "facilityId": facility_id,
                "detentionEventId": payload.detention_event_id,
                "overallRating": payload.overall_rating,
                "waitTimeRating": payload.wait_time_rating,
                "staffRating": payload.staff_rating,
                "restroomRating": payload.restroom_rating,
                "parkingRating": payload.parking_rating,
                "safetyRating": payload.safety_rating,
                "cleanlinessRating": payload.cleanliness_rating,
                "comment": sanitize_string(payload.comment) or None,
            },
        )

    logger.info("User %s reviewed facility %s (%s/5)", user.id, facility_id, payload.overall_rating)
    return {"id": review_id, "facilityId": facility_id, "overallRating": payload.overall_rating}


@router.post("/{facility_id}/payment-report", summary="Report whether detention was paid")
async def report_payment(
    facility_id: str, payload: PaymentReport, user: CurrentUser = Depends(get_current_user)
) -> Dict[str, Any]:
    # Days and amount only describe a payment that happened.
    payment_days = payload.payment_days if payload.got_paid else None
    payment_amount = payload.payment_amount if payload.got_paid else None

    async with db.session():
        reviews = await db.query("facilityReviews:getByUser", {"userId": user.id}) or []
        review = next(
            (r for r in reviews if r.get("_id") == payload.review_id and r.get("facilityId") == facility_id),
            None,
        )
        if review is None:
            raise HTTPException(status_code=404, detail="Review not found for this facility")

        await db.mutation(
            "facilityReviews:reportPayment",
            {
                "id": payload.review_id,
                "gotPaid": payload.got_paid,
                "paymentDays": payment_days,
                "paymentAmount": payment_amount,
                "partialPayment": payload.partial_payment,
            },
        )

    return {
        "id": payload.review_id,
        "facilityId": facility_id,
        "gotPaid": payload.got_paid,
        "paymentDays": payment_days,
        "paymentAmount": payment_amount,
    }
