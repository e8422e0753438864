"""The driver's own profile: contact details and billing defaults.

Hourly rate and grace period saved here become the defaults for the next
check-in. The subscription fields are written by the billing webhook only.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.auth.dependencies import CurrentUser, effective_tier, get_current_user
from app.common.validation import (
    ValidationError,
    is_valid_phone,
    normalize_phone,
    sanitize_string,
    validate_grace_period,
    validate_hourly_rate,
)
from app.db.convex_client import db

router = APIRouter(prefix="/users", tags=["Users"])


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = None
    company_name: Optional[str] = Field(default=None, max_length=200)
    hourly_rate: Optional[float] = None
    grace_period_minutes: Optional[int] = None
    invoice_terms: Optional[str] = Field(default=None, max_length=2000)


def _profile_view(user: CurrentUser, profile: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    profile = dict(profile or {})
    profile.setdefault("_id", user.id)
    profile.setdefault("email", user.email)
    profile["subscriptionTier"] = effective_tier(user, profile).value
    return profile


@router.get("/me")
async def get_profile(user: CurrentUser = Depends(get_current_user)):
    async with db.session():
        profile = await db.query("users:get", {"id": user.id})
    return _profile_view(user, profile)


@router.put("/me")
async def update_profile(data: ProfileUpdate, user: CurrentUser = Depends(get_current_user)):
    updates: Dict[str, Any] = {}
    if data.name is not None:
        updates["name"] = sanitize_string(data.name)
    if data.phone is not None:
        if not is_valid_phone(data.phone):
            raise ValidationError("Invalid phone number", "phone")
        updates["phone"] = normalize_phone(data.phone)
    if data.company_name is not None:
        updates["companyName"] = sanitize_string(data.company_name)
    if data.hourly_rate is not None:
        validate_hourly_rate(data.hourly_rate)
        updates["hourlyRate"] = data.hourly_rate
    if data.grace_period_minutes is not None:
        validate_grace_period(data.grace_period_minutes)
        updates["gracePeriodMinutes"] = data.grace_period_minutes
    if data.invoice_terms is not None:
        updates["invoiceTerms"] = sanitize_string(data.invoice_terms)

    if not updates:
        raise HTTPException(status_code=400, detail="No valid fields provided")

    async with db.session():
        profile = await db.query("users:get", {"id": user.id})
        if not profile:
            raise HTTPException(status_code=404, detail="Profile not found")
        await db.mutation("users:update", {"id": user.id, **updates})
        profile = await db.query("users:get", {"id": user.id})
    return {"message": "Profile updated", "user": _profile_view(user, profile)}
