# backend/app/billing/routes.py
# Subscription checkout, the Stripe webhook that keeps the stored tier in
# step with Stripe, the customer portal, and the per-tier usage limits the
# detention and evidence routes enforce.

import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from app.auth.dependencies import CurrentUser, effective_tier, get_current_user
from app.common.enums import BillingInterval, SubscriptionStatus, SubscriptionTier
from app.core.config import settings
from app.db.convex_client import db
from app.evidence.routes import photo_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])

FLEET_TIERS = {SubscriptionTier.SMALL_FLEET, SubscriptionTier.FLEET}
FLEET_TRIAL_DAYS = 14

# Stripe subscription status -> stored status
STATUS_MAP = {
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


class CheckoutRequest(BaseModel):
    tier: SubscriptionTier
    interval: BillingInterval = BillingInterval.MONTHLY


def tier_limits(tier: SubscriptionTier) -> Dict[str, Any]:
    free = tier == SubscriptionTier.FREE
    return {
        "tier": tier.value,
        "eventsPerMonth": settings.detention.free_events_per_month if free else None,
        "photosPerEvent": photo_limit(tier),
        "invoiceEmail": not free,
        "fleetManagement": tier in FLEET_TIERS or tier == SubscriptionTier.ENTERPRISE,
    }


def subscription_status(stripe_status: Optional[str]) -> str:
    return STATUS_MAP.get(stripe_status or "", SubscriptionStatus.ACTIVE).value


def subscription_tier(subscription: Dict[str, Any]) -> Optional[str]:
    """Tier from the subscription metadata, else from the price lookup key."""
    tier = (subscription.get("metadata") or {}).get("tier")
    if tier:
        return tier
    items = (subscription.get("items") or {}).get("data") or []
    lookup_key = ((items[0].get("price") or {}).get("lookup_key") or "") if items else ""
    # small_fleet before fleet: one contains the other
    for candidate in ("small_fleet", "fleet", "enterprise", "pro"):
        if candidate in lookup_key:
            return candidate
    return None


def _millis(seconds: Optional[int]) -> Optional[int]:
    return seconds * 1000 if seconds else None


# Route to start a subscription checkout session
@router.post("/checkout")
async def create_checkout_session(payload: CheckoutRequest, user: CurrentUser = Depends(get_current_user)):
    if payload.tier in {SubscriptionTier.FREE, SubscriptionTier.ENTERPRISE}:
        raise HTTPException(status_code=400, detail=f"Tier '{payload.tier.value}' is not sold through checkout")

    price_id = settings.stripe.price_id(payload.tier.value, payload.interval.value)
    if not price_id:
        raise HTTPException(status_code=400, detail="Price not configured for this plan")

    metadata = {"userId": user.id, "tier": payload.tier.value}
    subscription_data: Dict[str, Any] = {"metadata": metadata}
    if payload.tier in FLEET_TIERS:
        subscription_data["trial_period_days"] = FLEET_TRIAL_DAYS

    stripe.api_key = settings.stripe.secret_key
    try:
        session = stripe.checkout.Session.create(
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            customer_email=user.email,
            client_reference_id=user.id,
            metadata=metadata,
            subscription_data=subscription_data,
            success_url=f"{settings.stripe.app_url}billing/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.stripe.app_url}billing/cancel",
        )
    except stripe.StripeError as exc:
        logger.exception("Stripe checkout failed for user %s", user.id)
        raise HTTPException(status_code=502, detail=f"Payment provider error: {exc}")

    return {"sessionId": session.id, "url": session.url}


# Route to open the Stripe customer portal for managing a subscription
@router.post("/portal")
async def create_portal_session(user: CurrentUser = Depends(get_current_user)):
    async with db.session():
        profile = await db.query("users:get", {"id": user.id}) or {}
    customer_id = profile.get("stripeCustomerId")
    if not customer_id:
        raise HTTPException(status_code=404, detail="No Stripe customer found for user")

    stripe.api_key = settings.stripe.secret_key
    try:
        session = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=f"{settings.stripe.app_url}billing",
        )
    except stripe.StripeError as exc:
        logger.exception("Stripe portal session failed for user %s", user.id)
        raise HTTPException(status_code=502, detail=f"Payment provider error: {exc}")

    return {"url": session.url}


async def _checkout_completed(session: Dict[str, Any]) -> None:
    metadata = session.get("metadata") or {}
    user_id = session.get("client_reference_id") or metadata.get("userId")
    customer_id = session.get("customer")
    subscription_id = session.get("subscription")
    tier = metadata.get("tier")
    if not (user_id and customer_id and subscription_id and tier):
        logger.warning("Checkout session %s is missing user, customer or tier", session.get("id"))
        return

    status = SubscriptionStatus.TRIALING if tier in {t.value for t in FLEET_TIERS} else SubscriptionStatus.ACTIVE
    await db.mutation(
        "subscriptions:create",
        {
            "userId": user_id,
            "stripeCustomerId": customer_id,
            "stripeSubscriptionId": subscription_id,
            "tier": tier,
            "status": status.value,
        },
    )
    await db.mutation("users:updateStripeCustomerId", {"id": user_id, "stripeCustomerId": customer_id})
    logger.info("User %s subscribed to %s", user_id, tier)


async def _subscription_updated(subscription: Dict[str, Any]) -> None:
    await db.mutation(
        "subscriptions:update",
        {
            "stripeSubscriptionId": subscription["id"],
            "tier": subscription_tier(subscription),
            "status": subscription_status(subscription.get("status")),
            "currentPeriodStart": _millis(subscription.get("current_period_start")),
            "currentPeriodEnd": _millis(subscription.get("current_period_end")),
            "cancelAtPeriodEnd": subscription.get("cancel_at_period_end"),
            "trialEnd": _millis(subscription.get("trial_end")),
        },
    )


async def _subscription_deleted(subscription: Dict[str, Any]) -> None:
    await db.mutation("subscriptions:cancel", {"stripeSubscriptionId": subscription["id"]})
    logger.info("Subscription %s canceled", subscription["id"])


async def _payment_failed(invoice: Dict[str, Any]) -> None:
    subscription_id = invoice.get("subscription")
    if subscription_id:
        await db.mutation(
            "subscriptions:update",
            {"stripeSubscriptionId": subscription_id, "status": SubscriptionStatus.PAST_DUE.value},
        )


WEBHOOK_HANDLERS = {
    "checkout.session.completed": _checkout_completed,
    "customer.subscription.updated": _subscription_updated,
    "customer.subscription.deleted": _subscription_deleted,
    "invoice.payment_failed": _payment_failed,
}


# Route to handle Stripe webhook events
@router.post("/webhook")
async def stripe_webhook(request: Request):
    if not settings.stripe.webhook_secret:
        raise HTTPException(status_code=503, detail="Stripe webhook not configured")
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing stripe-signature header")

    payload = await request.body()
    try:
        event = stripe.Webhook.construct_event(payload, sig_header, settings.stripe.webhook_secret)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    handler = WEBHOOK_HANDLERS.get(event["type"])
    if handler is None:
        logger.info("Ignoring Stripe event %s", event["type"])
        return {"received": True}

    async with db.session():
        await handler(event["data"]["object"])
    return {"received": True}


# Route to read the current plan's limits
@router.get("/limits")
async def get_limits(user: CurrentUser = Depends(get_current_user)):
    async with db.session():
        profile = await db.query("users:get", {"id": user.id})
    return tier_limits(effective_tier(user, profile))
