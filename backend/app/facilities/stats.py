"""Facility reputation: ratings, wait times and payment reliability."""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Optional


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def calculate_payment_rate(paid: float, invoiced: float) -> int:
    """Percentage of invoiced detention that was paid, as a whole number."""
    if invoiced == 0:
        return 0
    return _round_half_up(paid / invoiced * 100)


def format_payment_rate(rate: float) -> str:
    return f"{rate}%"


def format_avg_payment_days(days: float) -> str:
    if days == 0:
        return "No data"
    if days < 7:
        return f"{_round_half_up(days)} days"
    if days < 30:
        return f"~{_round_half_up(days / 7)} weeks"
    return f"~{_round_half_up(days / 30)} months"


def payment_reliability_label(rate: float) -> str:
    if rate >= 90:
        return "Excellent"
    if rate >= 75:
        return "Good"
    if rate >= 50:
        return "Fair"
    return "Poor"


def payment_stats(reviews: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Summarise driver-reported payment outcomes for a facility.

    Only reviews that answered the "did you get paid" question count as
    claims. Averages cover paid claims only and are ``None`` when there are
    none.
    """
    claims = [review for review in reviews if review.get("gotPaid") is not None]
    if not claims:
        return {
            "totalClaims": 0,
            "paidClaims": 0,
            "unpaidClaims": 0,
            "paymentRate": None,
            "avgPaymentDays": None,
            "avgPaymentAmount": None,
            "reliability": None,
        }

    paid = [review for review in claims if review.get("gotPaid") is True]
    avg_days: Optional[float] = None
    avg_amount: Optional[float] = None
    if paid:
        avg_days = sum(review.get("paymentDays") or 0 for review in paid) / len(paid)
        avg_amount = sum(review.get("paymentAmount") or 0 for review in paid) / len(paid)

    rate = calculate_payment_rate(len(paid), len(claims))
    return {
        "totalClaims": len(claims),
        "paidClaims": len(paid),
        "unpaidClaims": len(claims) - len(paid),
        "paymentRate": rate,
        "avgPaymentDays": _round_half_up(avg_days) if avg_days else None,
        "avgPaymentAmount": _round_half_up(avg_amount * 100) / 100 if avg_amount else None,
        "reliability": payment_reliability_label(rate),
        "paymentRateDisplay": format_payment_rate(rate),
        "avgPaymentDaysDisplay": format_avg_payment_days(avg_days or 0),
    }


def average_rating(reviews: List[Dict[str, Any]]) -> Optional[float]:
    ratings = [review["overallRating"] for review in reviews if review.get("overallRating") is not None]
    if not ratings:
        return None
    return _round_half_up(sum(ratings) / len(ratings) * 10) / 10


def average_wait_minutes(events: Iterable[Dict[str, Any]]) -> Optional[int]:
    """Mean dwell time in minutes across events that have checked out."""
    waits = [
        (event["departureTime"] - event["arrivalTime"]) / 60000
        for event in events
        if event.get("departureTime") and event.get("arrivalTime")
    ]
    if not waits:
        return None
    return _round_half_up(sum(waits) / len(waits))
