"""Aggregations over a driver's detention history.

All functions take plain event documents (``arrivalTime`` in Unix ms) and
return JSON-ready dicts; nothing here touches the store.
"""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from app.common.enums import EventStatus, EventType
from app.common.utils import from_millis, to_millis
from app.detention.timer import format_currency, format_duration


def _round_to(value: float, places: int) -> float:
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def newest_first(events: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(events, key=lambda event: event.get("arrivalTime") or 0, reverse=True)


def filter_events(
    events: Iterable[Dict[str, Any]],
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    facility_id: Optional[str] = None,
    status: Optional[str] = None,
    event_type: Optional[str] = None,
) -> List[Dict[str, Any]]:
    start_ms = to_millis(start) if start else None
    end_ms = to_millis(end) if end else None
    selected = []
    for event in events:
        arrival = event.get("arrivalTime") or 0
        if start_ms is not None and arrival < start_ms:
            continue
        if end_ms is not None and arrival > end_ms:
            continue
        if facility_id and event.get("facilityId") != facility_id:
            continue
        if status and event.get("status") != status:
            continue
        if event_type and event.get("eventType") != event_type:
            continue
        selected.append(event)
    return newest_first(selected)


def paginate(
    events: List[Dict[str, Any]], offset: int = 0, limit: Optional[int] = None
) -> Tuple[List[Dict[str, Any]], int, bool]:
    """Return ``(page, total_count, has_more)``."""
    total = len(events)
    page = events[offset:]
    if limit:
        page = page[:limit]
        return page, total, offset + len(page) < total
    return page, total, False


def history_summary(
    events: List[Dict[str, Any]], facility_names: Mapping[str, str]
) -> Dict[str, Any]:
    total_events = len(events)
    total_minutes = sum(event.get("detentionMinutes") or 0 for event in events)
    total_amount = sum(event.get("totalAmount") or 0 for event in events)

    by_status = {status.value: 0 for status in EventStatus}
    by_type = {event_type.value: 0 for event_type in EventType}
    per_facility: Dict[str, Dict[str, int]] = defaultdict(lambda: {"count": 0, "totalMinutes": 0})
    for event in events:
        if event.get("status") in by_status:
            by_status[event["status"]] += 1
        if event.get("eventType") in by_type:
            by_type[event["eventType"]] += 1
        facility_id = event.get("facilityId")
        if facility_id:
            per_facility[facility_id]["count"] += 1
            per_facility[facility_id]["totalMinutes"] += event.get("detentionMinutes") or 0

    top_facilities = [
        {"id": facility_id, "name": facility_names[facility_id], **stats}
        for facility_id, stats in per_facility.items()
        if facility_id in facility_names
    ]
    top_facilities.sort(key=lambda item: item["count"], reverse=True)

    return {
        "totalEvents": total_events,
        "totalDetentionMinutes": total_minutes,
        "totalDetentionHours": _round_to(total_minutes / 60, 1),
        "totalAmount": _round_to(total_amount, 2),
        "averageDetentionMinutes": math.floor(total_minutes / total_events + 0.5) if total_events else 0,
        "averageAmount": _round_to(total_amount / total_events, 2) if total_events else 0,
        "byStatus": by_status,
        "byType": by_type,
        "topFacilities": top_facilities[:5],
    }


def monthly_summary(events: Iterable[Dict[str, Any]], now: datetime, months: int = 12) -> List[Dict[str, Any]]:
    """Per-month totals for the trailing ``months`` (30-day months)."""
    cutoff = to_millis(now - timedelta(days=months * 30))
    buckets: Dict[str, Dict[str, float]] = defaultdict(lambda: {"count": 0, "minutes": 0, "amount": 0.0})
    for event in events:
        arrival = event.get("arrivalTime")
        if arrival is None or arrival < cutoff:
            continue
        key = from_millis(arrival).strftime("%Y-%m")
        bucket = buckets[key]
        bucket["count"] += 1
        bucket["minutes"] += event.get("detentionMinutes") or 0
        bucket["amount"] += event.get("totalAmount") or 0

    return [
        {"month": month, "count": data["count"], "minutes": data["minutes"], "amount": _round_to(data["amount"], 2)}
        for month, data in sorted(buckets.items())
    ]


def export_rows(events: Iterable[Dict[str, Any]], facility_names: Mapping[str, str]) -> List[Dict[str, Any]]:
    rows = []
    for event in events:
        arrival = from_millis(event.get("arrivalTime"))
        departure = from_millis(event.get("departureTime"))
        dwell_seconds = int((departure - arrival).total_seconds()) if arrival and departure else 0
        detention_minutes = event.get("detentionMinutes") or 0
        rows.append(
            {
                "Event ID": event.get("_id"),
                "Facility": facility_names.get(event.get("facilityId") or "", ""),
                "Type": event.get("eventType"),
                "Status": event.get("status"),
                "Load Reference": event.get("loadReference") or "",
                "Arrival": arrival.isoformat() if arrival else "",
                "Departure": departure.isoformat() if departure else "",
                "Dwell Time": format_duration(dwell_seconds) if departure else "",
                "Detention": format_duration(detention_minutes * 60),
                "Hourly Rate": format_currency(event.get("hourlyRate") or 0),
                "Amount": format_currency(event.get("totalAmount") or 0),
            }
        )
    return rows
