"""Detention history, summaries and CSV export."""

from __future__ import annotations

from datetime import datetime
from io import StringIO
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from app.auth.dependencies import CurrentUser, get_current_user
from app.common.enums import EventStatus, EventType
from app.common.utils import utcnow
from app.db.convex_client import db
from app.history.summary import (
    export_rows,
    filter_events,
    history_summary,
    monthly_summary,
    paginate,
)

router = APIRouter(prefix="/history", tags=["History"])

EXPORT_COLUMNS = [
    "Event ID",
    "Facility",
    "Type",
    "Status",
    "Load Reference",
    "Arrival",
    "Departure",
    "Dwell Time",
    "Detention",
    "Hourly Rate",
    "Amount",
]


async def _load_events(user: CurrentUser) -> List[Dict[str, Any]]:
    events = await db.query("detentionEvents:list", {"userId": user.id}) or []
    return [dict(event) for event in events]


async def _facility_names(facility_ids: Iterable[Optional[str]]) -> Dict[str, str]:
    names: Dict[str, str] = {}
    for facility_id in {fid for fid in facility_ids if fid}:
        facility = await db.query("facilities:get", {"id": facility_id})
        if facility:
            names[facility_id] = facility.get("name") or ""
    return names


@router.get("", summary="Filtered, paginated detention history")
async def get_history(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    facility_id: Optional[str] = None,
    status: Optional[EventStatus] = None,
    event_type: Optional[EventType] = None,
    offset: int = Query(default=0, ge=0),
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    user: CurrentUser = Depends(get_current_user),
) -> Dict[str, Any]:
    async with db.session():
        events = filter_events(
            await _load_events(user),
            start=start,
            end=end,
            facility_id=facility_id,
            status=status.value if status else None,
            event_type=event_type.value if event_type else None,
        )
        page, total, has_more = paginate(events, offset, limit)
        names = await _facility_names(event.get("facilityId") for event in page)

    enriched = [{**event, "facilityName": names.get(event.get("facilityId") or "")} for event in page]
    return {"events": enriched, "totalCount": total, "hasMore": has_more}


@router.get("/summary", summary="Totals and breakdowns for a date range")
async def get_summary(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    user: CurrentUser = Depends(get_current_user),
) -> Dict[str, Any]:
    async with db.session():
        events = filter_events(await _load_events(user), start=start, end=end)
        names = await _facility_names(event.get("facilityId") for event in events)
    return history_summary(events, names)


@router.get("/monthly", summary="Monthly detention totals")
async def get_monthly(
    months: int = Query(default=12, ge=1, le=60),
    user: CurrentUser = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    async with db.session():
        events = await _load_events(user)
    return monthly_summary(events, utcnow(), months)


@router.get("/export.csv", summary="Export detention history as CSV")
async def export_history(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[EventStatus] = None,
    user: CurrentUser = Depends(get_current_user),
) -> StreamingResponse:
    async with db.session():
        events = filter_events(
            await _load_events(user),
            start=start,
            end=end,
            status=status.value if status else None,
        )
        names = await _facility_names(event.get("facilityId") for event in events)

    df = pd.DataFrame(export_rows(events, names), columns=EXPORT_COLUMNS)
    stream = StringIO()
    df.to_csv(stream, index=False)
    stream.seek(0)
    return StreamingResponse(stream, media_type="text/csv", headers={
        "Content-Disposition": "attachment; filename=detention_history.csv"
    })
