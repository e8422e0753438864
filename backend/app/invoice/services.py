"""Invoice numbering, totals, aging and document rendering."""

from __future__ import annotations

import math
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.common.enums import InvoiceStatus
from app.common.utils import from_millis, to_millis
from app.detention.timer import format_currency, format_duration

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
DAY_MS = 24 * 60 * 60 * 1000

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)
_env.filters["currency"] = format_currency
_env.filters["duration"] = format_duration


def next_invoice_number(existing_count: int) -> str:
    return f"INV-{existing_count + 1:05d}"


def invoice_total(events: Iterable[Dict[str, Any]]) -> float:
    total = sum(float(event.get("totalAmount") or 0) for event in events)
    return math.floor(total * 100 + 0.5) / 100


def days_outstanding(invoice: Dict[str, Any], now: datetime) -> int:
    sent_at = invoice.get("sentAt") or invoice.get("_creationTime") or to_millis(now)
    return math.floor((to_millis(now) - sent_at) / DAY_MS)


def aging_bucket(days: int) -> str:
    if days <= 30:
        return "current"
    if days <= 60:
        return "thirtyDays"
    if days <= 90:
        return "sixtyDays"
    return "ninetyPlus"


def aging_summary(invoices: List[Dict[str, Any]], now: datetime) -> Dict[str, Any]:
    """Bucket unpaid (sent) invoices by age and total what has been paid."""
    buckets = {name: {"count": 0, "amount": 0.0} for name in ("current", "thirtyDays", "sixtyDays", "ninetyPlus")}
    unpaid = [invoice for invoice in invoices if invoice.get("status") == InvoiceStatus.SENT.value]
    paid = [invoice for invoice in invoices if invoice.get("status") == InvoiceStatus.PAID.value]

    for invoice in unpaid:
        bucket = buckets[aging_bucket(days_outstanding(invoice, now))]
        bucket["count"] += 1
        bucket["amount"] += float(invoice.get("totalAmount") or 0)

    total_unpaid = sum(float(invoice.get("totalAmount") or 0) for invoice in unpaid)
    total_paid = sum(float(invoice.get("totalAmount") or 0) for invoice in paid)
    return {
        "buckets": buckets,
        "totalUnpaid": total_unpaid,
        "totalPaid": total_paid,
        "totalInvoiced": total_unpaid + total_paid,
        "unpaidCount": len(unpaid),
        "paidCount": len(paid),
    }


def reminder_due(invoice: Dict[str, Any], now: datetime, interval_days: int, max_reminders: int) -> bool:
    """A reminder is due every ``interval_days`` after sending, up to a cap."""
    if invoice.get("status") != InvoiceStatus.SENT.value or not invoice.get("recipientEmail"):
        return False
    count = int(invoice.get("reminderCount") or 0)
    if count >= max_reminders:
        return False
    anchor = invoice.get("lastReminderAt") or invoice.get("sentAt")
    if anchor is None:
        return False
    return to_millis(now) - anchor >= interval_days * DAY_MS


def _line_items(events: Iterable[Dict[str, Any]], facility_names: Mapping[str, str]) -> List[Dict[str, Any]]:
    items = []
    for event in events:
        arrival = from_millis(event.get("arrivalTime"))
        departure = from_millis(event.get("departureTime"))
        items.append(
            {
                "facility": facility_names.get(event.get("facilityId") or "", "Unknown facility"),
                "load_reference": event.get("loadReference") or "",
                "event_type": (event.get("eventType") or "").title(),
                "arrival": arrival.strftime("%Y-%m-%d %H:%M UTC") if arrival else "",
                "departure": departure.strftime("%Y-%m-%d %H:%M UTC") if departure else "",
                "dwell_seconds": int((departure - arrival).total_seconds()) if arrival and departure else 0,
                "detention_seconds": int(event.get("detentionMinutes") or 0) * 60,
                "hourly_rate": float(event.get("hourlyRate") or 0),
                "amount": float(event.get("totalAmount") or 0),
            }
        )
    return items


def render_invoice_html(
    invoice: Dict[str, Any],
    events: List[Dict[str, Any]],
    facility_names: Mapping[str, str],
    *,
    custom_message: Optional[str] = None,
) -> str:
    template = _env.get_template("invoice.html")
    issued = from_millis(invoice.get("sentAt") or invoice.get("_creationTime"))
    return template.render(
        invoice=invoice,
        issued=issued.strftime("%B %d, %Y") if issued else "",
        items=_line_items(events, facility_names),
        total=float(invoice.get("totalAmount") or 0),
        custom_message=custom_message,
    )


def render_invoice_text(invoice: Dict[str, Any], events: List[Dict[str, Any]], facility_names: Mapping[str, str]) -> str:
    lines = [f"Invoice {invoice.get('invoiceNumber')}", ""]
    for item in _line_items(events, facility_names):
        lines.append(
            f"{item['facility']} ({item['arrival']}): "
            f"{format_duration(item['detention_seconds'])} detention @ {format_currency(item['hourly_rate'])}/hr"
            f" = {format_currency(item['amount'])}"
        )
    lines.extend(["", f"Total due: {format_currency(float(invoice.get('totalAmount') or 0))}"])
    return "\n".join(lines)


def render_invoice_pdf(invoice: Dict[str, Any], events: List[Dict[str, Any]], facility_names: Mapping[str, str]) -> bytes:
    """Render the HTML invoice to PDF bytes."""
    from weasyprint import HTML

    html = render_invoice_html(invoice, events, facility_names)
    return HTML(string=html).write_pdf()
