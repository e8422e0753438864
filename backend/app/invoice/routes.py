"""Detention invoice routes.

Invoices bundle completed detention events for one broker or shipper. This
module builds them, renders the document, emails it and tracks payment. The
store keeps the event statuses in step when an invoice is sent or paid.
"""

from __future__ import annotations

import io
import logging
from typing import Any, Dict, List, Optional, Sequence

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse, StreamingResponse
from pydantic import BaseModel, Field

from app.auth.dependencies import CurrentUser, get_current_user, require_role
from app.common.enums import EmailStatus, EmailType, EventStatus, InvoiceStatus, Role
from app.common.utils import to_millis, utcnow
from app.common.validation import is_valid_email, normalize_email, sanitize_string, validate_invoice_number
from app.core import notifier
from app.db.convex_client import db
from app.detention.timer import format_currency
from app.invoice.services import (
    aging_summary,
    invoice_total,
    next_invoice_number,
    render_invoice_html,
    render_invoice_pdf,
    render_invoice_text,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoices", tags=["Invoices"])


class InvoiceCreate(BaseModel):
    detention_event_ids: List[str] = Field(min_length=1)
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = Field(default=None, max_length=200)
    recipient_company: Optional[str] = Field(default=None, max_length=200)


class InvoiceSend(BaseModel):
    recipient_email: Optional[str] = None
    subject: Optional[str] = Field(default=None, max_length=200)
    custom_message: Optional[str] = Field(default=None, max_length=2000)


def _clean_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not is_valid_email(value):
        raise HTTPException(status_code=422, detail="Invalid recipient email")
    return normalize_email(value)


async def _load_invoice(invoice_id: str, user: CurrentUser) -> Dict[str, Any]:
    invoice = await db.query("invoices:get", {"id": invoice_id})
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    if invoice.get("userId") != user.id:
        raise HTTPException(status_code=403, detail="Unauthorized to access invoice")
    return dict(invoice)


async def _load_invoice_events(invoice: Dict[str, Any]) -> List[Dict[str, Any]]:
    events = []
    for event_id in invoice.get("detentionEventIds") or []:
        event = await db.query("detentionEvents:get", {"id": event_id})
        if event:
            events.append(dict(event))
    return events


async def _facility_names(events: Sequence[Dict[str, Any]]) -> Dict[str, str]:
    names: Dict[str, str] = {}
    for facility_id in {event.get("facilityId") for event in events if event.get("facilityId")}:
        facility = await db.query("facilities:get", {"id": facility_id})
        if facility:
            names[facility_id] = facility.get("name") or ""
    return names


async def _load_document(invoice_id: str, user: CurrentUser):
    async with db.session():
        invoice = await _load_invoice(invoice_id, user)
        events = await _load_invoice_events(invoice)
        names = await _facility_names(events)
    return invoice, events, names


@router.post("", status_code=201, summary="Create an invoice from completed detention events")
async def create_invoice(payload: InvoiceCreate, user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    recipient_email = _clean_email(payload.recipient_email)
    event_ids = list(dict.fromkeys(payload.detention_event_ids))

    async with db.session():
        events: List[Dict[str, Any]] = []
        for event_id in event_ids:
            event = await db.query("detentionEvents:get", {"id": event_id})
            if not event:
                raise HTTPException(status_code=404, detail=f"Detention event {event_id} not found")
            if event.get("userId") != user.id:
                raise HTTPException(status_code=403, detail="Unauthorized to invoice detention event")
            if event.get("status") != EventStatus.COMPLETED.value:
                raise HTTPException(
                    status_code=409,
                    detail=f"Detention event {event_id} is '{event.get('status')}', only completed events can be invoiced",
                )
            events.append(dict(event))

        existing = await db.query("invoices:list", {"userId": user.id}) or []
        invoice_number = next_invoice_number(len(existing))
        validate_invoice_number(invoice_number)
        total = invoice_total(events)

        invoice_id = await db.mutation(
            "invoices:create",
            {
                "userId": user.id,
                "invoiceNumber": invoice_number,
                "detentionEventIds": event_ids,
                "recipientEmail": recipient_email,
                "recipientName": sanitize_string(payload.recipient_name) or None,
                "recipientCompany": sanitize_string(payload.recipient_company) or None,
                "totalAmount": total,
            },
        )

    logger.info("User %s created invoice %s for %s", user.id, invoice_number, format_currency(total))
    return {
        "id": invoice_id,
        "invoiceNumber": invoice_number,
        "status": InvoiceStatus.DRAFT.value,
        "totalAmount": total,
        "detentionEventIds": event_ids,
    }


@router.get("", summary="List the driver's invoices")
async def list_invoices(
    status: Optional[InvoiceStatus] = None, user: CurrentUser = Depends(get_current_user)
) -> List[Dict[str, Any]]:
    async with db.session():
        invoices = await db.query("invoices:list", {"userId": user.id}) or []
    if status:
        invoices = [invoice for invoice in invoices if invoice.get("status") == status.value]
    return sorted((dict(invoice) for invoice in invoices), key=lambda i: i.get("_creationTime") or 0, reverse=True)


@router.get("/aging", summary="Unpaid invoices bucketed by age")
async def get_aging(user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    async with db.session():
        invoices = await db.query("invoices:list", {"userId": user.id}) or []
    return aging_summary([dict(invoice) for invoice in invoices], utcnow())


@router.post("/reminders/run", summary="Send due payment reminders now")
async def run_reminders(user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    require_role([Role.ADMIN])(user)
    from app.core.scheduler import send_payment_reminders

    sent = await send_payment_reminders()
    return {"remindersSent": sent}


@router.get("/{invoice_id}", summary="Invoice detail with its detention events")
async def get_invoice(invoice_id: str, user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    invoice, events, names = await _load_document(invoice_id, user)
    invoice["events"] = [{**event, "facilityName": names.get(event.get("facilityId") or "")} for event in events]
    return invoice


@router.get("/{invoice_id}/html", response_class=HTMLResponse, summary="Rendered invoice document")
async def get_invoice_html(invoice_id: str, user: CurrentUser = Depends(get_current_user)) -> HTMLResponse:
    invoice, events, names = await _load_document(invoice_id, user)
    return HTMLResponse(render_invoice_html(invoice, events, names))


@router.get("/{invoice_id}/pdf", summary="Download invoice PDF")
async def download_invoice_pdf(invoice_id: str, user: CurrentUser = Depends(get_current_user)) -> StreamingResponse:
    invoice, events, names = await _load_document(invoice_id, user)
    buffer = io.BytesIO(render_invoice_pdf(invoice, events, names))
    filename = f"{invoice.get('invoiceNumber') or invoice_id}.pdf"
    headers = {"Content-Disposition": f"attachment; filename={filename}"}
    return StreamingResponse(buffer, media_type="application/pdf", headers=headers)


@router.post("/{invoice_id}/send", summary="Email the invoice and mark it sent")
async def send_invoice(
    invoice_id: str, payload: InvoiceSend, user: CurrentUser = Depends(get_current_user)
) -> Dict[str, Any]:
    async with db.session():
        invoice = await _load_invoice(invoice_id, user)
        if invoice.get("status") == InvoiceStatus.PAID.value:
            raise HTTPException(status_code=409, detail="Invoice is already paid")
        recipient = _clean_email(payload.recipient_email) or invoice.get("recipientEmail")
        if not recipient:
            raise HTTPException(status_code=422, detail="Recipient email is required")

        events = await _load_invoice_events(invoice)
        names = await _facility_names(events)
        number = invoice.get("invoiceNumber") or invoice_id
        subject = payload.subject or f"Detention Invoice {number}"
        message = sanitize_string(payload.custom_message) or None

        try:
            await notifier.send_email(
                recipient,
                subject,
                render_invoice_text(invoice, events, names),
                html=render_invoice_html(invoice, events, names, custom_message=message),
                attachments=[(f"{number}.pdf", render_invoice_pdf(invoice, events, names), "application/pdf")],
            )
        except Exception as exc:
            logger.exception("Failed to email invoice %s to %s", number, recipient)
            await db.mutation(
                "invoiceEmails:log",
                {
                    "invoiceId": invoice_id,
                    "userId": user.id,
                    "recipientEmail": recipient,
                    "emailType": EmailType.INITIAL.value,
                    "subject": subject,
                    "status": EmailStatus.FAILED.value,
                    "errorMessage": str(exc),
                },
            )
            raise HTTPException(status_code=502, detail="Failed to send invoice email")

        sent_at = to_millis(utcnow())
        await db.mutation("invoices:markSent", {"id": invoice_id, "sentAt": sent_at, "recipientEmail": recipient})
        await db.mutation(
            "invoiceEmails:log",
            {
                "invoiceId": invoice_id,
                "userId": user.id,
                "recipientEmail": recipient,
                "emailType": EmailType.INITIAL.value,
                "subject": subject,
                "customMessage": message,
                "status": EmailStatus.SENT.value,
            },
        )

    logger.info("Invoice %s sent to %s", number, recipient)
    return {"id": invoice_id, "status": InvoiceStatus.SENT.value, "sentAt": sent_at, "recipientEmail": recipient}


@router.post("/{invoice_id}/mark-paid", summary="Record that an invoice was paid")
async def mark_paid(invoice_id: str, user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    paid_at = to_millis(utcnow())
    async with db.session():
        invoice = await _load_invoice(invoice_id, user)
        if invoice.get("status") not in {InvoiceStatus.SENT.value, InvoiceStatus.PARTIALLY_PAID.value}:
            raise HTTPException(status_code=409, detail="Only sent invoices can be marked paid")
        await db.mutation("invoices:markPaid", {"id": invoice_id, "paidAt": paid_at})
    return {"id": invoice_id, "status": InvoiceStatus.PAID.value, "paidAt": paid_at}


@router.delete("/{invoice_id}", summary="Delete a draft invoice")
async def delete_invoice(invoice_id: str, user: CurrentUser = Depends(get_current_user)) -> Dict[str, Any]:
    async with db.session():
        invoice = await _load_invoice(invoice_id, user)
        if invoice.get("status") != InvoiceStatus.DRAFT.value:
            raise HTTPException(status_code=409, detail="Can only delete draft invoices")
        await db.mutation("invoices:remove", {"id": invoice_id})
    return {"message": "Invoice deleted", "id": invoice_id}
