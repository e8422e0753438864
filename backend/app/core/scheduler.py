# backend/app/core/scheduler.py
## Background jobs. Sent invoices that stay unpaid get a payment reminder
# every ``REMINDER_INTERVAL_DAYS`` after sending, up to ``REMINDER_MAX_COUNT``.
# Runs hourly on APScheduler inside the API process.
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.common.enums import EmailStatus, EmailType, InvoiceStatus
from app.common.utils import from_millis, to_millis, utcnow
from app.core.config import settings
from app.core.notifier import send_email
from app.db.convex_client import db
from app.detention.timer import format_currency
from app.invoice.services import days_outstanding, reminder_due

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def _reminder_body(invoice, days):
    number = invoice.get("invoiceNumber")
    sent = from_millis(invoice.get("sentAt"))
    sent_on = sent.strftime("%B %d, %Y") if sent else "recently"
    return (
        f"This is a friendly reminder that detention invoice {number} for "
        f"{format_currency(float(invoice.get('totalAmount') or 0))} was sent on {sent_on} "
        f"and is now {days} days outstanding.\n\n"
        "Please arrange payment at your earliest convenience."
    )


async def send_payment_reminders() -> int:
    """Email every due reminder and return how many went out."""
    now = utcnow()
    sent = 0
    async with db.session():
        invoices = await db.query("invoices:listByStatus", {"status": InvoiceStatus.SENT.value}) or []
        for invoice in invoices:
            if not reminder_due(invoice, now, settings.reminders.interval_days, settings.reminders.max_reminders):
                continue

            number = invoice.get("invoiceNumber")
            recipient = invoice["recipientEmail"]
            subject = f"Payment reminder: Detention Invoice {number}"
            try:
                await send_email(recipient, subject, _reminder_body(invoice, days_outstanding(invoice, now)))
            except Exception as exc:
                logger.warning("Reminder for invoice %s to %s failed: %s", number, recipient, exc)
                status = EmailStatus.FAILED
            else:
                await db.mutation("invoices:recordReminder", {"id": invoice["_id"], "remindedAt": to_millis(now)})
                status = EmailStatus.SENT
                sent += 1

            await db.mutation(
                "invoiceEmails:log",
                {
                    "invoiceId": invoice["_id"],
                    "userId": invoice.get("userId"),
                    "recipientEmail": recipient,
                    "emailType": EmailType.REMINDER.value,
                    "subject": subject,
                    "status": status.value,
                },
            )

    logger.info("Sent %d payment reminders", sent)
    return sent


def start():
    scheduler.add_job(send_payment_reminders, IntervalTrigger(minutes=60), id="payment_reminders", replace_existing=True)
    scheduler.start()


def shutdown():
    if scheduler.running:
        scheduler.shutdown(wait=False)
