# backend/app/core/notifier.py

## Outgoing email for invoices and payment reminders.
# Uses aiosmtplib so delivery never blocks the event loop. SMTP details come
# from ``settings.smtp``.
from __future__ import annotations

import logging
from email.message import EmailMessage
from typing import Iterable, Tuple

import aiosmtplib

from app.core.config import settings

logger = logging.getLogger(__name__)

__all__ = ["send_email", "Attachment"]

# (filename, payload, mime type)
Attachment = Tuple[str, bytes, str]


async def send_email(
    to_email: str,
    subject: str,
    body: str,
    *,
    html: str | None = None,
    attachments: Iterable[Attachment] = (),
) -> None:
    msg = EmailMessage()
    msg["From"] = settings.smtp.from_address
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")
    for filename, payload, mime_type in attachments:
        maintype, _, subtype = mime_type.partition("/")
        msg.add_attachment(payload, maintype=maintype, subtype=subtype or "octet-stream", filename=filename)

    logger.info("Sending '%s' to %s", subject, to_email)
    await aiosmtplib.send(
        msg,
        hostname=settings.smtp.host,
        port=settings.smtp.port,
        username=settings.smtp.username,
        password=settings.smtp.password,
        start_tls=True,
    )
