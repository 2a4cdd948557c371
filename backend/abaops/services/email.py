from __future__ import annotations

import base64
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import List, Optional, Sequence

import httpx

from abaops.core.settings import settings


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass
class EmailSendResult:
    provider: str
    message_id: Optional[str] = None
    recipients: List[str] = field(default_factory=list)


class EmailSendError(RuntimeError):
    pass


def _normalize_recipients(to_address: str | Sequence[str]) -> List[str]:
    if isinstance(to_address, str):
        raw = [to_address]
    else:
        raw = list(to_address)
    recipients = [address.strip() for address in raw if address and address.strip()]
    if not recipients:
        raise EmailSendError("No recipients configured")
    return recipients


def send_email(
    *,
    to_address: str | Sequence[str],
    subject: str,
    html: str,
    text: str | None = None,
    attachments: Optional[Sequence[EmailAttachment]] = None,
) -> EmailSendResult:
    provider = (settings.email_provider or "disabled").lower()
    if provider in {"disabled", "none"}:
        raise EmailSendError("EMAIL_PROVIDER disabled")
    if not settings.email_from:
        raise EmailSendError("EMAIL_FROM not configured")

    recipients = _normalize_recipients(to_address)
    files = list(attachments or [])
    if provider == "resend":
        result = _send_resend(recipients=recipients, subject=subject, html=html, text=text, attachments=files)
    elif provider == "postmark":
        result = _send_postmark(recipients=recipients, subject=subject, html=html, text=text, attachments=files)
    elif provider == "smtp":
        result = _send_smtp(recipients=recipients, subject=subject, html=html, text=text, attachments=files)
    else:
        raise EmailSendError(f"Unsupported EMAIL_PROVIDER: {settings.email_provider}")
    result.recipients = recipients
    return result


def _b64(content: bytes) -> str:
    return base64.b64encode(content).decode("ascii")


def _send_resend(
    *,
    recipients: List[str],
    subject: str,
    html: str,
    text: str | None,
    attachments: List[EmailAttachment],
) -> EmailSendResult:
    if not settings.email_api_key:
        raise EmailSendError("EMAIL_API_KEY not configured for Resend")
    payload = {
        "from": settings.email_from,
        "to": recipients,
        "subject": subject,
        "html": html,
    }
    if text:
        payload["text"] = text
    if attachments:
        payload["attachments"] = [
            {"filename": item.filename, "content": _b64(item.content)} for item in attachments
        ]
    headers = {
        "Authorization": f"Bearer {settings.email_api_key}",
        "Content-Type": "application/json",
    }
    try:
        with httpx.Client(timeout=30) as client:
            resp = client.post("https://api.resend.com/emails", json=payload, headers=headers)
    except httpx.HTTPError as exc:
        raise EmailSendError(f"Resend request failed: {exc}") from exc
    if resp.status_code >= 400:
        raise EmailSendError(f"Resend error: {resp.status_code} {resp.text}")
    data = resp.json()
    return EmailSendResult(provider="resend", message_id=data.get("id"))


def _send_postmark(
    *,
    recipients: List[str],
    subject: str,
    html: str,
    text: str | None,
    attachments: List[EmailAttachment],
) -> EmailSendResult:
    if not settings.email_api_key:
        raise EmailSendError("EMAIL_API_KEY not configured for Postmark")
    payload = {
        "From": settings.email_from,
        "To": ", ".join(recipients),
        "Subject": subject,
        "HtmlBody": html,
    }
    if text:
        payload["TextBody"] = text
    if attachments:
        payload["Attachments"] = [
            {"Name": item.filename, "Content": _b64(item.content), "ContentType": item.content_type}
            for item in attachments
        ]
    headers = {
        "X-Postmark-Server-Token": settings.email_api_key,
        "Content-Type": "application/json",
    }
    try:
        with httpx.Client(timeout=30) as client:
            resp = client.post("https://api.postmarkapp.com/email", json=payload, headers=headers)
    except httpx.HTTPError as exc:
        raise EmailSendError(f"Postmark request failed: {exc}") from exc
    if resp.status_code >= 400:
        raise EmailSendError(f"Postmark error: {resp.status_code} {resp.text}")
    data = resp.json()
    return EmailSendResult(provider="postmark", message_id=data.get("MessageID"))


def _send_smtp(
    *,
    recipients: List[str],
    subject: str,
    html: str,
    text: str | None,
    attachments: List[EmailAttachment],
) -> EmailSendResult:
    if not settings.smtp_host:
        raise EmailSendError("SMTP_HOST not configured")
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = settings.email_from
    message["To"] = ", ".join(recipients)
    message.set_content(text or "This email requires an HTML-capable client.")
    message.add_alternative(html, subtype="html")
    for item in attachments:
        maintype, _, subtype = item.content_type.partition("/")
        message.add_attachment(item.content, maintype=maintype, subtype=subtype or "octet-stream", filename=item.filename)

    try:
        server = smtplib.SMTP(settings.smtp_host, settings.smtp_port)
        try:
            if settings.smtp_use_tls:
                server.starttls()
            if settings.smtp_username and settings.smtp_password:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(message)
        finally:
            server.quit()
    except (smtplib.SMTPException, OSError) as exc:
        raise EmailSendError(f"SMTP error: {exc}") from exc
    return EmailSendResult(provider="smtp")
