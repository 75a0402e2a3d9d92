from __future__ import annotations

import asyncio
import logging
import re
import smtplib
from email.message import EmailMessage
from typing import Optional, Protocol

import httpx

from affiliate_payouts.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class NotificationResult:
    def __init__(self, success: bool, detail: str = "") -> None:
        self.success = success
        self.detail = detail

    def __repr__(self) -> str:
        return f"NotificationResult(success={self.success}, detail={self.detail!r})"


class EmailSenderProtocol(Protocol):
    async def send_email(self, to: str, subject: str, html: str) -> NotificationResult:
        ...


def html_to_text(html: str) -> str:
    """Crude plain-text alternative for mail clients that skip HTML parts."""
    text = re.sub(r"<(br|/p|/li|/h\d|/div)\s*/?>", "\n", html, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    return re.sub(r"\n\s*\n+", "\n\n", text).strip()


class EmailSender:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    async def send_email(self, to: str, subject: str, html: str) -> NotificationResult:
        settings = self.settings
        if not settings.smtp_host or not settings.smtp_username or not settings.smtp_password:
            logger.warning(f"SMTP not configured, dropping email to {to}: {subject}")
            return NotificationResult(False, "SMTP not configured")

        sender = settings.email_from_address or settings.smtp_username
        message = EmailMessage()
        message["From"] = f"{settings.email_from_name} <{sender}>"
        message["To"] = to
        message["Subject"] = subject
        message.set_content(html_to_text(html))
        message.add_alternative(html, subtype="html")

        def _send() -> NotificationResult:
            try:
                with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
                    server.starttls()
                    server.login(settings.smtp_username, settings.smtp_password)
                    server.send_message(message)
                return NotificationResult(True, "Email delivered via SMTP")
            except Exception as exc:
                logger.exception("Failed to send SMTP email", extra={"recipient": to})
                return NotificationResult(False, f"SMTP failure: {exc}")

        return await asyncio.to_thread(_send)


class SlackSender:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    async def send(self, subject: str, body: str) -> NotificationResult:
        webhook = self.settings.slack_webhook_url
        if not webhook:
            return NotificationResult(False, "Slack webhook not configured")

        payload = {"text": f"*{subject}*\n{body}"}
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(webhook, json=payload, timeout=10)
        except httpx.HTTPError as exc:
            logger.error("Slack webhook unreachable", extra={"error": str(exc)})
            return NotificationResult(False, f"Slack failure: {exc}")
        if response.status_code in (200, 204):
            return NotificationResult(True, "Slack webhook accepted message")
        logger.error("Slack webhook failed", extra={"status": response.status_code, "body": response.text})
        return NotificationResult(False, f"Slack failure: {response.text}")
