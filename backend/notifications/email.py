"""Outbound email — mock (log only) or SendGrid over HTTPS.

``EmailService.send`` never raises: delivery problems are logged and
reported as ``False`` so callers can treat email as fire-and-forget.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from backend.config import settings

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailProvider:
    """Email provider types."""
    SENDGRID = "sendgrid"
    MOCK = "mock"


class EmailService:
    """Service for sending transactional emails."""

    def __init__(
        self,
        *,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.provider = provider or settings.EMAIL_PROVIDER
        self.api_key = api_key if api_key is not None else settings.SENDGRID_API_KEY
        self.from_email = from_email or settings.EMAIL_FROM
        self.from_name = from_name or settings.EMAIL_FROM_NAME
        self.timeout = timeout or settings.EMAIL_TIMEOUT_SECONDS
        self._transport = transport

    def _determine_provider(self) -> str:
        if self.provider == EmailProvider.SENDGRID and self.api_key:
            return EmailProvider.SENDGRID
        return EmailProvider.MOCK

    async def send(self, to: str, subject: str, html: str, text: str) -> bool:
        """Send one message; returns whether the provider accepted it."""
        provider = self._determine_provider()
        try:
            if provider == EmailProvider.SENDGRID:
                return await self._send_via_sendgrid(to, subject, html, text)
            return self._send_mock(to, subject)
        except httpx.HTTPError as exc:
            logger.error("Failed to send email via %s to %s: %s", provider, to, exc)
            return False

    async def _send_via_sendgrid(self, to: str, subject: str, html: str, text: str) -> bool:
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text},
                {"type": "text/html", "value": html},
            ],
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                SENDGRID_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        if response.status_code >= 400:
            logger.error(
                "SendGrid rejected email to %s: %s %s",
                to, response.status_code, response.text[:200],
            )
            return False
        logger.info("Email sent to %s via SendGrid", to)
        return True

    def _send_mock(self, to: str, subject: str) -> bool:
        logger.info("[MOCK EMAIL] To: %s | Subject: %s", to, subject)
        return True
