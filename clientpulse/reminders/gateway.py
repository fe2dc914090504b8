"""Delivery gateways: send a single message to an address.

- DeliveryGateway: Abstract base class.
- SmtpGateway: stdlib smtplib, dispatched to a worker thread.
- WebhookGateway: JSON POST to an HTTP mail relay via httpx.
- ConsoleGateway: logs the message (default when no transport is configured).

Gateways report failure through SendResult rather than raising; callers
still guard against unexpected exceptions.
"""

from __future__ import annotations

import asyncio
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import TYPE_CHECKING, NamedTuple

import httpx
from loguru import logger

if TYPE_CHECKING:
    from clientpulse.config.schema import Config, SmtpConfig, WebhookConfig


class SendResult(NamedTuple):
    """Outcome of one send. error is None on success."""

    ok: bool
    error: str | None = None


class DeliveryGateway(ABC):
    """Outbound message transport."""

    name: str = "base"

    @abstractmethod
    async def send(self, to: str, subject: str, body: str) -> SendResult:
        """Send one message. Must not raise for ordinary delivery failures."""

    async def close(self) -> None:
        """Release transport resources. No-op by default."""


# ============================================================================
# Console
# ============================================================================


class ConsoleGateway(DeliveryGateway):
    """Writes messages to the log instead of sending them."""

    name = "console"

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, to: str, subject: str, body: str) -> SendResult:
        self.sent.append((to, subject, body))
        logger.info(f"[Gateway:console] To: {to} | Subject: {subject}\n{body}")
        return SendResult(True)


# ============================================================================
# SMTP
# ============================================================================


class SmtpGateway(DeliveryGateway):
    """Plain SMTP (optionally STARTTLS) using the standard library.

    smtplib is blocking, so each send runs in a worker thread via
    asyncio.to_thread(); the connection is opened per message.
    """

    name = "smtp"

    def __init__(self, config: "SmtpConfig"):
        if not config.host:
            raise ValueError("SMTP host is required but not configured")
        if not config.from_email:
            raise ValueError("SMTP from_email is required but not configured")
        self.config = config

    def _build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.config.from_email
        msg["To"] = to
        msg.set_content(body)
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        cfg = self.config
        with smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout) as server:
            if cfg.use_tls:
                server.starttls(context=ssl.create_default_context())
            if cfg.username:
                server.login(cfg.username, cfg.password)
            server.send_message(msg)

    async def send(self, to: str, subject: str, body: str) -> SendResult:
        msg = self._build_message(to, subject, body)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(f"[Gateway:smtp] Send to {to} failed: {e}")
            return SendResult(False, str(e) or e.__class__.__name__)
        logger.debug(f"[Gateway:smtp] Sent to {to}")
        return SendResult(True)


# ============================================================================
# Webhook
# ============================================================================


class WebhookGateway(DeliveryGateway):
    """POSTs {"to", "subject", "text"} to an HTTP mail relay."""

    name = "webhook"

    def __init__(self, config: "WebhookConfig", client: httpx.AsyncClient | None = None):
        if not config.url:
            raise ValueError("Webhook url is required but not configured")
        self.config = config
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.config.token:
                headers["Authorization"] = f"Bearer {self.config.token}"
            self._client = httpx.AsyncClient(headers=headers, timeout=self.config.timeout)
            self._owns_client = True
        return self._client

    async def send(self, to: str, subject: str, body: str) -> SendResult:
        payload = {"to": to, "subject": subject, "text": body}
        try:
            response = await self._get_client().post(self.config.url, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"[Gateway:webhook] Request failed for {to}: {e}")
            return SendResult(False, str(e) or e.__class__.__name__)

        if response.is_success:
            return SendResult(True)
        error = f"HTTP {response.status_code}: {response.text[:200]}"
        logger.warning(f"[Gateway:webhook] Relay rejected message for {to}: {error}")
        return SendResult(False, error)

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None


def build_gateway(config: "Config") -> DeliveryGateway:
    """Pick the transport enabled in config (smtp > webhook > console)."""
    transport = config.active_transport
    if transport == "smtp":
        return SmtpGateway(config.mail.smtp)
    if transport == "webhook":
        return WebhookGateway(config.mail.webhook)
    return ConsoleGateway()
