"""Outbound mail with ordered fallback.

Delivery always tries direct SMTP submission first. When that fails and the
relay fallback is enabled, the same message is posted as JSON to the mail
relay API. If every attempted channel fails, ``AllChannelsFailedError``
carries each channel's error so operators can tell a broken SMTP host from a
misconfigured relay.
"""
from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx

from .config import RelayConfig, Settings, SmtpConfig

logger = logging.getLogger("concierge.mailer")

PRIMARY = "primary"
SECONDARY = "secondary"


@dataclass(frozen=True)
class OutboundMessage:
    to: str
    subject: str
    text: str
    html: Optional[str] = None
    reply_to: Optional[str] = None


@dataclass(frozen=True)
class DeliveryResult:
    method: str
    transport: str
    message_id: Optional[str] = None


class ChannelError(Exception):
    def __init__(self, method: str, transport: str, message: str) -> None:
        super().__init__(f"{transport}: {message}")
        self.method = method
        self.transport = transport
        self.message = message

    def as_dict(self) -> Dict[str, str]:
        return {"method": self.method, "transport": self.transport, "error": self.message}


class AllChannelsFailedError(Exception):
    def __init__(self, errors: List[ChannelError]) -> None:
        summary = "; ".join(f"{e.transport}: {e.message}" for e in errors) or "no channel attempted"
        super().__init__(f"Failed to send email. Attempts: {summary}")
        self.errors = errors


class MailTransport(Protocol):
    name: str

    async def send(self, message: OutboundMessage) -> Optional[str]: ...


class SmtpTransport:
    """Direct submission through ``smtplib``, run off the event loop.

    The socket timeout given at construction bounds connect, greeting and
    every later read; there is no per-call cancellation.
    """

    name = "smtp"

    def __init__(self, cfg: SmtpConfig, *, smtp_factory: Callable[..., Any] = smtplib.SMTP) -> None:
        self._cfg = cfg
        self._smtp_factory = smtp_factory

    def _build(self, message: OutboundMessage) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = message.subject
        msg["From"] = self._cfg.sender
        msg["To"] = message.to
        if message.reply_to:
            msg["Reply-To"] = message.reply_to
        domain = self._cfg.from_email.rsplit("@", 1)[-1] if "@" in self._cfg.from_email else None
        msg["Message-ID"] = make_msgid(domain=domain)
        msg.set_content(message.text)
        if message.html:
            msg.add_alternative(message.html, subtype="html")
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        cfg = self._cfg
        with self._smtp_factory(cfg.host, cfg.port, timeout=cfg.timeout_seconds) as server:
            server.ehlo()
            if cfg.use_tls:
                server.starttls()
                server.ehlo()
            if cfg.user and cfg.password:
                server.login(cfg.user, cfg.password)
            server.send_message(msg)

    async def send(self, message: OutboundMessage) -> Optional[str]:
        if not self._cfg.host:
            raise RuntimeError("SMTP_HOST not configured")
        msg = self._build(message)
        logger.info(
            "[MAIL] using=smtp host=%s port=%s tls=%s subject=%r",
            self._cfg.host,
            self._cfg.port,
            self._cfg.use_tls,
            message.subject,
        )
        await asyncio.to_thread(self._send_sync, msg)
        return str(msg["Message-ID"])


class RelayTransport:
    """POSTs the message to ``<RELAY_API_URL>/api/send-email`` with an ``X-Api-Key`` header."""

    name = "relay"

    def __init__(
        self,
        cfg: RelayConfig,
        *,
        sender: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._cfg = cfg
        self._sender = sender
        self._transport = transport

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._cfg.timeout_seconds),
            transport=self._transport,
        ) as client:
            return await client.post(
                f"{self._cfg.url}/api/send-email",
                headers={"X-Api-Key": self._cfg.api_key},
                json=payload,
            )

    async def send(self, message: OutboundMessage) -> Optional[str]:
        if not self._cfg.url:
            raise RuntimeError("RELAY_API_URL not configured")
        if not self._cfg.api_key:
            raise RuntimeError("RELAY_API_KEY not configured")

        payload = {
            "from": self._sender or None,
            "to": message.to,
            "replyTo": message.reply_to,
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        logger.info("[MAIL] using=relay url=%s subject=%r", self._cfg.url, message.subject)
        try:
            resp = await asyncio.wait_for(self._post(payload), timeout=self._cfg.timeout_seconds)
        except asyncio.TimeoutError:
            raise RuntimeError(f"relay timeout after {self._cfg.timeout_seconds:g} seconds") from None

        if resp.status_code < 200 or resp.status_code >= 300:
            try:
                detail = resp.json().get("error") or "Unknown error"
            except ValueError:
                detail = "Unknown error"
            raise RuntimeError(f"relay request failed: {resp.status_code} - {detail}")

        try:
            body = resp.json()
        except ValueError:
            body = {}
        message_id = body.get("messageId") if isinstance(body, dict) else None
        return str(message_id) if message_id else None


@dataclass
class ResilientMailer:
    primary: MailTransport
    secondary: Optional[MailTransport] = None
    fallback_enabled: bool = False

    async def _attempt(self, method: str, transport: MailTransport, message: OutboundMessage) -> DeliveryResult:
        try:
            message_id = await transport.send(message)
        except Exception as exc:
            raise ChannelError(method, transport.name, str(exc) or exc.__class__.__name__) from exc
        logger.info("[MAIL] sent via=%s message_id=%s", transport.name, message_id)
        return DeliveryResult(method=method, transport=transport.name, message_id=message_id)

    async def send(self, message: OutboundMessage) -> DeliveryResult:
        errors: List[ChannelError] = []

        try:
            return await self._attempt(PRIMARY, self.primary, message)
        except ChannelError as exc:
            errors.append(exc)
            logger.warning(
                "[MAIL] %s failed error=%s fallback_enabled=%s",
                exc.transport,
                exc.message,
                self.fallback_enabled,
            )

        if self.fallback_enabled and self.secondary is not None:
            try:
                return await self._attempt(SECONDARY, self.secondary, message)
            except ChannelError as exc:
                errors.append(exc)
                logger.error("[MAIL] fallback %s failed error=%s", exc.transport, exc.message)
        elif not self.fallback_enabled:
            logger.warning("[MAIL] relay fallback disabled (USE_RELAY_FALLBACK not set)")

        logger.error("[MAIL] all channels failed errors=%s", [e.as_dict() for e in errors])
        raise AllChannelsFailedError(errors)


def build_mailer(settings: Settings) -> ResilientMailer:
    return ResilientMailer(
        primary=SmtpTransport(settings.smtp),
        secondary=RelayTransport(settings.relay, sender=settings.smtp.sender),
        fallback_enabled=settings.relay.enabled,
    )


def validate_mail_config(settings: Settings) -> Dict[str, Any]:
    issues: List[str] = []
    smtp, relay = settings.smtp, settings.relay

    if not smtp.configured:
        issues.append("SMTP configuration incomplete")
    if not smtp.from_email:
        issues.append("FROM_EMAIL not set")
    if relay.enabled:
        if not relay.url:
            issues.append("RELAY_API_URL not set")
        if not relay.api_key:
            issues.append("RELAY_API_KEY not set")

    report = {
        "valid": not issues,
        "issues": issues,
        "smtp_configured": smtp.configured,
        "fallback_enabled": relay.enabled,
        "relay_configured": relay.configured,
    }
    if issues:
        logger.warning("[MAIL] configuration issues=%s", issues)
    else:
        logger.info(
            "[MAIL] configuration ok fallback_enabled=%s relay_configured=%s",
            relay.enabled,
            relay.configured,
        )
    return report
