"""Notification fan-out: webhook POSTs and SMTP email."""

from __future__ import annotations

import asyncio
import html
import json
import logging
from dataclasses import dataclass
from email.message import EmailMessage
from urllib.parse import urlparse

import aiosmtplib
import httpx

from pagecapture.config import Settings

from .models import EmailTarget, NotificationEvent, NotificationSettings, WebhookTarget

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for exponential-backoff retry on webhook POST."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0


@dataclass(frozen=True)
class SmtpConfig:
    host: str = ""
    port: int = 587
    username: str = ""
    password: str = ""
    sender: str = ""
    start_tls: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> SmtpConfig:
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.smtp_from,
            start_tls=settings.smtp_start_tls,
        )


_DEFAULT_RETRY = RetryConfig()

_VALID_SCHEMES = {"http", "https"}

_NETWORK_ERRORS = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
)


def validate_webhook_url(url: str, allowed_hosts: str) -> bool:
    """Check that *url* is a plain http(s) URL whose host is allowed.

    An empty allow-list rejects every URL, as do credentials embedded in
    the URL.
    """
    if not allowed_hosts:
        return False

    parsed = urlparse(url)
    if parsed.scheme not in _VALID_SCHEMES:
        return False
    if parsed.username or parsed.password:
        return False
    hostname = parsed.hostname
    if not hostname:
        return False
    allowed ={h.strip().lower() for h in allowed_hosts.split(",") if h.strip()}
    return hostname.lower() in allowed


def render_email_body(event: NotificationEvent, template: str | None = None) -> str:
    """Fill a caller template, or build the default HTML summary."""
    timestamp = event.timestamp.isoformat()
    if template:
        replacements = {
            "{{type}}": event.type,
            "{{url}}": event.url,
            "{{timestamp}}": timestamp,
            "{{task_id}}": event.task_id,
            "{{error}}": event.error or "",
        }
        body = template
        for placeholder, value in replacements.items():
            body = body.replace(placeholder, html.escape(value))
        return body

    parts = [
        f"<h2>Screenshot Capture {html.escape(event.type)}</h2>",
        f"<p><strong>Task ID:</strong> {html.escape(event.task_id)}</p>",
        f"<p><strong>URL:</strong> {html.escape(event.url)}</p>",
        f"<p><strong>Timestamp:</strong> {timestamp}</p>",
    ]
    if event.error:
        parts.append(f"<p><strong>Error:</strong> {html.escape(event.error)}</p>")
    if event.data:
        parts.append(f"<pre>{html.escape(json.dumps(event.data, indent=2, default=str))}</pre>")
    return "\n".join(parts)


class NotificationDispatcher:
    """Delivers lifecycle events to the targets configured on a scheduled task.

    Delivery problems are logged and swallowed; ``dispatch`` never raises for
    a failed target.
    """

    def __init__(
        self,
        smtp: SmtpConfig | None = None,
        retry_config: RetryConfig = _DEFAULT_RETRY,
        timeout: float = 10.0,
    ) -> None:
        self._smtp = smtp or SmtpConfig()
        self._retry = retry_config
        self._timeout = timeout

    async def dispatch(self, targets: NotificationSettings, event: NotificationEvent) -> None:
        deliveries = []
        if targets.webhook is not None:
            deliveries.append(self._guard("webhook", event, self.send_webhook(targets.webhook, event)))
        if targets.email is not None:
            deliveries.append(self._guard("email", event, self.send_email(targets.email, event)))
        if deliveries:
            await asyncio.gather(*deliveries)

    async def _guard(self, target: str, event: NotificationEvent, delivery) -> None:
        try:
            await delivery
        except Exception:
            logger.warning(
                "notification delivery failed",
                extra={"target": target, "task_id": event.task_id, "event_type": event.type},
                exc_info=True,
            )

    async def send_webhook(self, target: WebhookTarget, event: NotificationEvent) -> None:
        """POST the event with exponential-backoff retry on network errors.

        HTTP error statuses are not retried.
        """
        payload = event.model_dump(mode="json")
        for attempt in range(1 + self._retry.max_retries):
            try:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(target.url, json=payload, headers=target.headers)
                    resp.raise_for_status()
                    logger.debug(
                        "webhook delivered",
                        extra={"task_id": event.task_id, "status_code": resp.status_code},
                    )
                    return
            except _NETWORK_ERRORS as exc:
                if attempt < self._retry.max_retries:
                    delay = min(self._retry.base_delay * (2**attempt), self._retry.max_delay)
                    logger.warning(
                        "webhook POST to %s failed (attempt %d/%d), retrying in %.1fs: %s",
                        target.url, attempt + 1, self._retry.max_retries + 1, delay, exc,
                    )
                    await asyncio.sleep(delay)
                else:
                    raise

    async def send_email(self, target: EmailTarget, event: NotificationEvent) -> None:
        if not target.to:
            return
        if not self._smtp.host:
            logger.warning("email notification skipped, SMTP not configured", extra={"task_id": event.task_id})
            return

        message = EmailMessage()
        message["From"] = self._smtp.sender or self._smtp.username
        message["To"] = ", ".join(target.to)
        message["Subject"] = target.subject or f"Screenshot capture {event.type}"
        message.set_content(render_email_body(event, target.template), subtype="html")

        await aiosmtplib.send(
            message,
            hostname=self._smtp.host,
            port=self._smtp.port,
            username=self._smtp.username or None,
            password=self._smtp.password or None,
            start_tls=self._smtp.start_tls,
            timeout=self._timeout,
        )
        logger.debug("email delivered", extra={"task_id": event.task_id, "recipients": len(target.to)})
