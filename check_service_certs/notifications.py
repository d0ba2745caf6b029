"""
Notification sinks for check-service-certs.

Every sink exposes a ``kind`` and a single coroutine, ``send(text, timeout)``,
which raises NotificationSendError when delivery fails. ``timeout`` is the time
left before the run deadline; a sink never waits longer than that or its own
configured timeout, whichever is shorter. Adding a channel means adding a sink
class and listing it in build_sinks.
"""

import asyncio
import smtplib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import List, Optional, Protocol, Sequence

import httpx

from check_service_certs.config import Config
from check_service_certs.logger import get_logger
from check_service_certs.threads import run_in_thread

logger = get_logger("notifications")


class NotificationSendError(Exception):
    """A notification could not be delivered."""


def _effective_timeout(configured: float, remaining: Optional[float]) -> float:
    if remaining is None:
        return configured
    return max(min(configured, remaining), 0.0)


class NotificationSink(Protocol):
    """Protocol for notification sinks."""

    kind: str

    async def send(self, text: str, timeout: Optional[float] = None) -> None:
        """Deliver the text within timeout seconds, raising NotificationSendError on failure."""
        ...


class EmailSink:
    """Email notification sink using SMTP."""

    kind = "email"

    def __init__(
        self,
        sender: str,
        recipients: Sequence[str],
        subject: str,
        smtp_host: str,
        smtp_port: int = 25,
        timeout: float = 30.0,
    ):
        self.sender = sender
        self.recipients = list(recipients)
        self.subject = subject
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.timeout = timeout

    def build_message(self, text: str) -> EmailMessage:
        msg = EmailMessage()
        msg.set_content(text)
        msg["Subject"] = self.subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        return msg

    def _send_sync(self, text: str, timeout: float) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=timeout) as server:
            server.send_message(self.build_message(text))

    async def send(self, text: str, timeout: Optional[float] = None) -> None:
        """Send the email from a daemon thread that is abandoned on cancellation."""
        if not self.recipients:
            raise NotificationSendError("No email recipients configured")

        timeout = _effective_timeout(self.timeout, timeout)
        try:
            await asyncio.wait_for(
                run_in_thread(self._send_sync, text, timeout, name="smtp-send"), timeout
            )
        except asyncio.TimeoutError as e:
            raise NotificationSendError(
                f"Timed out after {timeout:.1f}s sending email via "
                f"{self.smtp_host}:{self.smtp_port}"
            ) from e
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationSendError(
                f"Could not send email via {self.smtp_host}:{self.smtp_port}: {e}"
            ) from e

        logger.debug(f"Email sent to {len(self.recipients)} recipients")


class SlackSink:
    """Slack notification sink using an incoming webhook."""

    kind = "slack"

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def send(self, text: str, timeout: Optional[float] = None) -> None:
        """Post the text to the webhook."""
        if not self.url:
            raise NotificationSendError("No Slack webhook URL configured")

        timeout = _effective_timeout(self.timeout, timeout)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(self.url, json={"text": text})
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationSendError(f"Could not send Slack message: {e}") from e

        logger.debug("Slack message sent")


@dataclass(frozen=True)
class Alert:
    """A rendered alert bound for exactly one sink."""

    service_name: str
    cert_path: str
    text: str
    sink: NotificationSink
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class NotificationOutcome:
    """Result of one delivery attempt."""

    alert: Alert
    sink_kind: str
    success: bool
    error: Optional[str] = None


def build_sinks(
    config: Config, service_name: str, now: datetime, test_mode: bool = False
) -> List[NotificationSink]:
    """
    Build the configured sinks for one service's alerts.

    Args:
        config: Loaded configuration
        service_name: Service the alerts are about; used in the email subject
        now: Check time, shown in the email subject
        test_mode: Use the notifications_test recipients

    Returns:
        One sink per configured channel
    """
    settings = config.notification_settings(test_mode)
    sinks: List[NotificationSink] = []

    if settings.admin_email:
        sinks.append(
            EmailSink(
                sender=config.email.sender,
                recipients=settings.admin_email,
                subject=f"Service Certificates Check ({service_name}), "
                f"{now.strftime('%d %b %y %H:%M %Z')}",
                smtp_host=config.email.smtphost,
                smtp_port=config.email.smtpport,
            )
        )
    else:
        logger.warning(
            "No admin_email configured, skipping email notifications",
            extra={"service": service_name},
        )

    if settings.slack_alerts_url:
        sinks.append(SlackSink(settings.slack_alerts_url))
    else:
        logger.warning(
            "No slack_alerts_url configured, skipping Slack notifications",
            extra={"service": service_name},
        )

    return sinks
