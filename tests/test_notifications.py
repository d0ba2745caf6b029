"""
Tests for notification sinks.
"""

import json
import smtplib
import threading
import time
from unittest.mock import MagicMock, patch

import httpx
import pytest

from check_service_certs.config import Config
from check_service_certs.notifications import (
    EmailSink,
    NotificationSendError,
    SlackSink,
    build_sinks,
)
from conftest import NOW


@pytest.mark.asyncio
class TestSlackSink:
    """Test Slack webhook delivery."""

    async def test_send_posts_text(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="ok")

        sink = SlackSink("https://hooks.example.com/T/B/X", transport=httpx.MockTransport(handler))
        await sink.send("Certificate expires in 5 days")

        assert len(requests) == 1
        assert requests[0].method == "POST"
        assert str(requests[0].url) == "https://hooks.example.com/T/B/X"
        assert json.loads(requests[0].content) == {"text": "Certificate expires in 5 days"}

    async def test_timeout_capped_by_time_left(self):
        timeouts = []

        def handler(request: httpx.Request) -> httpx.Response:
            timeouts.append(request.extensions["timeout"])
            return httpx.Response(200, text="ok")

        sink = SlackSink(
            "https://hooks.example.com/T/B/X", timeout=30.0, transport=httpx.MockTransport(handler)
        )
        await sink.send("text", timeout=2.0)

        assert timeouts[0]["read"] == 2.0
        assert timeouts[0]["connect"] == 2.0

    async def test_http_error_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        sink = SlackSink("https://hooks.example.com/T/B/X", transport=transport)

        with pytest.raises(NotificationSendError):
            await sink.send("text")

    async def test_connection_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        sink = SlackSink("https://hooks.example.com/T/B/X", transport=httpx.MockTransport(handler))

        with pytest.raises(NotificationSendError):
            await sink.send("text")

    async def test_missing_url(self):
        with pytest.raises(NotificationSendError):
            await SlackSink("").send("text")


class TestEmailSink:
    """Test SMTP delivery."""

    @pytest.fixture
    def sink(self):
        return EmailSink(
            sender="certs@example.com",
            recipients=["a@example.com", "b@example.com"],
            subject="Service Certificates Check (Alpha)",
            smtp_host="mail.example.com",
            smtp_port=2525,
        )

    def test_build_message(self, sink):
        msg = sink.build_message("body text")

        assert msg["Subject"] == "Service Certificates Check (Alpha)"
        assert msg["From"] == "certs@example.com"
        assert msg["To"] == "a@example.com, b@example.com"
        assert msg.get_content().strip() == "body text"

    @pytest.mark.asyncio
    async def test_send(self, sink):
        with patch("check_service_certs.notifications.smtplib.SMTP") as mock_smtp:
            server = MagicMock()
            mock_smtp.return_value.__enter__.return_value = server

            await sink.send("body text")

            mock_smtp.assert_called_once_with("mail.example.com", 2525, timeout=30.0)
            server.send_message.assert_called_once()

    @pytest.mark.asyncio
    async def test_smtp_timeout_capped_by_time_left(self, sink):
        with patch("check_service_certs.notifications.smtplib.SMTP") as mock_smtp:
            await sink.send("body text", timeout=2.0)

            mock_smtp.assert_called_once_with("mail.example.com", 2525, timeout=2.0)

    @pytest.mark.asyncio
    async def test_hung_smtp_server_does_not_block(self, sink):
        release = threading.Event()

        def hung_connect(*args, **kwargs):
            release.wait(10)
            raise ConnectionResetError("gave up")

        start = time.monotonic()
        try:
            with patch("check_service_certs.notifications.smtplib.SMTP", side_effect=hung_connect):
                with pytest.raises(NotificationSendError, match="Timed out"):
                    await sink.send("body text", timeout=0.2)
        finally:
            release.set()

        assert time.monotonic() - start < 5

    @pytest.mark.asyncio
    async def test_smtp_error_raises(self, sink):
        with patch("check_service_certs.notifications.smtplib.SMTP") as mock_smtp:
            mock_smtp.side_effect = smtplib.SMTPConnectError(421, b"unavailable")

            with pytest.raises(NotificationSendError):
                await sink.send("body text")

    @pytest.mark.asyncio
    async def test_socket_error_raises(self, sink):
        with patch("check_service_certs.notifications.smtplib.SMTP") as mock_smtp:
            mock_smtp.side_effect = ConnectionRefusedError("refused")

            with pytest.raises(NotificationSendError):
                await sink.send("body text")

    @pytest.mark.asyncio
    async def test_no_recipients(self):
        sink = EmailSink("certs@example.com", [], "subject", "localhost")

        with pytest.raises(NotificationSendError):
            await sink.send("body text")


class TestBuildSinks:
    """Test building sinks from config."""

    def test_both_channels(self):
        config = Config.model_validate(
            {
                "notifications": {
                    "admin_email": ["admin@example.com"],
                    "slack_alerts_url": "https://hooks.example.com/prod",
                },
                "email": {"from": "certs@example.com", "smtphost": "mail", "smtpport": 25},
            }
        )

        sinks = build_sinks(config, "Alpha", NOW)

        assert [sink.kind for sink in sinks] == ["email", "slack"]
        email, slack = sinks
        assert email.recipients == ["admin@example.com"]
        assert email.subject == "Service Certificates Check (Alpha), 19 Oct 26 12:00 UTC"
        assert slack.url == "https://hooks.example.com/prod"

    def test_test_mode_uses_test_recipients(self):
        config = Config.model_validate(
            {
                "notifications": {"slack_alerts_url": "https://hooks.example.com/prod"},
                "notifications_test": {"slack_alerts_url": "https://hooks.example.com/test"},
            }
        )

        sinks = build_sinks(config, "Alpha", NOW, test_mode=True)

        assert [sink.kind for sink in sinks] == ["slack"]
        assert sinks[0].url == "https://hooks.example.com/test"

    def test_no_channels(self, caplog):
        assert build_sinks(Config(), "Alpha", NOW) == []
        assert "No admin_email configured" in caplog.text
