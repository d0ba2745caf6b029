"""
Shared fixtures for check-service-certs tests.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional

import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from check_service_certs.config import ENV_PREFIX
from check_service_certs.notifications import NotificationSendError

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


def generate_test_certificate(
    path: Path, not_after: datetime, cn: str = "test.example.com"
) -> Path:
    """Generate a self-signed X.509 certificate expiring at not_after."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])

    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_after - timedelta(days=365))
        .not_valid_after(not_after)
        .sign(private_key, hashes.SHA256())
    )

    path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    return path


class RecordingSink:
    """Sink that records what it was asked to send."""

    def __init__(self, kind: str = "recording", delay: float = 0.0, error: Optional[str] = None):
        self.kind = kind
        self.delay = delay
        self.error = error
        self.sent: List[str] = []
        self.timeouts: List[Optional[float]] = []

    async def send(self, text: str, timeout: Optional[float] = None) -> None:
        self.timeouts.append(timeout)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise NotificationSendError(self.error)
        self.sent.append(text)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep CHECK_SERVICE_CERTS_* variables from leaking into tests."""
    for name in list(os.environ):
        if name.startswith(ENV_PREFIX):
            monkeypatch.delenv(name)


@pytest.fixture
def cert_factory(tmp_path: Path) -> Callable[..., Path]:
    """Create certificate files expiring a given time after NOW."""

    def _make(name: str, expires_in: timedelta) -> Path:
        return generate_test_certificate(tmp_path / name, NOW + expires_in)

    return _make


@pytest.fixture
def template_file(tmp_path: Path) -> Path:
    path = tmp_path / "expiringCertificate.txt"
    path.write_text(
        "Certificate for {{ ServiceName }} at {{ CertPath }} expires in {{ NumDays }} days\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[[dict], Path]:
    """Write a YAML config file and return its path."""

    def _write(data: dict, name: str = "checkServiceCerts.yaml") -> Path:
        path = tmp_path / name
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f)
        return path

    return _write
