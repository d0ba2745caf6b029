"""
Expiry evaluation for check-service-certs.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Union

from check_service_certs.certificate import (
    CertificateDecodeError,
    CertificateParseError,
    CertificateReadError,
)


@dataclass(frozen=True)
class Ok:
    """The certificate outlives the minimum lifetime."""


@dataclass(frozen=True)
class Expiring:
    """The certificate expires within the minimum lifetime."""

    days_remaining: int


@dataclass(frozen=True)
class Unreadable:
    """The certificate file could not be read."""

    reason: str


@dataclass(frozen=True)
class Unparseable:
    """The certificate file was read but could not be decoded or parsed."""

    reason: str


ExpiryVerdict = Union[Ok, Expiring, Unreadable, Unparseable]


def days_remaining(now: datetime, not_after: datetime) -> int:
    """Whole days until expiry, rounded down; negative once expired."""
    hours = (not_after - now).total_seconds() / 3600
    return math.floor(hours / 24)


def evaluate(now: datetime, not_after: datetime, minimum_lifetime: timedelta) -> ExpiryVerdict:
    """
    Decide whether a certificate is within its risk window.

    A certificate is expiring when now + minimum_lifetime is strictly after
    its notAfter instant; exact equality is still OK.

    Args:
        now: Current time
        not_after: Certificate expiration
        minimum_lifetime: Required remaining validity

    Returns:
        Ok or Expiring verdict
    """
    if now + minimum_lifetime > not_after:
        return Expiring(days_remaining(now, not_after))
    return Ok()


def verdict_for_error(error: CertificateReadError) -> ExpiryVerdict:
    """Map a certificate read failure onto its failure verdict."""
    if isinstance(error, (CertificateDecodeError, CertificateParseError)):
        return Unparseable(f"{error.kind}: {error}")
    return Unreadable(f"{error.kind}: {error}")
