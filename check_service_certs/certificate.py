"""
Certificate file reading for check-service-certs.
"""

import base64
import binascii
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Union

from cryptography import x509

_PEM_BLOCK = re.compile(
    rb"-----BEGIN ([A-Z0-9 ]+)-----\r?\n(.*?)-----END \1-----",
    re.DOTALL,
)


class CertificateReadError(Exception):
    """Base class for failures reading a certificate file."""

    kind = "ReadError"

    def __init__(self, path: str, message: str):
        super().__init__(message)
        self.path = path


class CertificateNotFoundError(CertificateReadError):
    """The certificate path does not exist."""

    kind = "NotFound"


class CertificateOpenError(CertificateReadError):
    """The certificate file exists but could not be opened or read."""

    kind = "OpenError"


class CertificateDecodeError(CertificateReadError):
    """The file does not contain a valid PEM block."""

    kind = "DecodeError"


class CertificateParseError(CertificateReadError):
    """The PEM payload is not a valid X.509 certificate."""

    kind = "ParseError"


@dataclass(frozen=True)
class CertificateRecord:
    """Expiration data for one certificate file."""

    path: str
    not_after: datetime
    service: str = ""


def decode_pem(data: bytes, path: str = "") -> bytes:
    """
    Decode the first PEM block of a file into DER bytes.

    Args:
        data: Raw file content
        path: Path used in error messages

    Returns:
        DER bytes of the first PEM block

    Raises:
        CertificateDecodeError: If no valid PEM block is present
    """
    match = _PEM_BLOCK.search(data)
    if match is None:
        raise CertificateDecodeError(path, "Could not decode PEM block containing cert data")

    # Skip RFC 1421 headers such as 'Proc-Type: ...'
    body = b"".join(
        line.strip() for line in match.group(2).splitlines() if b":" not in line
    )
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CertificateDecodeError(
            path, f"Could not decode PEM block containing cert data: {e}"
        ) from e


def read_certificate(path: Union[str, Path], service: str = "") -> CertificateRecord:
    """
    Read a PEM certificate file and extract its expiration.

    Args:
        path: Path to the certificate file
        service: Name of the service owning the certificate

    Returns:
        Certificate record with the notAfter instant (UTC)

    Raises:
        CertificateReadError: One of its subclasses, depending on what failed
    """
    cert_path = str(path)
    file_path = Path(path)

    try:
        cert_content = file_path.read_bytes()
    except FileNotFoundError as e:
        raise CertificateNotFoundError(cert_path, "certPath does not exist") from e
    except OSError as e:
        raise CertificateOpenError(
            cert_path, f"Could not open service certificate file: {e}"
        ) from e

    cert_der = decode_pem(cert_content, cert_path)

    try:
        cert = x509.load_der_x509_certificate(cert_der)
        not_after = cert.not_valid_after_utc
    except ValueError as e:
        raise CertificateParseError(
            cert_path, f"Could not parse certificate from DER data: {e}"
        ) from e

    return CertificateRecord(path=cert_path, not_after=not_after, service=service)
