"""HTTP Signatures for outbound ActivityPub requests.

Produces the ``Signature`` header value described by the draft-cavage HTTP
Signatures draft as deployed across the fediverse: an RSA-SHA256 signature
over ``(request-target)``, ``host``, ``date`` and ``digest``.
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from datetime import datetime
from email.utils import format_datetime

from cryptography.exceptions import InternalError, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from sphere_delivery.db.time import ensure_utc
from sphere_delivery.services.errors import InvalidKeyError, SigningError

SIGNATURE_ALGORITHM = "rsa-sha256"
SIGNED_HEADERS: tuple[str, ...] = ("(request-target)", "host", "date", "digest")


@dataclass(frozen=True)
class RequestMetadata:
    """The canonical subset of an outbound request that gets signed."""

    method: str
    target: str  # path plus query string
    host: str
    date: str
    digest: str
    key_id: str


def body_digest(body: bytes) -> str:
    """Return the ``Digest`` header value for a request body."""
    return "SHA-256=" + base64.b64encode(hashlib.sha256(body).digest()).decode("ascii")


def http_date(moment: datetime) -> str:
    """Format a timestamp as an RFC 7231 ``Date`` header value."""
    return format_datetime(ensure_utc(moment), usegmt=True)


def build_signing_string(metadata: RequestMetadata) -> str:
    """Return the newline-joined ``name: value`` lines covered by the signature."""
    values = {
        "(request-target)": f"{metadata.method.lower()} {metadata.target or '/'}",
        "host": metadata.host,
        "date": metadata.date,
        "digest": metadata.digest,
    }
    return "\n".join(f"{name}: {values[name]}" for name in SIGNED_HEADERS)


def load_private_key(private_key_pem: str) -> rsa.RSAPrivateKey:
    """Parse a PEM private key, insisting on RSA.

    Raises:
        InvalidKeyError: If the PEM is malformed, encrypted or not an RSA key.
    """
    try:
        key = serialization.load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as err:
        raise InvalidKeyError(f"Invalid private key: {err}") from err

    if not isinstance(key, rsa.RSAPrivateKey):
        raise InvalidKeyError(f"Unsupported private key type: {type(key).__name__}")
    return key


def sign(private_key_pem: str, metadata: RequestMetadata) -> str:
    """Sign request metadata and return the ``Signature`` header value.

    RSA PKCS#1 v1.5 is deterministic, so identical inputs always produce the
    same header.

    Args:
        private_key_pem: PEM-encoded RSA private key of the sending actor.
        metadata: Request fields to cover.

    Returns:
        Header value of the form ``keyId="…",algorithm="…",headers="…",signature="…"``

    Raises:
        InvalidKeyError: If the key cannot be parsed.
        SigningError: If the cryptographic backend fails.
    """
    key = load_private_key(private_key_pem)
    signing_string = build_signing_string(metadata)

    try:
        signature = key.sign(signing_string.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    except (ValueError, TypeError, InternalError) as err:
        raise SigningError(f"Failed to sign request: {err}") from err

    signature_b64 = base64.b64encode(signature).decode("ascii")
    return (
        f'keyId="{metadata.key_id}",'
        f'algorithm="{SIGNATURE_ALGORITHM}",'
        f'headers="{" ".join(SIGNED_HEADERS)}",'
        f'signature="{signature_b64}"'
    )
