# src/sphere_delivery/services/keys.py
"""Signing key storage for local publisher actors."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from sphere_delivery.core.settings import settings
from sphere_delivery.models import ActivityPubKey
from sphere_delivery.services.errors import KeyNotFoundError

logger = logging.getLogger(__name__)

RSA_PUBLIC_EXPONENT = 65537


@dataclass(frozen=True)
class SigningKeyPair:
    """PEM-encoded keypair belonging to exactly one actor."""

    actor_uri: str
    private_key_pem: str
    public_key_pem: str

    @property
    def key_id(self) -> str:
        """Return the key identifier advertised on the actor document."""
        return f"{self.actor_uri}#main-key"

    def __repr__(self) -> str:
        # Keep the private half out of logs and tracebacks.
        return f"SigningKeyPair(actor_uri={self.actor_uri!r}, key_id={self.key_id!r})"


def generate_key_pair(key_size: int | None = None) -> tuple[str, str]:
    """Generate a new RSA keypair.

    Args:
        key_size: Modulus size in bits; defaults to ``ACTIVITYPUB_KEY_SIZE``.

    Returns:
        Tuple of (private_key_pem, public_key_pem)
    """
    private_key = rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT,
        key_size=key_size or settings.activitypub_key_size,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return private_pem, public_pem


class KeyStore:
    """Read access to actor keypairs, with on-demand generation for producers."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        key_size: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._key_size = key_size

    @staticmethod
    def _to_pair(row: ActivityPubKey) -> SigningKeyPair:
        return SigningKeyPair(
            actor_uri=row.actor_uri,
            private_key_pem=row.private_key_pem,
            public_key_pem=row.public_key_pem,
        )

    def get_key_pair(self, actor_uri: str) -> SigningKeyPair:
        """Return the keypair for ``actor_uri``.

        Raises:
            KeyNotFoundError: If the actor has no stored keypair.
        """
        with self._session_factory() as db:
            row = db.scalar(select(ActivityPubKey).where(ActivityPubKey.actor_uri == actor_uri))
            if row is None:
                raise KeyNotFoundError(actor_uri)
            return self._to_pair(row)

    def ensure_key_pair(self, actor_uri: str) -> SigningKeyPair:
        """Return the actor's keypair, generating and storing one if missing."""
        try:
            return self.get_key_pair(actor_uri)
        except KeyNotFoundError:
            pass

        private_pem, public_pem = generate_key_pair(self._key_size)
        with self._session_factory() as db:
            db.add(
                ActivityPubKey(
                    actor_uri=actor_uri,
                    private_key_pem=private_pem,
                    public_key_pem=public_pem,
                )
            )
            try:
                db.commit()
            except IntegrityError:
                # Another producer stored a key for this actor first; use theirs.
                db.rollback()
                return self.get_key_pair(actor_uri)

        logger.info("Generated new RSA key pair for actor %s", actor_uri)
        return SigningKeyPair(
            actor_uri=actor_uri,
            private_key_pem=private_pem,
            public_key_pem=public_pem,
        )
