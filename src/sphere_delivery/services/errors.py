"""Exception hierarchy for the delivery engine."""

from __future__ import annotations


class DeliveryError(RuntimeError):
    """Base exception raised for delivery-related failures."""


class DeliveryNotFoundError(DeliveryError):
    """Raised when a delivery record referenced for update no longer exists."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Delivery record not found: {record_id}")
        self.record_id = record_id


class LeaseLostError(DeliveryError):
    """Raised when a write-back finds the record no longer held by our claim.

    This happens when a recovery pass released the claim after the lease
    timed out and another worker re-claimed the record.
    """

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Claim on delivery record {record_id} was lost")
        self.record_id = record_id


class DeliveryPersistenceError(DeliveryError):
    """Raised when a state write-back could not be persisted within its budget."""


class KeyNotFoundError(DeliveryError):
    """Raised when no signing keypair exists for an actor."""

    def __init__(self, actor_uri: str) -> None:
        super().__init__(f"No signing key for actor: {actor_uri}")
        self.actor_uri = actor_uri


class ActivityNotFoundError(DeliveryError):
    """Raised when an activity payload cannot be retrieved for dispatch."""

    def __init__(self, activity_id: str) -> None:
        super().__init__(f"Activity payload not found: {activity_id}")
        self.activity_id = activity_id


class SigningError(DeliveryError):
    """Raised when the cryptographic backend fails to produce a signature."""


class InvalidKeyError(SigningError):
    """Raised when a private key cannot be parsed or is not usable for signing."""
