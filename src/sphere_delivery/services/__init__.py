"""Delivery engine services."""

from .activity_store import ActivityStore
from .config import DeliveryConfig, load_delivery_config
from .coordinator import DeliveryCoordinator, build_coordinator
from .delivery_service import DeliveryService
from .delivery_store import DeliveryClaim, DeliveryStats, DeliveryStore
from .dispatcher import DeliveryDispatcher
from .keys import KeyStore, SigningKeyPair
from .outcomes import AttemptOutcome, RetryableFailure, Success, TerminalFailure
from .retry_policy import DeliveryTransition, RetryPolicy

__all__ = [
    "ActivityStore",
    "AttemptOutcome", "Success", "RetryableFailure", "TerminalFailure",
    "DeliveryClaim", "DeliveryStats", "DeliveryStore",
    "DeliveryConfig", "load_delivery_config",
    "DeliveryCoordinator", "build_coordinator",
    "DeliveryDispatcher",
    "DeliveryService",
    "DeliveryTransition", "RetryPolicy",
    "KeyStore", "SigningKeyPair",
]
