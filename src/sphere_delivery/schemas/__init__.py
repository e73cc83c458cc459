"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .delivery import ActivityDeliveryRequest, DeliveryResponse, DeliveryStatsResponse

__all__ = [
    "ActivityDeliveryRequest", "DeliveryResponse", "DeliveryStatsResponse",
]
