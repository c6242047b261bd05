"""
Pydantic schemas
"""

from storefront.models.orders import OrderLookupResponse, OrderStoreResponse, StoredOrderRecord
from storefront.models.payment import PaymentReturnResponse, Redirect, VerificationResult
from storefront.models.tracking import TrackingEventRequest, TrackingEventResponse, TrackingEventType

__all__ = [
    "OrderLookupResponse",
    "OrderStoreResponse",
    "StoredOrderRecord",
    "PaymentReturnResponse",
    "Redirect",
    "VerificationResult",
    "TrackingEventRequest",
    "TrackingEventResponse",
    "TrackingEventType",
]
