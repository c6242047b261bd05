"""
Pydantic schemas for in-flight checkout orders
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class StoredOrderRecord(BaseModel):
    """
    Order identity persisted while the shopper is away at the payment gateway.
    Only order_id is required; everything else is carried along when known.
    """

    model_config = ConfigDict(extra="allow")

    order_id: str = Field(..., min_length=1, description="Storefront order ID")
    cf_order_id: Optional[str] = Field(None, description="Payment gateway's order ID")
    payment_session_id: Optional[str] = Field(None, description="Payment gateway session ID")
    order_amount: Optional[float] = Field(None, description="Order total")
    customer_details: Optional[Dict[str, Any]] = None
    created_at: str = Field(default_factory=_utc_now_iso)
    environment: Optional[str] = None
    stored_by: str = "order_store"


class OrderLookupResponse(BaseModel):
    """
    Response returned from the current-order endpoint
    """

    found: bool
    order: Optional[Dict[str, Any]] = None


class OrderStoreResponse(BaseModel):
    status: str
    order_id: Optional[str] = None
