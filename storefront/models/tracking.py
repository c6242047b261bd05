"""
Pydantic schemas for tracking events posted by the storefront
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TrackingEventType(str, Enum):
    PAGE_VIEW = "page_view"
    VIEW_CONTENT = "view_content"
    ADD_TO_CART = "add_to_cart"
    INITIATE_CHECKOUT = "initiate_checkout"
    PURCHASE = "purchase"
    ADD_TO_WISHLIST = "add_to_wishlist"
    SEARCH = "search"
    CUSTOM = "custom"


class TrackingEventRequest(BaseModel):
    """
    One logical commerce event. ``data`` is passed to the sinks as-is;
    ``event_name`` is only used by custom events.
    """

    event_name: Optional[str] = Field(None, description="Custom event name")
    data: Dict[str, Any] = Field(default_factory=dict)


class TrackingEventResponse(BaseModel):
    status: str
    event_type: str
