"""
Tracking Router
Accepts commerce events from the storefront and hands them to the orchestrator
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from storefront.dependencies import get_session_id, get_tracking_orchestrator
from storefront.models.tracking import TrackingEventRequest, TrackingEventResponse, TrackingEventType
from storefront.services.tracking import TrackingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tracking", tags=["tracking"])

_HANDLERS = {
    TrackingEventType.PAGE_VIEW: "track_page_view",
    TrackingEventType.VIEW_CONTENT: "track_view_content",
    TrackingEventType.ADD_TO_CART: "track_add_to_cart",
    TrackingEventType.INITIATE_CHECKOUT: "track_initiate_checkout",
    TrackingEventType.PURCHASE: "track_purchase",
    TrackingEventType.ADD_TO_WISHLIST: "track_add_to_wishlist",
    TrackingEventType.SEARCH: "track_search",
}


@router.post("/{event_type}", response_model=TrackingEventResponse)
async def track_event(
    event_type: TrackingEventType,
    event: TrackingEventRequest,
    orchestrator: TrackingOrchestrator = Depends(get_tracking_orchestrator),
    session_id: str = Depends(get_session_id),
):
    """
    Track one commerce event.

    Dedup is kept per browser session. Returns status "tracked" when
    forwarded to the sinks and "skipped" when deduplication dropped it.
    """
    if event_type == TrackingEventType.CUSTOM:
        if not event.event_name:
            raise HTTPException(status_code=422, detail="event_name is required for custom events")
        tracked = orchestrator.track_custom_event(event.event_name, event.data, session_id=session_id)
    else:
        tracked = getattr(orchestrator, _HANDLERS[event_type])(event.data, session_id=session_id)

    if not tracked:
        logger.info(f"Tracking event skipped as duplicate: {event_type.value}")

    return TrackingEventResponse(
        status="tracked" if tracked else "skipped",
        event_type=event_type.value
    )
