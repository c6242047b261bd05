"""
Orders Router
Current in-flight order for the browser session, backed by the redundant order store
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from storefront.dependencies import get_session_id, order_store_for
from storefront.models.orders import OrderLookupResponse, OrderStoreResponse, StoredOrderRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("/current", response_model=OrderStoreResponse)
async def store_current_order(
    record: StoredOrderRecord,
    session_id: str = Depends(get_session_id),
):
    """Persist the order being paid for before the shopper leaves for the payment gateway."""
    stored = order_store_for(session_id).store(record)
    if not stored:
        logger.warning(f"Order {record.order_id} only partially stored")
        raise HTTPException(status_code=503, detail="Order could not be stored")
    return OrderStoreResponse(status="stored", order_id=record.order_id)


@router.get("/current", response_model=OrderLookupResponse)
async def get_current_order(session_id: str = Depends(get_session_id)):
    record = order_store_for(session_id).retrieve()
    return OrderLookupResponse(found=record is not None, order=record)


@router.delete("/current", response_model=OrderStoreResponse)
async def clear_current_order(
    keep_basic_id: bool = False,
    session_id: str = Depends(get_session_id),
):
    """
    Remove the stored order.

    keep_basic_id keeps only the order id, for confirmation views that still
    need it after the full details are gone.
    """
    store = order_store_for(session_id)
    order_id = store.get_id()
    if not store.cleanup(keep_basic_id=keep_basic_id):
        raise HTTPException(status_code=503, detail="Order storage could not be cleaned")
    return OrderStoreResponse(status="cleared", order_id=order_id if keep_basic_id else None)
