"""
API Routers
"""

from storefront.routers.orders import router as orders_router
from storefront.routers.payment_return import router as payment_return_router
from storefront.routers.tracking import router as tracking_router

__all__ = ["orders_router", "payment_return_router", "tracking_router"]
