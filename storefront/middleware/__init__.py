"""
Middleware Module
Request tracing middleware shared by all routers
"""

from storefront.middleware.correlation_id import (
    CORRELATION_HEADER,
    CorrelationIdMiddleware,
    correlation_headers,
    get_correlation_id,
)

__all__ = ["CORRELATION_HEADER", "CorrelationIdMiddleware", "correlation_headers", "get_correlation_id"]
