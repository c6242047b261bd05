"""
Correlation ID Middleware
Request tracing for the payment return, order and tracking endpoints, and
propagation of the same ID to the verify backend
"""

from typing import Dict

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id

CORRELATION_HEADER = "X-Request-ID"

__all__ = ["CORRELATION_HEADER", "CorrelationIdMiddleware", "correlation_headers", "get_correlation_id"]


def get_correlation_id() -> str:
    """
    Get current correlation ID from async context.

    Collector hook deliveries and debounced page views run after the request
    that scheduled them; they read the ID here when the payload is built.

    Returns:
        str: The correlation ID or 'none' if not available
    """
    return correlation_id.get() or 'none'


def correlation_headers() -> Dict[str, str]:
    """Outbound headers carrying the current correlation ID; empty outside a request."""
    current = correlation_id.get()
    if not current:
        return {}
    return {CORRELATION_HEADER: current}
