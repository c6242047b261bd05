"""
Monitoring Module
Exports for structured logging, error tracking and circuit breakers
"""

from storefront.services.monitoring.logging import (
    setup_logging,
    CorrelationJsonFormatter,
    TrackingNoiseFilter,
)
from storefront.services.monitoring.error_tracking import (
    init_sentry,
    drop_tracking_noise,
    set_verification_context,
    add_breadcrumb,
)
from storefront.services.monitoring.circuit_breakers import (
    get_breaker,
    get_verify_breaker,
    CircuitBreakerError,
    CircuitBreakerLogListener,
)

__all__ = [
    "setup_logging",
    "CorrelationJsonFormatter",
    "TrackingNoiseFilter",
    "init_sentry",
    "drop_tracking_noise",
    "set_verification_context",
    "add_breadcrumb",
    "get_breaker",
    "get_verify_breaker",
    "CircuitBreakerError",
    "CircuitBreakerLogListener",
]
