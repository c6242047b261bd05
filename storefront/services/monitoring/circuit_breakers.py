"""
Circuit Breaker Implementation for External Service Dependencies

Protects against cascading failures by opening circuits after consecutive failures
and automatically attempting recovery after a timeout period.

Services protected:
- Payment verification backend (order status checks)
"""

import logging
from typing import Dict

import pybreaker

from storefront.config import settings

logger = logging.getLogger(__name__)

KNOWN_SERVICES = {
    "verify": "payment_verification",
}


class CircuitBreakerLogListener(pybreaker.CircuitBreakerListener):
    """
    Logging listener for circuit breaker state changes.

    An open verify circuit means every returning shopper is being sent back
    to the cart, so the transition is logged at error level.
    """

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state: pybreaker.CircuitBreakerState, new_state: pybreaker.CircuitBreakerState):
        old_name = old_state.name if old_state is not None else "none"
        log = logger.error if new_state.name == pybreaker.STATE_OPEN else logger.warning
        log(
            f"Circuit breaker state change: {cb.name} transitioned from {old_name} to {new_state.name}",
            extra={
                "circuit_breaker": cb.name,
                "old_state": old_name,
                "new_state": new_state.name,
                "fail_count": cb.fail_counter
            }
        )


def _create_breaker(name: str) -> pybreaker.CircuitBreaker:
    """
    Create a circuit breaker with configured thresholds.

    Args:
        name: Service name for the circuit breaker

    Returns:
        Configured CircuitBreaker instance
    """
    return pybreaker.CircuitBreaker(
        name=name,
        fail_max=settings.circuit_breaker_fail_max,
        reset_timeout=settings.circuit_breaker_reset_timeout,
        listeners=[CircuitBreakerLogListener()]
    )


# Module-level instances (lazy initialization)
_breakers: Dict[str, pybreaker.CircuitBreaker] = {}


def get_breaker(service_name: str) -> pybreaker.CircuitBreaker:
    """
    Get circuit breaker for a specific service.

    Lazy initializes breakers on first access to avoid import-time side effects.

    Raises:
        ValueError: If service_name is not recognized
    """
    if service_name not in KNOWN_SERVICES:
        raise ValueError(
            f"Unknown service name: {service_name}. Must be one of {sorted(KNOWN_SERVICES)}"
        )

    if service_name not in _breakers:
        _breakers[service_name] = _create_breaker(KNOWN_SERVICES[service_name])
        logger.info(f"Initialized {KNOWN_SERVICES[service_name]} circuit breaker")
    return _breakers[service_name]


def get_verify_breaker() -> pybreaker.CircuitBreaker:
    """Get circuit breaker for the payment verification backend."""
    return get_breaker("verify")


# Re-export exception for caller handling
from pybreaker import CircuitBreakerError

__all__ = [
    "CircuitBreakerLogListener",
    "get_breaker",
    "get_verify_breaker",
    "CircuitBreakerError",
]
