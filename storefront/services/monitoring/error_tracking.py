"""
Sentry Error Tracking
Error reports with order context for payment-return debugging. Tracker
failures are dropped before they reach Sentry.
"""

import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from storefront.services.monitoring.logging import TrackingNoiseFilter

logger = logging.getLogger(__name__)

_noise = TrackingNoiseFilter()


def drop_tracking_noise(event: dict, hint: dict) -> Optional[dict]:
    """
    Sentry ``before_send`` hook.

    Returns None (drop) for events whose exception or message comes from a
    blocked or unreachable analytics endpoint.
    """
    texts = []
    exc_info = (hint or {}).get("exc_info")
    if exc_info and exc_info[1] is not None:
        texts.append(f"{type(exc_info[1]).__name__}: {exc_info[1]}")

    message = event.get("message") or (event.get("logentry") or {}).get("message")
    if message:
        texts.append(message)

    for value in (event.get("exception") or {}).get("values", []):
        texts.append(f"{value.get('type')}: {value.get('value')}")

    if any(_noise.is_tracking_noise(text) for text in texts):
        return None
    return event


def init_sentry() -> None:
    """
    Initialize Sentry SDK with FastAPI integration.

    If SENTRY_DSN is not configured, logs warning and returns (disabled).
    """
    from storefront.config import settings

    if settings.sentry_dsn is None:
        logger.warning("Sentry DSN not configured - error tracking disabled")
        return

    try:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.sentry_environment or settings.environment,
            traces_sample_rate=0.1,  # 10% of requests traced
            integrations=[
                FastApiIntegration(),
            ],
            before_send=drop_tracking_noise,
        )

        logger.info(
            "Sentry initialized",
            extra={"environment": settings.sentry_environment or settings.environment}
        )
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def set_verification_context(
    order_id: Optional[str],
    state: str,
    correlation_id: Optional[str] = None
) -> None:
    """
    Tag the current scope with the order being verified.

    Args:
        order_id: Storefront order ID (None when the return URL carried none)
        state: Verification state at the time of tagging
        correlation_id: Optional correlation ID for request tracking
    """
    sentry_sdk.set_context("payment_verification", {
        "order_id": order_id or "none",
        "state": state,
        "correlation_id": correlation_id or "none"
    })
    sentry_sdk.set_tag("order_id", order_id or "none")
    sentry_sdk.set_tag("verification_state", state)


def add_breadcrumb(
    category: str,
    message: str,
    level: str = "info",
    data: Optional[dict] = None
) -> None:
    """
    Add breadcrumb to Sentry for the verification trail.

    No-op until init_sentry() has run with a DSN.
    """
    sentry_sdk.add_breadcrumb(
        category=category,
        message=message,
        level=level,
        data=data or {}
    )
