"""
Application Configuration
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


DEFAULT_SUPPRESSED_ERROR_PATTERNS = [
    "Failed to fetch",
    "Network request failed",
    "ERR_BLOCKED_BY_CLIENT",
    "ERR_NETWORK_CHANGED",
    "ERR_INTERNET_DISCONNECTED",
    "ConnectError",
    "ConnectTimeout",
    "ReadTimeout",
    "Name or service not known",
    "AbortError",
    "TimeoutError",
    "google-analytics.com",
    "googleads.com",
    "facebook.net",
    "doubleclick.net",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Environment
    environment: str = "development"

    # Persistent storage (falls back to process memory when unset)
    redis_url: Optional[str] = None
    storage_prefix: str = "ecommerce_"
    session_cookie_name: str = "sf_session"

    # Payment verification backend
    verify_base_url: str = "http://localhost:8000/api/payment"
    verify_timeout_seconds: float = 10.0  # Abort verify call after 10s
    payment_method: str = "cashfree"
    confirmation_path: str = "/thankyou"
    cart_path: str = "/cart"
    recover_order_id_from_storage: bool = True

    # Throttle Gateway
    throttle_min_interval_seconds: float = 0.25  # Spacing between executions
    throttle_max_concurrent: int = 5
    throttle_drain_delay_seconds: float = 0.05  # Queue drain after completion
    throttle_batch_delay_seconds: float = 0.1
    throttle_suppressed_errors: List[str] = DEFAULT_SUPPRESSED_ERROR_PATTERNS

    # Tracking Orchestrator
    tracking_init_timeout_seconds: float = 15.0
    page_view_dedup_seconds: float = 2.0
    page_view_batch_seconds: float = 0.2
    view_content_dedup_seconds: float = 3.0
    add_to_cart_dedup_seconds: float = 2.0
    # Two independent windows: double-submit suppression vs. cache pruning
    purchase_dedup_seconds: float = 30.0
    purchase_retention_seconds: float = 300.0
    default_currency: str = "INR"

    # Analytics sinks
    ga_measurement_id: Optional[str] = None
    google_ads_id: Optional[str] = None
    google_ads_conversion_id: Optional[str] = None
    facebook_pixel_id: Optional[str] = None
    gtag_collector_url: Optional[str] = None
    fbq_collector_url: Optional[str] = None
    gtag_load_timeout_seconds: float = 8.0
    fbq_load_timeout_seconds: float = 3.0

    # Circuit Breaker Configuration
    circuit_breaker_fail_max: int = 5  # Consecutive failures before opening circuit
    circuit_breaker_reset_timeout: int = 60  # Seconds before auto-recovery attempt

    # Error Tracking
    sentry_dsn: Optional[str] = None  # Sentry project DSN
    sentry_environment: Optional[str] = None  # Defaults to environment setting

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
