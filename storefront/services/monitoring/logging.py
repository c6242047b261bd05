"""
Structured JSON Logging with Correlation ID
Provides JSON formatter that automatically injects correlation IDs into all log entries,
and a filter that keeps third-party tracker noise out of the logs
"""

import logging
import sys
import os
from pythonjsonlogger import jsonlogger
from asgi_correlation_id.context import correlation_id


TRACKING_NOISE_PATTERNS = [
    "google.com/ccm/",
    "google-analytics.com",
    "googletagmanager.com",
    "Failed to load resource",
    "fbevents.js",
    "facebook.com",
    "Throttling navigation to prevent the browser from hanging",
]


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with automatic correlation ID injection.

    Extends python-json-logger to add correlation_id field to every log record.
    The correlation ID is retrieved from async context (set by CorrelationIdMiddleware).
    """

    def add_fields(self, log_record, record, message_dict):
        """
        Add custom fields to log record.

        Adds:
        - correlation_id: From async context or 'none' if not available
        - service: Application name for multi-service environments
        - environment: Deployment environment (development/production)
        """
        super().add_fields(log_record, record, message_dict)

        log_record['correlation_id'] = correlation_id.get() or 'none'
        log_record['service'] = 'storefront-checkout'
        log_record['environment'] = os.getenv('ENVIRONMENT', 'development')


class TrackingNoiseFilter(logging.Filter):
    """
    Drops log records produced by blocked or flaky tracker endpoints.

    Ad blockers and privacy settings make these failures routine; they carry
    no signal for the storefront and would otherwise flood the logs.
    """

    def __init__(self, patterns=None):
        super().__init__()
        self.patterns = [p.lower() for p in (patterns or TRACKING_NOISE_PATTERNS)]

    def is_tracking_noise(self, message: str) -> bool:
        lowered = message.lower()
        return any(pattern in lowered for pattern in self.patterns)

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:
            message = str(record.msg)
        return not self.is_tracking_noise(message)


def setup_logging():
    """
    Configure structured JSON logging to stdout.

    Sets up root logger with:
    - CorrelationJsonFormatter for machine-parseable JSON output
    - TrackingNoiseFilter to drop tracker noise
    - INFO level logging (production default)

    Returns:
        logging.Handler: The configured handler (for testing)
    """
    handler = logging.StreamHandler(sys.stdout)

    formatter = CorrelationJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s',
        rename_fields={
            'timestamp': 'asctime',
            'level': 'levelname'
        }
    )
    handler.setFormatter(formatter)
    handler.addFilter(TrackingNoiseFilter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)

    return handler
