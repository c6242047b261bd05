"""
Storage Service
JSON envelope, key prefixing and expiry on top of a raw key/value backend.
Every operation fails closed: errors are logged and reported as None/False.
"""

import json
import time
from typing import Any, Optional

import structlog

from storefront.services.storage.backends import KeyValueBackend

logger = structlog.get_logger(__name__)


class StorageService:
    """
    Namespaced JSON store.

    Values are written as ``{"value": ..., "timestamp": ..., "expiry": ...}``
    under ``{prefix}{namespace}:{key}`` (or ``{prefix}{key}`` without a
    namespace). Expired entries are removed on read.
    """

    def __init__(self, backend: KeyValueBackend, prefix: str = "ecommerce_", namespace: Optional[str] = None):
        self.backend = backend
        self.prefix = prefix
        self.namespace = namespace
        self.logger = logger.bind(service="storage", namespace=namespace)

    def _key(self, key: str) -> str:
        if self.namespace:
            return f"{self.prefix}{self.namespace}:{key}"
        return f"{self.prefix}{key}"

    def scoped(self, namespace: str) -> "StorageService":
        """Same backend and prefix, different namespace (one per browser session)."""
        return StorageService(self.backend, prefix=self.prefix, namespace=namespace)

    def set(self, key: str, value: Any, expiry: Optional[float] = None) -> bool:
        """
        Store a JSON-serializable value.

        Args:
            key: Storage key
            value: Value to store
            expiry: Absolute epoch seconds after which the value is discarded

        Returns:
            True if written, False on serialization or backend failure
        """
        try:
            item = {"value": value, "timestamp": time.time(), "expiry": expiry}
            self.backend.set_item(self._key(key), json.dumps(item, default=str))
            return True
        except Exception as e:
            self.logger.error("storage_set_failed", key=key, error=str(e))
            return False

    def get(self, key: str) -> Any:
        """Return the stored value, or None if absent, expired or unreadable."""
        try:
            raw = self.backend.get_item(self._key(key))
            if raw is None:
                return None

            parsed = json.loads(raw)
            if not isinstance(parsed, dict) or "value" not in parsed:
                return None

            expiry = parsed.get("expiry")
            if expiry and time.time() > expiry:
                self.remove(key)
                return None
            return parsed["value"]
        except Exception as e:
            self.logger.warning("storage_get_failed", key=key, error=str(e))
            return None

    def remove(self, key: str) -> bool:
        try:
            self.backend.remove_item(self._key(key))
            return True
        except Exception as e:
            self.logger.error("storage_remove_failed", key=key, error=str(e))
            return False

    def clear(self) -> int:
        """Remove every key under this prefix/namespace. Returns the count removed."""
        removed = 0
        try:
            for full_key in list(self.backend.keys(self._key(""))):
                self.backend.remove_item(full_key)
                removed += 1
        except Exception as e:
            self.logger.error("storage_clear_failed", error=str(e))
        return removed
