"""
Redundant Order Store
Keeps the in-flight order identity alive across redirects, reloads and
partially cleared storage by writing it under several keys in two backends
"""

from typing import Optional, Union

import structlog

from storefront.models.orders import StoredOrderRecord
from storefront.services.storage.storage_service import StorageService

logger = structlog.get_logger(__name__)

PERSISTENT_RECORD_KEYS = ["currentOrderData", "currentOrder", "pendingPaymentOrder"]
SESSION_RECORD_KEY = "activePaymentSession"
SIMPLE_ID_KEYS = ["current_order_id", "orderId", "order_id", "prePaymentOrderId"]

# Read order: (key, backend) pairs scanned until one yields an order_id
RECORD_SOURCES = [
    ("pendingPaymentOrder", "persistent"),
    ("currentOrderData", "persistent"),
    ("currentOrder", "persistent"),
    (SESSION_RECORD_KEY, "session"),
]
SIMPLE_FALLBACK_KEYS = ["prePaymentOrderId", "current_order_id", "orderId", "order_id"]
QUICK_ID_KEYS = ["orderId", "order_id", "current_order_id", "prePaymentOrderId"]

BASIC_ID_KEY = "orderId"


class RedundantOrderStore:
    """
    Writes the order record redundantly and reads it back with an ordered
    fallback. No method raises; failures degrade to False/None.

    Usage:
        store = RedundantOrderStore(persistent=StorageService(redis_backend),
                                    session=StorageService(memory_backend))
        store.store({"order_id": "order_123", "cf_order_id": "cf_9"})
        store.retrieve()  # {"order_id": "order_123", ...}
    """

    def __init__(self, persistent: StorageService, session: StorageService):
        self.persistent = persistent
        self.session = session
        self.logger = logger.bind(service="order_store")

    def _backend(self, name: str) -> StorageService:
        return self.persistent if name == "persistent" else self.session

    def store(self, record: Union[StoredOrderRecord, dict]) -> bool:
        """
        Store the order record under every structured and simple key.

        Returns:
            True if every write was attempted without error, False otherwise
        """
        try:
            if not isinstance(record, StoredOrderRecord):
                record = StoredOrderRecord(**record)
            data = record.model_dump()
            order_id = record.order_id

            ok = True
            for key in PERSISTENT_RECORD_KEYS:
                ok = self.persistent.set(key, data) and ok
            ok = self.session.set(SESSION_RECORD_KEY, data) and ok

            for key in SIMPLE_ID_KEYS:
                ok = self.persistent.set(key, order_id) and ok

            if record.cf_order_id:
                self.persistent.set("cf_order_id", record.cf_order_id)
            if record.payment_session_id:
                self.persistent.set("payment_session_id", record.payment_session_id)

            self.logger.info("order_data_stored", order_id=order_id, complete=ok)
            return ok
        except Exception as e:
            self.logger.error("order_data_store_failed", error=str(e))
            return False

    def retrieve(self) -> Optional[dict]:
        """
        Return the first stored record carrying an order_id.

        Falls back to the simple id keys, returning
        ``{"order_id": ..., "source": "simple_storage"}``; None when nothing is found.
        """
        try:
            for key, backend_name in RECORD_SOURCES:
                value = self._backend(backend_name).get(key)
                if isinstance(value, dict) and value.get("order_id"):
                    return value

            for key in SIMPLE_FALLBACK_KEYS:
                value = self.persistent.get(key)
                if value:
                    return {"order_id": str(value), "source": "simple_storage"}

            return None
        except Exception as e:
            self.logger.warning("order_data_retrieve_failed", error=str(e))
            return None

    def cleanup(self, keep_basic_id: bool = False) -> bool:
        """
        Remove all order keys.

        Args:
            keep_basic_id: Re-write the order id under a single key afterwards,
                for confirmation views that still need it

        Returns:
            True on success, False if cleanup failed
        """
        try:
            order_id_to_keep = None
            if keep_basic_id:
                order_id_to_keep = self.get_id()

            keys_to_clean = PERSISTENT_RECORD_KEYS + SIMPLE_ID_KEYS + ["payment_session_id", "cf_order_id"]

            cleaned = 0
            for key in keys_to_clean:
                if self.persistent.get(key) is not None:
                    self.persistent.remove(key)
                    cleaned += 1

            if self.session.get(SESSION_RECORD_KEY) is not None:
                self.session.remove(SESSION_RECORD_KEY)
                cleaned += 1

            if order_id_to_keep:
                self.persistent.set(BASIC_ID_KEY, order_id_to_keep)

            self.logger.info(
                "order_data_cleaned",
                cleaned_keys=cleaned,
                kept_order_id=order_id_to_keep
            )
            return True
        except Exception as e:
            self.logger.error("order_data_cleanup_failed", error=str(e))
            return False

    def exists(self) -> bool:
        record = self.retrieve()
        return bool(record and record.get("order_id"))

    def get_id(self) -> Optional[str]:
        """Lightweight lookup: simple keys first, then the full record scan."""
        try:
            for key in QUICK_ID_KEYS:
                value = self.persistent.get(key)
                if value:
                    return str(value)
        except Exception as e:
            self.logger.warning("order_id_lookup_failed", error=str(e))

        record = self.retrieve()
        return record.get("order_id") if record else None
