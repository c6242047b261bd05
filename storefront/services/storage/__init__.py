"""
Storage Module
Client-local key/value stores and the redundant in-flight order store
"""

from storefront.services.storage.backends import (
    KeyValueBackend,
    MemoryBackend,
    RedisBackend,
    create_persistent_backend,
)
from storefront.services.storage.storage_service import StorageService
from storefront.services.storage.order_store import RedundantOrderStore

__all__ = [
    "KeyValueBackend",
    "MemoryBackend",
    "RedisBackend",
    "create_persistent_backend",
    "StorageService",
    "RedundantOrderStore",
]
