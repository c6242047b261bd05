"""
Key/Value Storage Backends
Raw string stores behind the storage service: process memory (session-scoped)
and Redis (persistent)
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterator, Optional

import structlog

logger = structlog.get_logger(__name__)


class KeyValueBackend(ABC):
    """Minimal get/set/remove contract over string keys and string values."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self, prefix: str = "") -> Iterator[str]:
        ...


class MemoryBackend(KeyValueBackend):
    """
    In-process store. Contents live as long as the process, which makes it the
    session-scoped flavor.
    """

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> Iterator[str]:
        return iter([k for k in self._data if k.startswith(prefix)])


class RedisBackend(KeyValueBackend):
    """
    Redis-backed persistent store.

    Key format: {namespace}:{key}
    TTL: optional, applied on every write

    Usage:
        redis_client = redis.Redis.from_url(settings.redis_url)
        backend = RedisBackend(redis_client)
    """

    def __init__(self, redis_client, namespace: str = "storefront", ttl_seconds: Optional[int] = None):
        self.redis = redis_client
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get_item(self, key: str) -> Optional[str]:
        value = self.redis.get(self._key(key))
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set_item(self, key: str, value: str) -> None:
        if self.ttl_seconds:
            self.redis.set(self._key(key), value, ex=self.ttl_seconds)
        else:
            self.redis.set(self._key(key), value)

    def remove_item(self, key: str) -> None:
        self.redis.delete(self._key(key))

    def keys(self, prefix: str = "") -> Iterator[str]:
        offset = len(self.namespace) + 1
        for raw in self.redis.scan_iter(match=f"{self._key(prefix)}*"):
            name = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            yield name[offset:]


def create_persistent_backend(redis_url: Optional[str]) -> KeyValueBackend:
    """
    Build the persistent backend, falling back to memory when Redis is not
    configured.
    """
    if not redis_url:
        logger.warning("persistent_storage_fallback", reason="redis_not_configured")
        return MemoryBackend()

    import redis

    client = redis.Redis.from_url(redis_url)
    logger.info("persistent_storage_configured", type="RedisBackend")
    return RedisBackend(client)
