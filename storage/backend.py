"""Storage backends providing per-client durable and ephemeral key-value stores"""

import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Optional

import redis

from config.settings import settings
from core.kv_store import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from core.logging import logger, mask_client_id


# ========== Storage keys ==========
# Durable (localStorage analogue)
HISTORY_KEY = "hairfit_history"
SAVED_KEY = "hairfit_saved"
PREMIUM_KEY = "hairfit_premium_status"

# Ephemeral (sessionStorage analogue)
SESSION_SNAPSHOT_KEY = "hairdirector_session"
PENDING_IMAGE_KEY = "hairdirector_pending_image"
PROCESSED_CHECKOUT_PREFIX = "hairfit_processed_"
AUTO_EXPORT_PREFIX = "hairdirector_autosave_done_"


class StorageBackend(ABC):
    """
    Abstract provider of client-scoped stores

    Each client id (one browser tab) owns one durable and one ephemeral
    namespace. Business code receives the stores, never the backend, so the
    backend can be swapped between memory and Redis without changes.
    """

    @abstractmethod
    def durable(self, client_id: str) -> KeyValueStore:
        """Store that outlives the tab (history, saved styles, premium record)"""
        pass

    @abstractmethod
    def ephemeral(self, client_id: str) -> KeyValueStore:
        """Store scoped to the tab lifetime (snapshot, one-shot markers)"""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    def ping(self) -> bool:
        return True

    def touch(self, client_id: str) -> None:
        """Mark the client as recently used"""
        pass

    def release(self, client_id: str) -> None:
        """Drop the ephemeral namespace of a client whose session ended"""
        pass


class InMemoryStorageBackend(StorageBackend):
    """
    Keeps every namespace in process memory

    At most `max_clients` clients are kept; the least recently used
    client's namespaces are dropped first.
    """

    def __init__(self, quota_bytes: Optional[int] = None, max_clients: Optional[int] = None):
        self.quota_bytes = quota_bytes or settings.STORAGE_QUOTA_BYTES
        self.max_clients = max_clients or settings.MAX_MEMORY_CLIENTS
        self._durable: "OrderedDict[str, InMemoryKeyValueStore]" = OrderedDict()
        self._ephemeral: "OrderedDict[str, InMemoryKeyValueStore]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "memory"

    def _get_or_create(self, stores: "OrderedDict[str, InMemoryKeyValueStore]", client_id: str) -> InMemoryKeyValueStore:
        with self._lock:
            store = stores.get(client_id)
            if store is None:
                store = InMemoryKeyValueStore(self.quota_bytes)
                stores[client_id] = store
            stores.move_to_end(client_id)
            while len(stores) > self.max_clients:
                evicted, _ = stores.popitem(last=False)
                logger.info(f"🧹 메모리 저장소 정리: {mask_client_id(evicted)}")
            return store

    def durable(self, client_id: str) -> KeyValueStore:
        return self._get_or_create(self._durable, client_id)

    def ephemeral(self, client_id: str) -> KeyValueStore:
        return self._get_or_create(self._ephemeral, client_id)

    def touch(self, client_id: str) -> None:
        with self._lock:
            for stores in (self._durable, self._ephemeral):
                if client_id in stores:
                    stores.move_to_end(client_id)

    def release(self, client_id: str) -> None:
        with self._lock:
            self._ephemeral.pop(client_id, None)

    @property
    def client_count(self) -> int:
        return len(set(self._durable) | set(self._ephemeral))


class RedisStorageBackend(StorageBackend):
    """One Redis hash per client namespace; ephemeral hashes expire"""

    def __init__(self, client, quota_bytes: Optional[int] = None, session_ttl: Optional[int] = None):
        self.client = client
        self.quota_bytes = quota_bytes or settings.STORAGE_QUOTA_BYTES
        self.session_ttl = session_ttl or settings.SESSION_TTL_SECONDS

    @property
    def name(self) -> str:
        return "redis"

    def durable(self, client_id: str) -> KeyValueStore:
        return RedisKeyValueStore(
            self.client,
            namespace=f"hairdirector:durable:{client_id}",
            quota_bytes=self.quota_bytes
        )

    def ephemeral(self, client_id: str) -> KeyValueStore:
        return RedisKeyValueStore(
            self.client,
            namespace=f"hairdirector:ephemeral:{client_id}",
            quota_bytes=self.quota_bytes,
            ttl_seconds=self.session_ttl
        )

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


def get_storage_backend() -> StorageBackend:
    """
    Factory returning Redis storage when a Redis connection is up,
    in-memory storage otherwise

    Example:
        >>> backend = get_storage_backend()
        >>> history_store = backend.durable("tab-1234")
    """
    from core import kv_store

    if kv_store.redis_client is not None:
        return RedisStorageBackend(kv_store.redis_client)
    return InMemoryStorageBackend()
