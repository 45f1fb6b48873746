"""
Storage module for Hair Director Backend

Emulates the web client's storage media on the server side:
durable (localStorage) and ephemeral (sessionStorage) key-value stores,
scoped per client id, backed by Redis or process memory.

Environment Variables:
    REDIS_URL: Redis connection URL; in-memory storage is used when unset

Usage:
    from storage import init_storage

    backend = init_storage()
    store = LocalPersistenceStore(backend.durable(client_id))
"""

from core.logging import logger
from storage.backend import StorageBackend, get_storage_backend


def init_storage() -> StorageBackend:
    """
    Connect Redis (if configured) and build the storage backend

    Returns:
        StorageBackend: Redis or in-memory backend
    """
    from core.kv_store import init_redis

    init_redis()
    backend = get_storage_backend()
    logger.info(f"🔄 Client storage backend: {backend.name}")
    return backend
