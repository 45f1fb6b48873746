"""Key-value stores emulating the browser's localStorage / sessionStorage"""

import hashlib
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import redis

from config.settings import settings
from core.exceptions import StorageQuotaExceededException
from core.logging import logger


# Global Redis client
redis_client: Optional[redis.Redis] = None


def init_redis() -> bool:
    """
    Initialize Redis connection

    Returns:
        bool: True if successful, False otherwise
    """
    global redis_client

    if not settings.REDIS_URL:
        logger.warning("⚠️ REDIS_URL 환경변수가 설정되지 않았습니다. 메모리 저장소를 사용합니다.")
        return False

    try:
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        redis_client.ping()
        logger.info(f"✅ Redis 연결 성공: {settings.REDIS_URL}")
        return True

    except Exception as e:
        logger.error(f"❌ Redis 연결 실패: {str(e)}")
        redis_client = None
        return False


def calculate_image_hash(image_data: bytes) -> str:
    """SHA256 hash of image data, used for per-result marker keys"""
    return hashlib.sha256(image_data).hexdigest()


def entry_size(key: str, value: str) -> int:
    """Bytes an entry occupies against the quota"""
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class KeyValueStore(ABC):
    """
    String-to-string store with a hard byte quota

    Mirrors the Web Storage API: writes that would exceed the quota raise
    StorageQuotaExceededException and leave the store unchanged.
    """

    def __init__(self, quota_bytes: int):
        self.quota_bytes = quota_bytes

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass

    @abstractmethod
    def used_bytes(self) -> int:
        pass

    def ping(self) -> bool:
        return True

    def _check_quota(self, key: str, value: str, current_value: Optional[str]) -> None:
        used = self.used_bytes()
        if current_value is not None:
            used -= entry_size(key, current_value)
        needed = used + entry_size(key, value)
        if needed > self.quota_bytes:
            raise StorageQuotaExceededException(used=needed, quota=self.quota_bytes)


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store; default backend and the one used in tests"""

    def __init__(self, quota_bytes: int):
        super().__init__(quota_bytes)
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._check_quota(key, value, self._data.get(key))
            self._data[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def used_bytes(self) -> int:
        return sum(entry_size(k, v) for k, v in self._data.items())


class RedisKeyValueStore(KeyValueStore):
    """
    Store backed by one Redis hash per client namespace

    Args:
        client: Redis client created with decode_responses=True
        namespace: Hash key, e.g. "hairdirector:durable:<client_id>"
        quota_bytes: Byte quota for the whole namespace
        ttl_seconds: Expiry refreshed on every write (ephemeral stores only)
    """

    def __init__(
        self,
        client: redis.Redis,
        namespace: str,
        quota_bytes: int,
        ttl_seconds: Optional[int] = None
    ):
        super().__init__(quota_bytes)
        self.client = client
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds

    def get_item(self, key: str) -> Optional[str]:
        return self.client.hget(self.namespace, key)

    def set_item(self, key: str, value: str) -> None:
        self._check_quota(key, value, self.get_item(key))
        pipe = self.client.pipeline()
        pipe.hset(self.namespace, key, value)
        if self.ttl_seconds:
            pipe.expire(self.namespace, self.ttl_seconds)
        pipe.execute()

    def remove_item(self, key: str) -> None:
        self.client.hdel(self.namespace, key)

    def keys(self) -> List[str]:
        return list(self.client.hkeys(self.namespace))

    def used_bytes(self) -> int:
        entries = self.client.hgetall(self.namespace)
        return sum(entry_size(k, v) for k, v in entries.items())

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping 실패: {str(e)}")
            return False
