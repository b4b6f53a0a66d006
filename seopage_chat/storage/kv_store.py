"""Key-value persistence port used for session resumption."""
from abc import ABC, abstractmethod
from typing import Dict, Optional
import logging

import redis

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class InMemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


class RedisStore(KeyValueStore):
    """Redis-backed store; keys are namespaced with ``prefix``."""

    def __init__(self, client: "redis.Redis", prefix: str = "seopage", ttl: Optional[int] = None):
        self.redis = client
        self.prefix = prefix
        self.ttl = ttl

    @classmethod
    def from_url(cls, url: str, prefix: str = "seopage", ttl: Optional[int] = None) -> "RedisStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), prefix=prefix, ttl=ttl)

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> Optional[str]:
        return self.redis.get(self._key(key))

    def set(self, key: str, value: str) -> None:
        self.redis.set(self._key(key), value, ex=self.ttl)
        logger.debug(f"Stored {self._key(key)}")

    def delete(self, key: str) -> None:
        self.redis.delete(self._key(key))
