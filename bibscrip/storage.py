from typing import Dict, List, Optional

import redis

from bibscrip.config import REDIS_URL
from bibscrip.events import log_event


class StorageError(Exception):
    """Raised when a record cannot be read from or written to storage."""


class KeyValueStore:
    """String key/value records in Redis, degrading to a process-local dict.

    Pass ``url=None`` for a purely in-memory store (tests, single process).
    Once Redis fails a ping or a command, the store stays in memory mode for
    the rest of its lifetime.
    """

    def __init__(self, url: Optional[str] = REDIS_URL, client=None):
        self._url = url
        self._client = client
        self._available = client is not None or url is not None
        self._mem: Dict[str, str] = {}

    def _get_redis(self):
        if not self._available:
            return None
        if self._client is None:
            client = redis.Redis.from_url(self._url, decode_responses=True)
            try:
                client.ping()
            except redis.RedisError:
                self._fallback("ping")
                return None
            self._client = client
        return self._client

    def _fallback(self, op: str) -> None:
        self._available = False
        self._client = None
        log_event("storage_error", {"op": op, "backend": "redis", "mode": "memory"})

    @property
    def in_memory(self) -> bool:
        return self._get_redis() is None

    def get(self, key: str) -> Optional[str]:
        client = self._get_redis()
        if client is not None:
            try:
                return client.get(key)
            except redis.RedisError:
                self._fallback("get")
        return self._mem.get(key)

    def set(self, key: str, value: str) -> None:
        client = self._get_redis()
        if client is not None:
            try:
                client.set(key, value)
                return
            except redis.RedisError:
                self._fallback("set")
        self._mem[key] = value

    def delete(self, key: str) -> None:
        client = self._get_redis()
        if client is not None:
            try:
                client.delete(key)
                return
            except redis.RedisError:
                self._fallback("delete")
        self._mem.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        client = self._get_redis()
        if client is not None:
            try:
                return list(client.scan_iter(match=f"{prefix}*"))
            except redis.RedisError:
                self._fallback("keys")
        return [key for key in self._mem if key.startswith(prefix)]
