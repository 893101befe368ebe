"""
Per-session key/value storage

Two capability sets are exposed for each session id:

- durable: survives across visits (free-upload counter, paid flag)
- session: short-lived flags consumed around the payment redirect
  (pending payment marker, one-shot "just paid" signal)

Redis backs both scopes when it is configured; otherwise a process-local
dictionary is used, which is also what the tests inject.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import redis

from core.exceptions import StorageUnavailableException


class KeyValueScope(ABC):
    """String key/value capability bound to one session and one scope"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    def pop(self, key: str) -> Optional[str]:
        """Read and remove a value"""
        value = self.get(key)
        if value is not None:
            self.delete(key)
        return value


class InMemoryBackend:
    """Thread-safe dictionary with optional per-key expiry"""

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        with self._lock:
            self._data[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def getdel(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.pop(key, None)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            return None
        return value

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class InMemoryScope(KeyValueScope):

    def __init__(self, backend: InMemoryBackend, prefix: str, ttl: Optional[int] = None):
        self.backend = backend
        self.prefix = prefix
        self.ttl = ttl

    def get(self, key: str) -> Optional[str]:
        return self.backend.get(f"{self.prefix}:{key}")

    def set(self, key: str, value: str) -> None:
        self.backend.set(f"{self.prefix}:{key}", value, ttl=self.ttl)

    def delete(self, key: str) -> None:
        self.backend.delete(f"{self.prefix}:{key}")

    def pop(self, key: str) -> Optional[str]:
        return self.backend.getdel(f"{self.prefix}:{key}")


class RedisScope(KeyValueScope):
    """Redis-backed scope; connection errors surface as StorageUnavailableException"""

    def __init__(self, client: redis.Redis, prefix: str, ttl: Optional[int] = None):
        self.client = client
        self.prefix = prefix
        self.ttl = ttl

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    @staticmethod
    def _decode(value) -> Optional[str]:
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def get(self, key: str) -> Optional[str]:
        try:
            return self._decode(self.client.get(self._key(key)))
        except redis.RedisError as e:
            raise StorageUnavailableException(f"Session storage read failed: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            if self.ttl:
                self.client.setex(self._key(key), self.ttl, value)
            else:
                self.client.set(self._key(key), value)
        except redis.RedisError as e:
            raise StorageUnavailableException(f"Session storage write failed: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except redis.RedisError as e:
            raise StorageUnavailableException(f"Session storage write failed: {e}") from e

    def pop(self, key: str) -> Optional[str]:
        try:
            pipe = self.client.pipeline()
            pipe.get(self._key(key))
            pipe.delete(self._key(key))
            value, _ = pipe.execute()
            return self._decode(value)
        except redis.RedisError as e:
            raise StorageUnavailableException(f"Session storage read failed: {e}") from e


class SessionStore:
    """Durable and session-scoped storage for a single session id"""

    def __init__(self, session_id: str, durable: KeyValueScope, session: KeyValueScope):
        self.session_id = session_id
        self.durable = durable
        self.session = session


# Process-local fallback shared by every in-memory store
_memory_backend = InMemoryBackend()


def get_memory_backend() -> InMemoryBackend:
    return _memory_backend


def create_session_store(
    session_id: str,
    client: Optional[redis.Redis] = None,
    session_ttl: Optional[int] = None,
    backend: Optional[InMemoryBackend] = None
) -> SessionStore:
    """
    Build the store for a session id

    Args:
        session_id: Opaque session identifier
        client: Redis client; in-memory storage is used when None
        session_ttl: Expiry for session-scoped keys in seconds
        backend: In-memory backend override (tests)

    Returns:
        SessionStore bound to the session id
    """
    durable_prefix = f"facefit:durable:{session_id}"
    session_prefix = f"facefit:session:{session_id}"

    if client is not None:
        return SessionStore(
            session_id,
            durable=RedisScope(client, durable_prefix),
            session=RedisScope(client, session_prefix, ttl=session_ttl),
        )

    backend = backend or _memory_backend
    return SessionStore(
        session_id,
        durable=InMemoryScope(backend, durable_prefix),
        session=InMemoryScope(backend, session_prefix, ttl=session_ttl),
    )
