"""
In-memory cache and clock doubles for storage tests.

Provides a deterministic clock and a cache that honours TTLs against it,
so rate-limit windows and metric retention can be tested without Redis.
"""
import fnmatch
import io
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from app.domain.interfaces.storage import ICacheService


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class InMemoryCache(ICacheService):
    """Dictionary-backed cache with TTL support."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.store: Dict[str, Tuple[Any, Optional[datetime]]] = {}
        self.fail = False

        # Track calls for testing
        self.call_log: Dict[str, int] = {}

    def _log_call(self, method_name: str) -> None:
        self.call_log[method_name] = self.call_log.get(method_name, 0) + 1
        if self.fail:
            raise ConnectionError("cache unavailable")

    def _live(self, key: str) -> Optional[Any]:
        entry = self.store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            del self.store[key]
            return None
        return value

    def ttl(self, key: str) -> Optional[float]:
        entry = self.store.get(key)
        if entry is None or entry[1] is None:
            return None
        return (entry[1] - self.clock()).total_seconds()

    async def get(self, key: str) -> Optional[Any]:
        self._log_call("get")
        return self._live(key)

    async def set(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        self._log_call("set")
        expires_at = self.clock() + timedelta(seconds=expire) if expire else None
        self.store[key] = (value, expires_at)
        return True

    async def exists(self, key: str) -> bool:
        self._log_call("exists")
        return self._live(key) is not None

    async def ping(self) -> bool:
        self._log_call("ping")
        return True

    async def delete(self, key: str) -> bool:
        self._log_call("delete")
        return self.store.pop(key, None) is not None

    async def clear_pattern(self, pattern: str) -> int:
        self._log_call("clear_pattern")
        keys = [k for k in self.store if fnmatch.fnmatch(k, pattern)]
        for key in keys:
            del self.store[key]
        return len(keys)

    async def increment(self, key: str, expire: Optional[int] = None) -> int:
        self._log_call("increment")
        current = self._live(key)
        if current is None:
            expires_at = self.clock() + timedelta(seconds=expire) if expire else None
            self.store[key] = (1, expires_at)
            return 1

        value, expires_at = self.store[key]
        self.store[key] = (value + 1, expires_at)
        return value + 1


async def put(storage, container: str, name: str, data: bytes, content_type: str = "text/plain") -> None:
    """Upload raw bytes straight to a provider."""
    await storage.upload(container, name, io.BytesIO(data), content_type)
