# utils.py
# Helpers: in-memory TTL cache with injectable clock, cache keys, upstream throttle, errors

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol
import asyncio
import time


class UpstreamError(Exception):
    """A geodata provider or the LLM was unreachable or answered non-2xx."""

    def __init__(self, service: str, message: str, status_code: int | None = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code


class TripError(Exception):
    """Request-level failure surfaced to the client as {error, details?}."""

    def __init__(self, status_code: int, error: str, details: Any = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    stored_at: float
    expires_at: float


class ResultCache(Protocol):
    def get(self, key: str) -> Any | None: ...
    def put(self, key: str, value: Any) -> None: ...
    def expire(self, key: str) -> None: ...


class TTLCache:
    """
    Simple in-memory TTL cache (per-process).

    Expiry is lazy: a stale entry is dropped on read and reported as a miss.
    No size bound and no locking; concurrent writers of the same key just
    overwrite each other.
    """

    def __init__(self, ttl_seconds: float = 600, clock: Callable[[], float] = time.time):
        self.ttl = ttl_seconds
        self._clock = clock
        self._store: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Any | None:
        entry = self._store.get(key)
        if not entry:
            return None
        if entry.expires_at <= self._clock():
            self._store.pop(key, None)
            return None
        return entry.value

    def put(self, key: str, value: Any) -> None:
        now = self._clock()
        self._store[key] = CacheEntry(value=value, stored_at=now, expires_at=now + self.ttl)

    def expire(self, key: str) -> None:
        self._store.pop(key, None)

    def __len__(self) -> int:
        return len(self._store)


def make_key(prefix: str, text: Optional[str] = None, lat: Any = None, lon: Any = None, precision: int = 4) -> str:
    """
    Build a cache key from normalized query text and/or rounded coordinates.
    Example: make_key("dest", " Rome ") -> "dest_rome"
    """
    parts = [prefix]
    if text is not None:
        parts.append(text.lower().strip())
    if lat is not None and lon is not None:
        parts.append(f"{float(lat):.{precision}f}")
        parts.append(f"{float(lon):.{precision}f}")
    return "_".join(parts)


class Throttle:
    """
    Cooperative minimum spacing between calls to one upstream.
    A call issued too soon is delayed, never rejected.
    """

    def __init__(self, min_interval: float = 1.0, clock: Callable[[], float] = time.monotonic, sleep=asyncio.sleep):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None

    async def wait(self) -> float:
        """Sleep if needed; returns the delay applied (seconds)."""
        delay = 0.0
        if self._last is not None:
            elapsed = self._clock() - self._last
            if elapsed < self.min_interval:
                delay = self.min_interval - elapsed
                await self._sleep(delay)
        return delay

    def mark(self) -> None:
        # record when the upstream call finished; spacing counts from completion
        self._last = self._clock()


# timeout wrapper for independent lookups
# returns (result, errstr) and never raises
async def run_with_timeout(coro, seconds: float, label: str):
    try:
        result = await asyncio.wait_for(coro, timeout=seconds)
        return result, None
    except asyncio.TimeoutError:
        return None, f"{label} timed out after {seconds}s"
    except Exception as e:
        return None, f"{label} error: {e}"


# per process caches: 10 min for destination/place validation, 30 min for coordinates
validation_cache = TTLCache(ttl_seconds=600)
coordinate_cache = TTLCache(ttl_seconds=1800)
