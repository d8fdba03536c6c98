# services/cache/cache_backend.py
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Callable, Dict, Optional, Protocol

from schemas.etf import CacheEntry

try:
    import redis as redis_sync
except Exception:
    redis_sync = None

logger = logging.getLogger(__name__)

# -------------------------
# Config
# -------------------------
ETF_CACHE_TTL_MS = int(os.getenv("ETF_CACHE_TTL_MS", str(24 * 60 * 60 * 1000)))

# Bump the version tag whenever the cached profile shape changes; old entries
# then simply stop matching.
PROFILE_KEY_PREFIX = "av_etf_v4_"

REDIS_URL = os.getenv("REDIS_URL")


def profile_cache_key(ticker: str) -> str:
    return f"{PROFILE_KEY_PREFIX}{(ticker or '').strip().upper()}"


def now_ms() -> int:
    return int(time.time() * 1000)


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, raw: str, ttl_ms: int) -> None: ...

    def delete(self, key: str) -> None: ...


class LocalCacheBackend:
    """In-process dict. Expiry is left to CacheStore."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, raw: str, ttl_ms: int) -> None:
        self._data[key] = raw

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class RedisCacheBackend:
    def __init__(self, client: Any) -> None:
        self._r = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheBackend":
        if not redis_sync:
            raise RuntimeError("redis package is not installed")
        client = redis_sync.from_url(
            url,
            decode_responses=True,  # returns str for GET
            socket_timeout=2,
            socket_connect_timeout=2,
        )
        # from_url connects lazily; fail here so callers can fall back.
        client.ping()
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        raw = self._r.get(key)
        if isinstance(raw, (bytes, bytearray)):
            return raw.decode("utf-8")
        return raw if isinstance(raw, str) else None

    def set(self, key: str, raw: str, ttl_ms: int) -> None:
        # PX lets Redis reclaim the key; freshness is still checked on read.
        self._r.set(key, raw, px=max(1, int(ttl_ms)))

    def delete(self, key: str) -> None:
        self._r.delete(key)


class CacheStore:
    """
    Key/value store with per-entry expiry.

    - get: returns None for missing, expired, or undecodable entries; the
      latter two are deleted on the read that finds them.
    - put: overwrites and stamps the current time. Backend failures are
      logged and dropped so the caller only ever sees a miss next time.
    """

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        *,
        ttl_ms: int = ETF_CACHE_TTL_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.backend: CacheBackend = backend if backend is not None else LocalCacheBackend()
        self.ttl_ms = int(ttl_ms)
        self._clock = clock

    def get(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = self.backend.get(key)
        except Exception as e:
            logger.warning("cache read failed key=%s: %s", key, e)
            return None
        if raw is None:
            return None

        try:
            entry = CacheEntry.model_validate(json.loads(raw))
        except ValueError:
            logger.debug("dropping undecodable cache entry key=%s", key)
            self.delete(key)
            return None

        if self._clock() - entry.timestamp >= self.ttl_ms:
            self.delete(key)
            return None
        return entry

    def put(self, key: str, value: Any) -> None:
        entry = {"data": value, "timestamp": self._clock()}
        try:
            raw = json.dumps(entry, separators=(",", ":"))
            self.backend.set(key, raw, self.ttl_ms)
        except Exception as e:
            logger.warning("cache write skipped key=%s: %s", key, e)

    def delete(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except Exception as e:
            logger.warning("cache delete failed key=%s: %s", key, e)


def build_cache_store() -> CacheStore:
    """Redis when REDIS_URL is configured and reachable, else process memory."""
    if REDIS_URL and redis_sync:
        try:
            return CacheStore(RedisCacheBackend.from_url(REDIS_URL))
        except Exception as e:
            logger.warning("redis unavailable, using local cache: %s", e)
    return CacheStore(LocalCacheBackend())
