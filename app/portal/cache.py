"""
Read-through cache for listing and aggregate queries.

Keys are structured (domain + ordered parts) instead of raw strings, so
invalidating ``CacheKey(PACKET_LISTS, "user", "7")`` can never touch
``CacheKey(PACKET_LISTS, "user", "70")``. The cache is process-local and never
authoritative: the packet lifecycle writes straight to the database and only
calls ``invalidate`` after it commits.
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheTTL:
    """TTL presets in seconds."""

    ONE_MINUTE = 60
    FIVE_MINUTES = 5 * 60
    TEN_MINUTES = 10 * 60
    THIRTY_MINUTES = 30 * 60
    ONE_HOUR = 60 * 60
    ONE_DAY = 24 * 60 * 60


class CacheDomain(StrEnum):
    PACKET_LISTS = "packet_lists"
    CLIENT_PACKETS = "client_packets"
    POPULATIONS = "populations"


@dataclass(frozen=True)
class CacheKey:
    domain: CacheDomain
    parts: tuple[str, ...] = ()

    @classmethod
    def of(cls, domain: CacheDomain, *parts: object) -> "CacheKey":
        return cls(domain=domain, parts=tuple(str(p) for p in parts))

    def startswith(self, prefix: "CacheKey") -> bool:
        if self.domain != prefix.domain:
            return False
        n = len(prefix.parts)
        return self.parts[:n] == prefix.parts

    def __str__(self) -> str:
        return ":".join((self.domain.value, *self.parts))


@dataclass(frozen=True)
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        store_factory: Callable[[], MutableMapping[CacheKey, _Entry]] = dict,
        default_ttl: float = CacheTTL.FIVE_MINUTES,
    ) -> None:
        self._clock = clock
        self.default_ttl = default_ttl
        self._buckets: dict[CacheDomain, MutableMapping[CacheKey, _Entry]] = {d: store_factory() for d in CacheDomain}
        self._locks: dict[CacheDomain, threading.Lock] = {d: threading.Lock() for d in CacheDomain}
        # Bumped by invalidate(); a producer that started before an invalidation must not store its result.
        self._generations: dict[CacheDomain, int] = {d: 0 for d in CacheDomain}

    def with_cache(self, key: CacheKey, producer: Callable[[], T], ttl: float | None = None) -> T:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        bucket = self._buckets[key.domain]
        lock = self._locks[key.domain]

        with lock:
            entry = bucket.get(key)
            if entry is not None and entry.expires_at > self._clock():
                return entry.value
            generation = self._generations[key.domain]

        value = producer()

        with lock:
            if self._generations[key.domain] == generation:
                bucket[key] = _Entry(value=value, expires_at=self._clock() + ttl)
            else:
                logger.debug("Cache result for %s discarded; domain invalidated while producing", key)
        return value

    def get(self, key: CacheKey) -> Any | None:
        bucket = self._buckets[key.domain]
        with self._locks[key.domain]:
            entry = bucket.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del bucket[key]
                return None
            return entry.value

    def invalidate(self, prefix: CacheKey | CacheDomain) -> int:
        """Drop every entry whose key starts with ``prefix``. Returns the number removed."""
        if isinstance(prefix, CacheDomain):
            prefix = CacheKey(domain=prefix)
        bucket = self._buckets[prefix.domain]
        with self._locks[prefix.domain]:
            doomed = [k for k in bucket if k.startswith(prefix)]
            for k in doomed:
                del bucket[k]
            self._generations[prefix.domain] += 1
        if doomed:
            logger.debug("Cache invalidate %s removed %d entries", prefix, len(doomed))
        return len(doomed)

    def purge_expired(self) -> int:
        removed = 0
        now = self._clock()
        for domain, bucket in self._buckets.items():
            with self._locks[domain]:
                expired = [k for k, e in bucket.items() if e.expires_at <= now]
                for k in expired:
                    del bucket[k]
                removed += len(expired)
        return removed

    def clear(self) -> None:
        for domain, bucket in self._buckets.items():
            with self._locks[domain]:
                bucket.clear()
                self._generations[domain] += 1

    def __len__(self) -> int:
        return sum(len(b) for b in self._buckets.values())


def current_cache() -> TTLCache:
    from flask import current_app

    return current_app.extensions["portal_cache"]
