"""Ordered Store Implementations.

Provides store implementations:
- In-memory ordered store (testing, single process)
- Redis sorted-set store (production)
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

from resource_locking.core.errors import StoreUnavailableError
from resource_locking.core.resource_locks.core import LockEntry, OrderedStore

logger = logging.getLogger(__name__)


class InMemoryOrderedStore(OrderedStore):
    """In-memory ordered store with Redis sorted-set semantics.

    Empty collections disappear together with their deadline, and a
    collection whose deadline has passed reads as empty.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._collections: Dict[str, Dict[str, float]] = {}
        self._deadlines: Dict[str, float] = {}
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _live(self, collection: str) -> Dict[str, float]:
        """Return the collection, dropping it first if its deadline fired."""
        deadline = self._deadlines.get(collection)
        if deadline is not None and self._clock() >= deadline:
            logger.debug(f"Collection '{collection}' reached its deadline")
            self._drop(collection)
        return self._collections.get(collection, {})

    def _drop(self, collection: str) -> None:
        self._collections.pop(collection, None)
        self._deadlines.pop(collection, None)

    def _drop_if_empty(self, collection: str) -> None:
        if not self._collections.get(collection):
            self._drop(collection)

    @staticmethod
    def _sorted(members: Dict[str, float]) -> List[LockEntry]:
        return [
            LockEntry(member=member, expires_at=score)
            for member, score in sorted(members.items(), key=lambda item: (item[1], item[0]))
        ]

    async def upsert(self, collection: str, member: str, score: float) -> None:
        async with self._get_lock():
            self._live(collection)
            self._collections.setdefault(collection, {})[member] = float(score)

    async def range_by_score(
        self,
        collection: str,
        min_score: float,
        max_score: float,
    ) -> List[LockEntry]:
        async with self._get_lock():
            members = self._live(collection)
            return [
                entry for entry in self._sorted(members)
                if min_score <= entry.expires_at <= max_score
            ]

    async def remove(self, collection: str, *members: str) -> int:
        async with self._get_lock():
            current = self._live(collection)
            removed = 0
            for member in members:
                if member in current:
                    del current[member]
                    removed += 1
            self._drop_if_empty(collection)
            return removed

    async def remove_range_by_score(
        self,
        collection: str,
        min_score: float,
        max_score: float,
    ) -> int:
        async with self._get_lock():
            current = self._live(collection)
            stale = [m for m, score in current.items() if min_score <= score <= max_score]
            for member in stale:
                del current[member]
            self._drop_if_empty(collection)
            return len(stale)

    async def score_of(self, collection: str, member: str) -> Optional[float]:
        async with self._get_lock():
            return self._live(collection).get(member)

    async def highest(self, collection: str) -> Optional[LockEntry]:
        async with self._get_lock():
            entries = self._sorted(self._live(collection))
            return entries[-1] if entries else None

    async def set_expiration(self, collection: str, at: float) -> bool:
        async with self._get_lock():
            if not self._live(collection):
                return False
            current = self._deadlines.get(collection)
            if current is None or at > current:
                self._deadlines[collection] = float(at)
            return True

    async def delete(self, collection: str) -> int:
        async with self._get_lock():
            existed = bool(self._live(collection))
            self._drop(collection)
            return int(existed)

    async def ping(self) -> bool:
        return True

    def deadline_of(self, collection: str) -> Optional[float]:
        """Deadline currently set on a collection (diagnostics and tests)."""
        return self._deadlines.get(collection)

    def collections(self) -> List[str]:
        return sorted(self._collections)


def _decode(value: Union[str, bytes]) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


def _bound(score: float) -> Union[str, float]:
    if score == float("-inf"):
        return "-inf"
    if score == float("inf"):
        return "+inf"
    return score


@contextmanager
def _store_errors(operation: str, collection: str) -> Iterator[None]:
    try:
        yield
    except (RedisError, OSError) as e:
        logger.error(f"Redis {operation} error on '{collection}': {e}")
        raise StoreUnavailableError(f"Redis {operation} failed for '{collection}': {e}") from e


class RedisOrderedStore(OrderedStore):
    """Ordered store backed by Redis sorted sets (``redis.asyncio`` client)."""

    # Lua script for an advance-only deadline; TTL never overstates the
    # current deadline, so an equal target is at worst re-applied
    ADVANCE_EXPIRY_SCRIPT = """
    local key = KEYS[1]
    local target = tonumber(ARGV[1])

    local remaining = redis.call('TTL', key)
    if remaining == -2 then
        return 0
    end

    if remaining >= 0 then
        local now = tonumber(redis.call('TIME')[1])
        if now + remaining >= target then
            return 1
        end
    end

    redis.call('EXPIREAT', key, target)
    return 1
    """

    def __init__(self, redis_client: Any):
        self._redis = redis_client

    @classmethod
    def from_url(
        cls,
        url: str,
        socket_timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> "RedisOrderedStore":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            **kwargs,
        )
        return cls(client)

    @property
    def client(self) -> Any:
        return self._redis

    @staticmethod
    def _entries(rows: List[Tuple[Any, Any]]) -> List[LockEntry]:
        return [LockEntry(member=_decode(member), expires_at=float(score)) for member, score in rows]

    async def upsert(self, collection: str, member: str, score: float) -> None:
        with _store_errors("upsert", collection):
            await self._redis.zadd(collection, {member: score})

    async def range_by_score(
        self,
        collection: str,
        min_score: float,
        max_score: float,
    ) -> List[LockEntry]:
        with _store_errors("range_by_score", collection):
            rows = await self._redis.zrangebyscore(
                collection, _bound(min_score), _bound(max_score), withscores=True
            )
        return self._entries(rows or [])

    async def remove(self, collection: str, *members: str) -> int:
        if not members:
            return 0
        with _store_errors("remove", collection):
            return int(await self._redis.zrem(collection, *members))

    async def remove_range_by_score(
        self,
        collection: str,
        min_score: float,
        max_score: float,
    ) -> int:
        with _store_errors("remove_range_by_score", collection):
            return int(
                await self._redis.zremrangebyscore(
                    collection, _bound(min_score), _bound(max_score)
                )
            )

    async def score_of(self, collection: str, member: str) -> Optional[float]:
        with _store_errors("score_of", collection):
            score = await self._redis.zscore(collection, member)
        return float(score) if score is not None else None

    async def highest(self, collection: str) -> Optional[LockEntry]:
        with _store_errors("highest", collection):
            rows = await self._redis.zrange(collection, -1, -1, withscores=True)
        entries = self._entries(rows or [])
        return entries[0] if entries else None

    async def set_expiration(self, collection: str, at: float) -> bool:
        # EXPIREAT takes whole seconds; round up so the deadline never precedes ``at``
        with _store_errors("set_expiration", collection):
            result = await self._redis.eval(
                self.ADVANCE_EXPIRY_SCRIPT,
                1,
                collection,
                str(int(math.ceil(at))),
            )
            return result == 1

    async def delete(self, collection: str) -> int:
        with _store_errors("delete", collection):
            return int(await self._redis.delete(collection))

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError) as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()
