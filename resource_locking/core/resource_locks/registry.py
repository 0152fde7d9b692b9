"""Resource Lock Registry.

Two score-ordered indexes live in the store, both scored by expiry instant:

- type index ``type:locks:{type}``: resource ids currently locked
- resource index ``resource:locks:{type}:{id}``: user ids holding that resource

Before touching either index every operation removes everything scored at or
below the current time, so expiry needs no background sweeper. Each collection
also carries a store-level deadline equal to its highest score, which reclaims
resources that are never accessed again.

Locks are advisory: any number of users may hold the same resource.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Iterator, List, Optional

from resource_locking.core.resource_locks.core import (
    DEFAULT_TTL_SECONDS,
    RESOURCE_INDEX,
    TTL,
    TYPE_INDEX,
    Identifier,
    LockEntry,
    LockKeys,
    OrderedStore,
    ResourceType,
    normalize_identifier,
    normalize_ttl,
    parse_identifier,
)
from resource_locking.utils.metrics import (
    resource_lock_expired_entries_total,
    resource_lock_operation_duration_seconds,
    resource_lock_operations_total,
)

if TYPE_CHECKING:
    from resource_locking.core.resource_locks.hold import LockHold

logger = logging.getLogger(__name__)

_MIN_SCORE = float("-inf")
_MAX_SCORE = float("inf")


class LockRegistry:
    """Advisory, lazily-expiring lock registry over an ordered store."""

    def __init__(
        self,
        store: OrderedStore,
        *,
        default_ttl: TTL = DEFAULT_TTL_SECONDS,
        key_prefix: str = "",
        clock: Callable[[], float] = time.time,
        identifier_type: Callable[[str], Any] = parse_identifier,
    ):
        self._store = store
        self._default_ttl = normalize_ttl(default_ttl)
        self._keys = LockKeys(key_prefix)
        self._clock = clock
        self._identifier_type = identifier_type

    @property
    def store(self) -> OrderedStore:
        return self._store

    @property
    def keys(self) -> LockKeys:
        return self._keys

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def acquire(
        self,
        resource_type: ResourceType,
        resource_id: Identifier,
        user_id: Identifier,
        ttl: Optional[TTL] = None,
    ) -> None:
        """Register ``user_id`` as a holder of the resource until now + ttl.

        Re-acquiring refreshes the holder's expiry. The resource index is
        written before the type index; if the store fails in between, the
        holder is recorded without a type entry until the next write on this
        resource.
        """
        ttl_seconds = normalize_ttl(self._default_ttl if ttl is None else ttl)
        type_key = self._keys.type_key(resource_type)
        resource_key = self._keys.resource_key(resource_type, resource_id)
        resource_member = normalize_identifier(resource_id, "resource_id")
        user_member = normalize_identifier(user_id, "user_id")

        with self._observe("acquire"):
            now = self._clock()
            await self._sweep(type_key, resource_key, now)

            expiry = now + ttl_seconds
            await self._store.upsert(resource_key, user_member, expiry)

            resource_expiry = await self._refresh_deadline(resource_key, expiry)
            await self._publish_resource(type_key, resource_key, resource_member, resource_expiry)

        logger.debug(
            f"Lock '{resource_key}' acquired by '{user_member}' for {ttl_seconds}s",
            extra={"operation": "acquire", "user_id": user_member},
        )

    async def release(
        self,
        resource_type: ResourceType,
        resource_id: Identifier,
        user_id: Identifier,
    ) -> None:
        """Remove the holder and its resource entry regardless of remaining TTL.

        Releasing a lock that is not held is a no-op. When other holders are
        still live the resource is put back in the type index at the latest
        remaining expiry.
        """
        type_key = self._keys.type_key(resource_type)
        resource_key = self._keys.resource_key(resource_type, resource_id)
        resource_member = normalize_identifier(resource_id, "resource_id")
        user_member = normalize_identifier(user_id, "user_id")

        with self._observe("release"):
            await self._store.remove(resource_key, user_member)
            await self._store.remove(type_key, resource_member)

            remaining = await self._store.highest(resource_key)
            if remaining is not None and remaining.expires_at > self._clock():
                await self._publish_resource(
                    type_key, resource_key, resource_member, remaining.expires_at
                )

        logger.debug(
            f"Lock '{resource_key}' released by '{user_member}'",
            extra={"operation": "release", "user_id": user_member},
        )

    async def force_release(self, resource_type: ResourceType, resource_id: Identifier) -> None:
        """Drop every holder of a resource (administrative release)."""
        type_key = self._keys.type_key(resource_type)
        resource_key = self._keys.resource_key(resource_type, resource_id)
        resource_member = normalize_identifier(resource_id, "resource_id")

        with self._observe("force_release"):
            await self._store.delete(resource_key)
            await self._store.remove(type_key, resource_member)

        logger.info(f"Lock '{resource_key}' force released", extra={"operation": "force_release"})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def holder_entries(
        self,
        resource_type: ResourceType,
        resource_id: Identifier,
    ) -> List[LockEntry]:
        """Live holders with their expiry, soonest-expiring first."""
        type_key = self._keys.type_key(resource_type)
        resource_key = self._keys.resource_key(resource_type, resource_id)

        with self._observe("holders"):
            now = self._clock()
            await self._sweep(type_key, resource_key, now)
            entries = await self._store.range_by_score(resource_key, _MIN_SCORE, _MAX_SCORE)
        return [entry for entry in entries if entry.expires_at > now]

    async def holders(self, resource_type: ResourceType, resource_id: Identifier) -> List[Any]:
        entries = await self.holder_entries(resource_type, resource_id)
        return [self._identifier_type(entry.member) for entry in entries]

    async def locked_resource_entries(self, resource_type: ResourceType) -> List[LockEntry]:
        """Locked resources of a type with their expiry, soonest-expiring first."""
        type_key = self._keys.type_key(resource_type)

        with self._observe("locked_resources"):
            now = self._clock()
            await self.sweep_type(resource_type, now)
            entries = await self._store.range_by_score(type_key, _MIN_SCORE, _MAX_SCORE)
        return [entry for entry in entries if entry.expires_at > now]

    async def locked_resources(self, resource_type: ResourceType) -> List[Any]:
        entries = await self.locked_resource_entries(resource_type)
        return [self._identifier_type(entry.member) for entry in entries]

    async def expiry_of(
        self,
        resource_type: ResourceType,
        resource_id: Identifier,
        user_id: Identifier,
    ) -> Optional[datetime]:
        """When the user's lock on the resource expires, or None if not held."""
        type_key = self._keys.type_key(resource_type)
        resource_key = self._keys.resource_key(resource_type, resource_id)
        user_member = normalize_identifier(user_id, "user_id")

        with self._observe("expiry_of"):
            now = self._clock()
            await self._sweep(type_key, resource_key, now)
            score = await self._store.score_of(resource_key, user_member)

        if score is None or score <= now:
            return None
        return datetime.fromtimestamp(score, tz=timezone.utc)

    async def is_locked(self, resource_type: ResourceType, resource_id: Identifier) -> bool:
        return bool(await self.holder_entries(resource_type, resource_id))

    async def is_held_by(
        self,
        resource_type: ResourceType,
        resource_id: Identifier,
        user_id: Identifier,
    ) -> bool:
        return await self.expiry_of(resource_type, resource_id, user_id) is not None

    async def other_holders(
        self,
        resource_type: ResourceType,
        resource_id: Identifier,
        user_id: Identifier,
    ) -> List[Any]:
        """Holders other than ``user_id``, e.g. for "someone else is editing" hints."""
        user_member = normalize_identifier(user_id, "user_id")
        entries = await self.holder_entries(resource_type, resource_id)
        return [
            self._identifier_type(entry.member)
            for entry in entries
            if entry.member != user_member
        ]

    def hold(
        self,
        resource_type: ResourceType,
        resource_id: Identifier,
        user_id: Identifier,
        ttl: Optional[TTL] = None,
        refresh_interval: Optional[float] = None,
    ) -> "LockHold":
        """Async context manager holding the lock for the duration of a block."""
        from resource_locking.core.resource_locks.hold import LockHold

        return LockHold(
            self,
            resource_type,
            resource_id,
            user_id,
            ttl=ttl,
            refresh_interval=refresh_interval,
        )

    # ------------------------------------------------------------------
    # Expiry sweeps
    # ------------------------------------------------------------------

    async def sweep_resource(
        self,
        resource_type: ResourceType,
        resource_id: Identifier,
        at: Optional[float] = None,
    ) -> int:
        """Reap expired holders of a resource, then expired resources of its type."""
        type_key = self._keys.type_key(resource_type)
        resource_key = self._keys.resource_key(resource_type, resource_id)
        return await self._sweep(type_key, resource_key, self._clock() if at is None else at)

    async def sweep_type(self, resource_type: ResourceType, at: Optional[float] = None) -> int:
        """Reap resources of a type whose lock expired at or before ``at``."""
        type_key = self._keys.type_key(resource_type)
        return await self._sweep_index(TYPE_INDEX, type_key, self._clock() if at is None else at)

    async def _sweep(self, type_key: str, resource_key: str, at: float) -> int:
        removed = await self._sweep_index(RESOURCE_INDEX, resource_key, at)
        return removed + await self._sweep_index(TYPE_INDEX, type_key, at)

    async def _sweep_index(self, index: str, key: str, at: float) -> int:
        removed = await self._store.remove_range_by_score(key, _MIN_SCORE, at)
        if removed:
            resource_lock_expired_entries_total.labels(index=index).inc(removed)
            logger.debug(
                f"Swept {removed} expired entries from '{key}'",
                extra={"operation": "sweep", "removed": removed},
            )
        return removed

    async def _publish_resource(
        self, type_key: str, resource_key: str, resource_member: str, expires_at: float
    ) -> None:
        """Write the type entry at the latest live holder expiry.

        The resource index is re-read after each write; a concurrent acquire
        that added a later holder in the meantime must not be overwritten by
        a lower score.
        """
        while True:
            await self._store.upsert(type_key, resource_member, expires_at)
            top = await self._store.highest(resource_key)
            if top is None or top.expires_at <= expires_at:
                break
            expires_at = top.expires_at
        await self._refresh_deadline(type_key, expires_at)

    async def _refresh_deadline(self, key: str, at_least: float) -> float:
        """Advance the collection deadline to its highest score and return it.

        Stores only ever move a deadline forward, so a concurrent caller with
        a shorter lock cannot pull it below a live entry.
        """
        top = await self._store.highest(key)
        deadline = max(at_least, top.expires_at) if top is not None else at_least
        await self._store.set_expiration(key, deadline)
        return deadline

    @contextmanager
    def _observe(self, operation: str) -> Iterator[None]:
        start = time.perf_counter()
        status = "error"
        try:
            yield
            status = "success"
        finally:
            resource_lock_operations_total.labels(operation=operation, status=status).inc()
            resource_lock_operation_duration_seconds.labels(operation=operation).observe(
                time.perf_counter() - start
            )
