"""Context manager for holding a resource lock over a block of code."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from resource_locking.core.errors import InvalidArgumentError, StoreUnavailableError
from resource_locking.core.resource_locks.core import TTL, Identifier, ResourceType, normalize_ttl

if TYPE_CHECKING:
    from resource_locking.core.resource_locks.registry import LockRegistry

logger = logging.getLogger(__name__)


class LockHold:
    """Acquire on enter, release on exit, optionally re-acquire while held.

    With ``refresh_interval`` set, a background task re-acquires the lock
    every ``refresh_interval`` seconds so a long editing session does not
    lapse. The interval must be shorter than the TTL.
    """

    def __init__(
        self,
        registry: "LockRegistry",
        resource_type: ResourceType,
        resource_id: Identifier,
        user_id: Identifier,
        ttl: Optional[TTL] = None,
        refresh_interval: Optional[float] = None,
    ):
        self._registry = registry
        self._resource_type = resource_type
        self._resource_id = resource_id
        self._user_id = user_id
        self._ttl = normalize_ttl(registry.default_ttl if ttl is None else ttl)
        self._refresh_interval = refresh_interval
        self._refresh_task: Optional[asyncio.Task] = None
        self.refreshes = 0

        if refresh_interval is not None:
            interval = normalize_ttl(refresh_interval)
            if interval >= self._ttl:
                raise InvalidArgumentError(
                    f"refresh_interval ({interval}s) must be shorter than ttl ({self._ttl}s)"
                )
            self._refresh_interval = interval

    @property
    def ttl(self) -> float:
        return self._ttl

    async def expires_at(self) -> Optional[datetime]:
        return await self._registry.expiry_of(self._resource_type, self._resource_id, self._user_id)

    async def __aenter__(self) -> "LockHold":
        await self._registry.acquire(
            self._resource_type,
            self._resource_id,
            self._user_id,
            ttl=self._ttl,
        )

        if self._refresh_interval is not None:
            self._refresh_task = asyncio.create_task(self._refresh_loop(self._refresh_interval))

        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        try:
            if self._refresh_task:
                self._refresh_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._refresh_task
        finally:
            self._refresh_task = None
            await self._registry.release(self._resource_type, self._resource_id, self._user_id)

    async def _refresh_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self._registry.acquire(
                    self._resource_type,
                    self._resource_id,
                    self._user_id,
                    ttl=self._ttl,
                )
                self.refreshes += 1
            except StoreUnavailableError as e:
                # Keep trying; the lock lapses on its own if the store stays down
                logger.warning(f"Lock refresh failed for '{self._resource_id}': {e}")
