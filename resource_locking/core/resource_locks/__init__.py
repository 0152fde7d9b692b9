"""Resource Locks Module.

Provides advisory, time-bounded resource locks:
- Lock registry with lazy expiry over two score-ordered indexes
- In-memory and Redis ordered stores
- Context manager with background refresh
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from resource_locking.core.config import Settings, get_settings
from resource_locking.core.errors import InvalidArgumentError
from resource_locking.core.resource_locks.core import (
    DEFAULT_TTL_SECONDS,
    LockEntry,
    LockKeys,
    OrderedStore,
    ParsedKey,
    normalize_identifier,
    normalize_ttl,
    parameterize,
    parse_identifier,
    resolve_identifier_type,
    resolve_type_slug,
)
from resource_locking.core.resource_locks.hold import LockHold
from resource_locking.core.resource_locks.registry import LockRegistry
from resource_locking.core.resource_locks.stores import (
    InMemoryOrderedStore,
    RedisOrderedStore,
)

logger = logging.getLogger(__name__)

__all__ = [
    # Core
    "DEFAULT_TTL_SECONDS",
    "LockEntry",
    "LockKeys",
    "OrderedStore",
    "ParsedKey",
    "normalize_identifier",
    "normalize_ttl",
    "parameterize",
    "parse_identifier",
    "resolve_identifier_type",
    "resolve_type_slug",
    # Stores
    "InMemoryOrderedStore",
    "RedisOrderedStore",
    # Registry
    "LockRegistry",
    "LockHold",
    "create_lock_registry",
]


def create_lock_registry(
    settings: Optional[Settings] = None,
    backend: Optional[str] = None,
    redis_client: Any = None,
    identifier_type: Optional[Callable[[str], Any]] = None,
) -> LockRegistry:
    """Build a lock registry from settings.

    Args:
        settings: Settings to use; defaults to ``get_settings()``.
        backend: "redis" or "memory"; defaults to ``LOCK_STORE_BACKEND``.
        redis_client: Existing ``redis.asyncio`` client for the redis backend.
        identifier_type: Converter applied to ids returned by queries;
            defaults to ``LOCK_IDENTIFIER_TYPE``.

    Returns:
        LockRegistry bound to the selected store.

    Raises:
        InvalidArgumentError: If the backend or identifier type is unknown.

    Example:
        >>> registry = create_lock_registry(backend="memory")
        >>> registry = create_lock_registry(identifier_type=int)
    """
    settings = settings or get_settings()
    backend = (backend or settings.LOCK_STORE_BACKEND).lower()
    if identifier_type is None:
        identifier_type = resolve_identifier_type(settings.LOCK_IDENTIFIER_TYPE)

    store: OrderedStore
    if backend == "redis":
        if redis_client is not None:
            store = RedisOrderedStore(redis_client)
        else:
            store = RedisOrderedStore.from_url(
                settings.REDIS_URL,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            )
    elif backend == "memory":
        store = InMemoryOrderedStore()
    else:
        raise InvalidArgumentError(f"Unknown lock store backend: {backend!r}")

    logger.info(f"Using {backend} lock store")
    return LockRegistry(
        store,
        default_ttl=settings.LOCK_DEFAULT_TTL_SECONDS,
        key_prefix=settings.LOCK_KEY_PREFIX,
        identifier_type=identifier_type,
    )
