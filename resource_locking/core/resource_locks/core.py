"""Resource Lock Core.

Provides the building blocks shared by the registry and its stores:
- Lock entries (member + expiry score)
- Key naming for the type and resource indexes
- Identifier / TTL validation
- Ordered store interface
"""

from __future__ import annotations

import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import UUID

from resource_locking.core.errors import InvalidArgumentError

DEFAULT_TTL_SECONDS = 600.0  # 10 minutes

TYPE_INDEX = "type"
RESOURCE_INDEX = "resource"

_SLUG_INVALID = re.compile(r"[^a-z0-9\-_]+")
_SLUG_REPEATED_SEP = re.compile(r"-{2,}")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_CANONICAL_INT = re.compile(r"0|-?[1-9][0-9]*")

Identifier = Union[str, int, UUID]
ResourceType = Union[str, type]
TTL = Union[int, float, timedelta]


@dataclass(frozen=True)
class LockEntry:
    """A member of an index together with its expiry instant (POSIX seconds)."""

    member: str
    expires_at: float

    @property
    def expires_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)

    def remaining_seconds(self, now: float) -> float:
        return max(0.0, self.expires_at - now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member": self.member,
            "expires_at": self.expires_at_datetime.isoformat(),
        }


@dataclass(frozen=True)
class ParsedKey:
    """Components recovered from an index key, for debugging."""

    index: str
    resource_type: str
    resource_id: Optional[str] = None


def parameterize(name: str) -> str:
    """Slug a type name: lower-case, runs of other characters become ``-``."""
    slug = _SLUG_INVALID.sub("-", name.lower())
    slug = _SLUG_REPEATED_SEP.sub("-", slug)
    return slug.strip("-")


def resolve_type_slug(resource_type: ResourceType) -> str:
    """Map a resource type discriminator (class or name) to its key slug."""
    if isinstance(resource_type, type):
        name = resource_type.__name__
    elif isinstance(resource_type, str):
        name = resource_type
    else:
        raise InvalidArgumentError(
            f"resource_type must be a class or a string, got {type(resource_type).__name__}"
        )

    slug = parameterize(name)
    if not slug:
        raise InvalidArgumentError(f"resource_type {name!r} has no usable characters")
    return slug


def normalize_identifier(value: Any, field_name: str = "identifier") -> str:
    """Serialize a resource or user identifier into a member string."""
    if value is None or isinstance(value, bool):
        raise InvalidArgumentError(f"{field_name} must not be {value!r}")

    if isinstance(value, (int, UUID)):
        return str(value)

    if not isinstance(value, str):
        raise InvalidArgumentError(
            f"{field_name} must be a str, int or UUID, got {type(value).__name__}"
        )
    if not value.strip():
        raise InvalidArgumentError(f"{field_name} must not be empty")
    if _CONTROL_CHARS.search(value):
        raise InvalidArgumentError(f"{field_name} must not contain control characters")
    return value


def parse_identifier(member: str) -> Union[str, int]:
    """Turn a stored member back into the id that produced it.

    Canonical decimal integers come back as ``int``; anything else (including
    "007", which ``int`` would not reproduce) stays a string.
    """
    if _CANONICAL_INT.fullmatch(member):
        return int(member)
    return member


IDENTIFIER_TYPES: Dict[str, Callable[[str], Any]] = {
    "auto": parse_identifier,
    "int": int,
    "str": str,
    "uuid": UUID,
}


def resolve_identifier_type(name: str) -> Callable[[str], Any]:
    """Look up the id converter configured by name (auto|int|str|uuid)."""
    try:
        return IDENTIFIER_TYPES[name.lower()]
    except KeyError:
        raise InvalidArgumentError(
            f"Unknown identifier type '{name}'; expected one of {sorted(IDENTIFIER_TYPES)}"
        ) from None


def normalize_ttl(ttl: Any) -> float:
    """Return the TTL in seconds, rejecting non-positive or non-numeric values."""
    if isinstance(ttl, timedelta):
        seconds = ttl.total_seconds()
    elif isinstance(ttl, (int, float)) and not isinstance(ttl, bool):
        seconds = float(ttl)
    else:
        raise InvalidArgumentError(f"ttl must be a number of seconds or a timedelta, got {ttl!r}")

    if not math.isfinite(seconds) or seconds <= 0:
        raise InvalidArgumentError(f"ttl must be positive, got {ttl!r}")
    return seconds


class LockKeys:
    """Deterministic collection names for the two index families.

    Type index:     ``{prefix}type:locks:{type}``
    Resource index: ``{prefix}resource:locks:{type}:{resource_id}``
    """

    def __init__(self, prefix: str = ""):
        self._prefix = prefix

    @property
    def prefix(self) -> str:
        return self._prefix

    def type_key(self, resource_type: ResourceType) -> str:
        return f"{self._prefix}type:locks:{resolve_type_slug(resource_type)}"

    def resource_key(self, resource_type: ResourceType, resource_id: Identifier) -> str:
        slug = resolve_type_slug(resource_type)
        member = normalize_identifier(resource_id, "resource_id")
        return f"{self._prefix}resource:locks:{slug}:{member}"

    def parse_key(self, key: str) -> Optional[ParsedKey]:
        """Split a key produced by this instance back into its parts."""
        if not key.startswith(self._prefix):
            return None
        rest = key[len(self._prefix):]

        index, sep, tail = rest.partition(":locks:")
        if not sep or not tail:
            return None

        if index == TYPE_INDEX:
            return ParsedKey(index=TYPE_INDEX, resource_type=tail)
        if index == RESOURCE_INDEX:
            # The slug never contains ':', so the first one ends it
            slug, sep, resource_id = tail.partition(":")
            if not sep or not resource_id:
                return None
            return ParsedKey(index=RESOURCE_INDEX, resource_type=slug, resource_id=resource_id)
        return None


class OrderedStore(ABC):
    """Score-ordered collections with per-collection auto-removal deadlines.

    Every method is a single atomic store operation. Implementations raise
    ``StoreUnavailableError`` when a call cannot complete.
    """

    @abstractmethod
    async def upsert(self, collection: str, member: str, score: float) -> None:
        """Insert ``member`` or update its score."""
        pass

    @abstractmethod
    async def range_by_score(
        self,
        collection: str,
        min_score: float,
        max_score: float,
    ) -> List[LockEntry]:
        """Members with ``min_score <= score <= max_score``, ascending by score."""
        pass

    @abstractmethod
    async def remove(self, collection: str, *members: str) -> int:
        """Remove members; returns how many were present."""
        pass

    @abstractmethod
    async def remove_range_by_score(
        self,
        collection: str,
        min_score: float,
        max_score: float,
    ) -> int:
        """Remove members with ``min_score <= score <= max_score``."""
        pass

    @abstractmethod
    async def score_of(self, collection: str, member: str) -> Optional[float]:
        """Score of ``member`` or None when absent."""
        pass

    @abstractmethod
    async def highest(self, collection: str) -> Optional[LockEntry]:
        """The member with the highest score, or None for an empty collection."""
        pass

    @abstractmethod
    async def set_expiration(self, collection: str, at: float) -> bool:
        """Drop the whole collection at or after the POSIX instant ``at``.

        The deadline only moves forward: an earlier ``at`` than the one already
        set leaves it unchanged. Returns False when the collection does not exist.
        """
        pass

    @abstractmethod
    async def delete(self, collection: str) -> int:
        """Delete the whole collection."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check the store is reachable."""
        pass
