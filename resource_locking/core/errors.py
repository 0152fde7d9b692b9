"""Error codes and exceptions raised by the lock registry.

Absence (no holders, no expiry) is never an error; callers get an empty
list or ``None`` instead.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"  # Store call failed (network/timeout/backend)
    INVALID_ARGUMENT = "INVALID_ARGUMENT"  # Rejected before any store call


class ResourceLockError(Exception):
    """Base exception for resource lock errors."""

    code: ErrorCode = ErrorCode.STORE_UNAVAILABLE

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message}


class StoreUnavailableError(ResourceLockError):
    """Raised when a call to the ordered store does not complete."""

    code = ErrorCode.STORE_UNAVAILABLE


class InvalidArgumentError(ResourceLockError, ValueError):
    """Raised for a non-positive TTL or an identifier that cannot be keyed."""

    code = ErrorCode.INVALID_ARGUMENT


__all__ = [
    "ErrorCode",
    "ResourceLockError",
    "StoreUnavailableError",
    "InvalidArgumentError",
]
