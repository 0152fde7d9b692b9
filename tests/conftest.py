import os

import pytest

from resource_locking.core import config
from resource_locking.core.resource_locks import InMemoryOrderedStore, LockRegistry


# List of environment variables that may be modified by tests
_ENV_VARS_TO_ISOLATE = [
    "LOG_LEVEL",
    "LOG_JSON",
    "ENVIRONMENT",
    "REDIS_URL",
    "REDIS_SOCKET_TIMEOUT",
    "LOCK_STORE_BACKEND",
    "LOCK_DEFAULT_TTL_SECONDS",
    "LOCK_KEY_PREFIX",
    "LOCK_IDENTIFIER_TYPE",
]

T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock returning POSIX seconds."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def env_isolation():
    """Isolate environment variables and the settings cache between tests."""
    backup = {k: os.environ.get(k) for k in _ENV_VARS_TO_ISOLATE}
    config.reset_settings()
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
        config.reset_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryOrderedStore(clock=clock)


@pytest.fixture
def registry(store, clock):
    """Registry over an in-memory store with default id parsing."""
    return LockRegistry(store, clock=clock)
