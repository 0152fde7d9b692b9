"""Runtime settings for the resource lock registry.

Values come from the environment (case-insensitive) or a local ``.env`` file.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    ENVIRONMENT: str = "development"

    REDIS_URL: str = "redis://localhost:6379/0"
    # Per-call I/O bound for the store client, in seconds
    REDIS_SOCKET_TIMEOUT: float = 5.0

    # Lock registry backend (redis|memory)
    LOCK_STORE_BACKEND: str = "redis"
    LOCK_DEFAULT_TTL_SECONDS: float = 600.0
    LOCK_KEY_PREFIX: str = ""
    # How queries return ids (auto|int|str|uuid); auto turns "42" back into 42
    LOCK_IDENTIFIER_TYPE: str = "auto"

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache


def reset_settings() -> None:
    """Drop the cached settings so the next ``get_settings()`` re-reads the env."""
    global _settings_cache
    _settings_cache = None
