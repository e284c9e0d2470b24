from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from kvcache.core.env import load_env


DEFAULT_DATA_DIR = Path.home() / ".kvcache" / "data"
DEFAULT_SHADOW_KEY_PREFIX = "ttl:"
DEFAULT_SWEEP_INTERVAL_SECONDS = 300


@dataclass(frozen=True)
class Settings:
    environment: str  # development, production, staging, test
    data_dir: Path
    database_url: str
    sql_echo: bool
    db_pool_size: int
    db_max_overflow: int
    db_pool_timeout: int
    db_pool_recycle: int
    redis_url: str
    fast_store_timeout: float
    shadow_key_prefix: str
    local_cache_size: int
    sweep_enabled: bool
    sweep_interval_seconds: int
    log_level: str
    log_json: bool
    log_file: str
    metrics_enabled: bool


def _get_int(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except (TypeError, ValueError):
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _get_float(name: str, default: float, *, minimum: Optional[float] = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw.strip())
    except (TypeError, ValueError):
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


load_env()


def _default_data_dir() -> Path:
    env_dir = os.getenv("DATA_DIR")
    if env_dir and env_dir.strip():
        return Path(env_dir).expanduser()
    return DEFAULT_DATA_DIR


def _normalize_database_url(url: str) -> str:
    """Force async drivers: the engine only ever talks to the database through asyncio."""
    if url.startswith("sqlite:"):
        return "sqlite+aiosqlite:" + url[len("sqlite:"):]
    if url.startswith("postgresql:"):
        return "postgresql+asyncpg:" + url[len("postgresql:"):]
    if url.startswith("postgres:"):
        return "postgresql+asyncpg:" + url[len("postgres:"):]
    return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    environment = os.getenv("ENVIRONMENT", "development").strip().lower()
    if environment not in {"development", "production", "staging", "test"}:
        environment = "development"

    data_dir = _default_data_dir()

    database_url = (os.getenv("DATABASE_URL") or "").strip()
    if not database_url:
        data_dir.mkdir(parents=True, exist_ok=True)
        database_url = f"sqlite+aiosqlite:///{data_dir / 'cache.db'}"
    database_url = _normalize_database_url(database_url)

    shadow_key_prefix = os.getenv("SHADOW_KEY_PREFIX", DEFAULT_SHADOW_KEY_PREFIX)
    if not shadow_key_prefix.strip():
        shadow_key_prefix = DEFAULT_SHADOW_KEY_PREFIX

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

    metrics_raw = os.getenv("METRICS_ENABLED")
    if metrics_raw is None:
        # Exposed by default everywhere except production.
        metrics_enabled = environment != "production"
    else:
        metrics_enabled = _get_bool("METRICS_ENABLED")

    return Settings(
        environment=environment,
        data_dir=data_dir,
        database_url=database_url,
        sql_echo=_get_bool("SQL_ECHO", default=False),
        db_pool_size=_get_int("DB_POOL_SIZE", 20, minimum=1),
        db_max_overflow=_get_int("DB_MAX_OVERFLOW", 10, minimum=0),
        db_pool_timeout=_get_int("DB_POOL_TIMEOUT", 30, minimum=1),
        db_pool_recycle=_get_int("DB_POOL_RECYCLE", 3600, minimum=60),
        redis_url=os.getenv("REDIS_URL", "").strip(),
        fast_store_timeout=_get_float("FAST_STORE_TIMEOUT", 0.25, minimum=0.001),
        shadow_key_prefix=shadow_key_prefix,
        local_cache_size=_get_int("LOCAL_CACHE_SIZE", 1024, minimum=0),
        sweep_enabled=_get_bool("SWEEP_ENABLED", default=True),
        sweep_interval_seconds=_get_int(
            "SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS, minimum=1
        ),
        log_level=log_level,
        log_json=_get_bool("LOG_JSON", default=False),
        log_file=os.getenv("LOG_FILE", "").strip(),
        metrics_enabled=metrics_enabled,
    )
