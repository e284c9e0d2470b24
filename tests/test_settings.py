import os
from pathlib import Path

import pytest

from kvcache.core.env import load_env
from kvcache.core.settings import get_settings


@pytest.fixture
def fresh_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults(fresh_settings, monkeypatch, tmp_path):
    for name in (
        "FAST_STORE_TIMEOUT",
        "SHADOW_KEY_PREFIX",
        "LOCAL_CACHE_SIZE",
        "SWEEP_INTERVAL_SECONDS",
        "LOG_JSON",
    ):
        monkeypatch.delenv(name, raising=False)
    settings = get_settings()

    assert settings.environment == "test"
    assert settings.database_url == f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}"
    assert settings.fast_store_timeout == 0.25
    assert settings.shadow_key_prefix == "ttl:"
    assert settings.local_cache_size == 1024
    assert settings.sweep_interval_seconds == 300
    assert settings.sweep_enabled is False
    assert settings.log_json is False


def test_malformed_numbers_fall_back_to_defaults(fresh_settings, monkeypatch):
    monkeypatch.setenv("SWEEP_INTERVAL_SECONDS", "soon")
    monkeypatch.setenv("DB_POOL_SIZE", "0")
    monkeypatch.setenv("FAST_STORE_TIMEOUT", "-1")

    settings = get_settings()

    assert settings.sweep_interval_seconds == 300
    assert settings.db_pool_size == 20
    assert settings.fast_store_timeout == 0.25


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("sqlite:///tmp/c.db", "sqlite+aiosqlite:///tmp/c.db"),
        ("postgresql://u:p@db/cache", "postgresql+asyncpg://u:p@db/cache"),
        ("postgres://u:p@db/cache", "postgresql+asyncpg://u:p@db/cache"),
        ("postgresql+asyncpg://u:p@db/cache", "postgresql+asyncpg://u:p@db/cache"),
    ],
)
def test_database_url_is_forced_to_async_driver(fresh_settings, monkeypatch, raw, expected):
    monkeypatch.setenv("DATABASE_URL", raw)

    assert get_settings().database_url == expected


def test_metrics_default_depends_on_environment(fresh_settings, monkeypatch):
    monkeypatch.delenv("METRICS_ENABLED", raising=False)
    monkeypatch.setenv("ENVIRONMENT", "production")
    assert get_settings().metrics_enabled is False

    get_settings.cache_clear()
    monkeypatch.setenv("ENVIRONMENT", "development")
    assert get_settings().metrics_enabled is True


def test_unknown_environment_means_development(fresh_settings, monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "moon")

    assert get_settings().environment == "development"


def test_blank_shadow_prefix_keeps_default(fresh_settings, monkeypatch):
    monkeypatch.setenv("SHADOW_KEY_PREFIX", "  ")

    assert get_settings().shadow_key_prefix == "ttl:"


def test_env_file_never_overrides_shell(monkeypatch, tmp_path: Path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\n"
        "export KVCACHE_TEST_FROM_FILE='quoted value'\n"
        "KVCACHE_TEST_SHELL=from-file\n"
        "not a pair\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("KVCACHE_TEST_SHELL", "from-shell")
    # Registered so teardown removes what load_env sets.
    monkeypatch.delenv("KVCACHE_TEST_FROM_FILE", raising=False)

    load_env(env_file)

    assert os.environ["KVCACHE_TEST_SHELL"] == "from-shell"
    assert os.environ["KVCACHE_TEST_FROM_FILE"] == "quoted value"


def test_missing_env_file_is_ignored(tmp_path: Path):
    load_env(tmp_path / "absent.env")
