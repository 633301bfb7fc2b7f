import os
import sys
from pathlib import Path

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from invsync.config import Config

ENV_KEYS = (
    "INVSYNC_API_URL",
    "INVSYNC_AUTH_MODE",
    "INVSYNC_API_TOKEN",
    "INVSYNC_REQUEST_TIMEOUT",
    "INVSYNC_CACHE_URL",
    "INVSYNC_LOG_PATH",
    "INVSYNC_LOG_LEVEL",
    "INVSYNC_TRANSACTION_RETENTION",
    "INVSYNC_NEGATIVE_STOCK",
    "INVSYNC_REARM_DELAY",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    config = Config.from_env()

    assert config.api_base_url == "http://localhost:8000/api"
    assert config.auth_mode == "cookie"
    assert config.api_token is None
    assert config.request_timeout_sec == 10
    assert config.cache_url.endswith("cache.db")
    assert config.log_path is None
    assert config.transaction_retention == "hide"
    assert config.negative_stock == "allow"
    assert config.rearm_delay_sec == 0.5


def test_environment_overrides(clean_env):
    clean_env.setenv("INVSYNC_AUTH_MODE", "Bearer")
    clean_env.setenv("INVSYNC_API_TOKEN", "abc")
    clean_env.setenv("INVSYNC_LOG_PATH", "/tmp/invsync/app.log")
    clean_env.setenv("INVSYNC_NEGATIVE_STOCK", "CLAMP")
    clean_env.setenv("INVSYNC_REARM_DELAY", "0")

    config = Config.from_env()

    assert config.auth_mode == "bearer"
    assert config.api_token == "abc"
    assert config.log_path == Path("/tmp/invsync/app.log")
    assert config.negative_stock == "clamp"
    assert config.rearm_delay_sec == 0


def test_keyword_overrides_win(clean_env):
    clean_env.setenv("INVSYNC_API_URL", "http://env/api")

    config = Config.from_env(api_base_url="http://override/api")

    assert config.api_base_url == "http://override/api"


@pytest.mark.parametrize(
    "key, value",
    [
        ("INVSYNC_AUTH_MODE", "oauth"),
        ("INVSYNC_TRANSACTION_RETENTION", "archive"),
        ("INVSYNC_NEGATIVE_STOCK", "never"),
        ("INVSYNC_REQUEST_TIMEOUT", "0"),
        ("INVSYNC_REARM_DELAY", "-1"),
    ],
)
def test_invalid_values_are_rejected(clean_env, key, value):
    clean_env.setenv(key, value)

    with pytest.raises(ValueError):
        Config.from_env()
