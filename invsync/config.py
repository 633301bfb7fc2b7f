"""Configuration for the inventory sync engine."""
from __future__ import annotations

from dataclasses import dataclass, replace
import os
from pathlib import Path
from typing import Any

AUTH_MODES = ("cookie", "bearer")
TRANSACTION_RETENTION_POLICIES = ("hide", "purge")
NEGATIVE_STOCK_POLICIES = ("allow", "reject", "clamp")


@dataclass(frozen=True)
class Config:
    api_base_url: str
    auth_mode: str
    api_token: str | None
    request_timeout_sec: float
    cache_url: str
    log_path: Path | None
    log_level: str
    transaction_retention: str
    negative_stock: str
    rearm_delay_sec: float

    @classmethod
    def from_env(cls, **overrides: Any) -> "Config":
        config = cls(
            api_base_url=os.getenv("INVSYNC_API_URL", "http://localhost:8000/api"),
            auth_mode=os.getenv("INVSYNC_AUTH_MODE", "cookie").lower(),
            api_token=os.getenv("INVSYNC_API_TOKEN") or None,
            request_timeout_sec=float(os.getenv("INVSYNC_REQUEST_TIMEOUT", "10")),
            cache_url=os.getenv("INVSYNC_CACHE_URL", _default_cache_url()),
            log_path=_optional_path(os.getenv("INVSYNC_LOG_PATH")),
            log_level=os.getenv("INVSYNC_LOG_LEVEL", "INFO").upper(),
            transaction_retention=os.getenv("INVSYNC_TRANSACTION_RETENTION", "hide").lower(),
            negative_stock=os.getenv("INVSYNC_NEGATIVE_STOCK", "allow").lower(),
            rearm_delay_sec=float(os.getenv("INVSYNC_REARM_DELAY", "0.5")),
        )
        if overrides:
            config = replace(config, **overrides)
        config.validate()
        return config

    def validate(self) -> None:
        _check_choice("auth_mode", self.auth_mode, AUTH_MODES)
        _check_choice(
            "transaction_retention",
            self.transaction_retention,
            TRANSACTION_RETENTION_POLICIES,
        )
        _check_choice("negative_stock", self.negative_stock, NEGATIVE_STOCK_POLICIES)
        if self.request_timeout_sec <= 0:
            raise ValueError("request_timeout_sec must be positive")
        if self.rearm_delay_sec < 0:
            raise ValueError("rearm_delay_sec cannot be negative")


def _check_choice(name: str, value: str, choices: tuple[str, ...]) -> None:
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)} (got {value!r})")


def _default_cache_url() -> str:
    return f"sqlite:///{Path.home() / '.invsync' / 'cache.db'}"


def _optional_path(raw: str | None) -> Path | None:
    if not raw:
        return None
    return Path(raw)
