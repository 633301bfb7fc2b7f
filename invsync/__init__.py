"""Stock ledger and sync engine for a small-business inventory app."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from invsync.auth import AuthManager, SessionContext
from invsync.config import Config
from invsync.errors import NetworkUnavailable
from invsync.ledger import StockLedger
from invsync.remote import RemoteInventoryClient
from invsync.scanner import ScanCapture, ScanWorkflow
from invsync.store import LocalStore, get_store

__version__ = "0.3.0"

logger = logging.getLogger(__name__)


@dataclass
class InventoryApp:
    """Wires the remote client, local cache and ledger for one process.

    A ledger exists only while a session is open; ``logout`` tears both
    down and clears the local cache.
    """

    config: Config
    remote: RemoteInventoryClient
    store: LocalStore
    auth: AuthManager
    session: SessionContext | None = None
    ledger: StockLedger | None = None

    async def login(self, email: str, password: str) -> StockLedger:
        session = await self.auth.login(email, password)
        return await self._open(session)

    async def register(self, email: str, password: str, name: str) -> StockLedger:
        session = await self.auth.register(email, password, name)
        return await self._open(session)

    async def resume(self) -> StockLedger | None:
        session = await self.auth.resume()
        if session is None:
            return None
        return await self._open(session)

    async def _open(self, session: SessionContext) -> StockLedger:
        ledger = StockLedger(
            session,
            self.remote,
            self.store,
            transaction_retention=self.config.transaction_retention,
            negative_stock=self.config.negative_stock,
        )
        self.session = session
        self.ledger = ledger
        try:
            await ledger.load_all()
        except NetworkUnavailable:
            if not ledger.restore_from_cache():
                raise
            logger.warning("Inventory server unreachable; showing cached inventory")
        return ledger

    def scanner(self, capture: ScanCapture, **kwargs: Any) -> ScanWorkflow:
        if self.ledger is None:
            raise RuntimeError("Log in before starting the scanner.")
        kwargs.setdefault("rearm_delay", self.config.rearm_delay_sec)
        return ScanWorkflow(self.ledger, capture, **kwargs)

    async def logout(self) -> None:
        if self.session is not None:
            await self.auth.logout(self.session)
        if self.ledger is not None:
            self.ledger.teardown()
        self.session = None
        self.ledger = None

    async def close(self) -> None:
        await self.remote.aclose()


def create_app(
    config: Config | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    store_factory: Callable[[str], LocalStore] = get_store,
) -> InventoryApp:
    if config is None:
        config = Config.from_env()
    remote = RemoteInventoryClient.from_config(config, transport=transport)
    return InventoryApp(
        config=config,
        remote=remote,
        store=store_factory(config.cache_url),
        auth=AuthManager(remote),
    )


__all__ = ["InventoryApp", "create_app", "__version__"]
