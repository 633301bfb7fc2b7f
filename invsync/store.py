"""SQLite-backed shadow copy of the ledger's collections."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Iterable

from sqlalchemy import JSON, Column, DateTime, MetaData, String, Table, create_engine, delete, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from invsync.errors import StorageError
from invsync.models import Item, Location, Transaction, utcnow

logger = logging.getLogger(__name__)

metadata = MetaData()


def _collection_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", String, primary_key=True),
        Column("payload", JSON, nullable=False),
        Column("stored_at", DateTime(timezone=True), nullable=False, default=utcnow),
    )


COLLECTIONS: dict[str, tuple[Table, Callable[[dict[str, Any]], Any]]] = {
    "items": (_collection_table("items"), Item.from_dict),
    "locations": (_collection_table("locations"), Location.from_dict),
    "transactions": (_collection_table("transactions"), Transaction.from_dict),
}


def _collection(name: str) -> tuple[Table, Callable[[dict[str, Any]], Any]]:
    try:
        return COLLECTIONS[name]
    except KeyError:
        raise ValueError(
            f"Unknown collection {name!r}; expected one of {', '.join(COLLECTIONS)}"
        ) from None


class LocalStore:
    """Durable cache of items, locations and transactions.

    The engine is created on first use and reused afterwards. Every failure of
    the underlying database is reported as :class:`StorageError`; the store is
    a cache, so callers are expected to log and carry on.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self._engine: Engine | None = None
        self._init_lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._engine is not None

    def initialize(self) -> Engine:
        if self._engine is not None:
            return self._engine
        with self._init_lock:
            if self._engine is None:
                try:
                    engine = self._create_engine()
                    metadata.create_all(engine)
                except (SQLAlchemyError, ArgumentError, OSError) as exc:
                    raise StorageError(f"Local cache unavailable: {exc}") from exc
                self._engine = engine
                logger.info("Local cache ready at %s", self.url)
        return self._engine

    def replace_all(self, collection: str, records: Iterable[Any]) -> None:
        table, _ = _collection(collection)
        now = utcnow()
        rows = [
            {"id": record.id, "payload": record.to_dict(), "stored_at": now}
            for record in records
        ]
        engine = self.initialize()
        try:
            with engine.begin() as conn:
                conn.execute(delete(table))
                if rows:
                    conn.execute(insert(table), rows)
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not save {collection} to the local cache: {exc}") from exc
        logger.debug("Mirrored %d %s to local cache", len(rows), collection)

    def read_all(self, collection: str) -> list[Any]:
        table, factory = _collection(collection)
        engine = self.initialize()
        try:
            with engine.connect() as conn:
                payloads = conn.execute(select(table.c.payload)).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not read {collection} from the local cache: {exc}") from exc
        return [factory(payload) for payload in payloads]

    def find_item_by_sku(self, sku: str) -> Item | None:
        for item in self.read_all("items"):
            if item.sku == sku:
                return item
        return None

    def clear(self) -> None:
        engine = self.initialize()
        try:
            with engine.begin() as conn:
                for table, _ in COLLECTIONS.values():
                    conn.execute(delete(table))
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not clear the local cache: {exc}") from exc

    def _create_engine(self) -> Engine:
        url = make_url(self.url)
        if url.get_backend_name() == "sqlite":
            database = url.database or ""
            if not database or database == ":memory:":
                return create_engine(
                    self.url,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            Path(database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(self.url)


_STORES: dict[str, LocalStore] = {}
_STORES_LOCK = threading.Lock()


def get_store(url: str) -> LocalStore:
    """Return the process-wide store for ``url``, creating it on first use."""

    with _STORES_LOCK:
        store = _STORES.get(url)
        if store is None:
            store = LocalStore(url)
            _STORES[url] = store
        return store
