import os
import sys
import warnings
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from invsync.errors import StorageError
from invsync.models import Item, Location, Transaction, TransactionType
from invsync.store import COLLECTIONS, LocalStore, get_store


def _item(item_id="item-1", sku="SKU-001", quantity=5):
    return Item(
        id=item_id,
        sku=sku,
        name=f"Item {sku}",
        category="Tools",
        location_id="loc-1",
        quantity=quantity,
        min_stock=2,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_store_connects_lazily(store):
    assert not store.initialized

    assert store.read_all("items") == []
    assert store.initialized


def test_replace_all_swaps_collection_contents(store):
    first, second = _item(), _item("item-2", "SKU-002", 9)
    store.replace_all("items", [first, second])
    assert sorted(store.read_all("items"), key=lambda item: item.id) == [first, second]

    updated = replace(first, quantity=8)
    store.replace_all("items", [updated])

    assert store.read_all("items") == [updated]


def test_replace_all_stamps_rows_in_utc(store):
    store.initialize()

    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        store.replace_all("items", [_item()])

    table, _ = COLLECTIONS["items"]
    with store.initialize().connect() as conn:
        stored_at = conn.execute(select(table.c.stored_at)).scalar_one()
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    assert abs(stored_at.replace(tzinfo=None) - now) < timedelta(minutes=1)


def test_store_round_trips_locations_and_transactions(store):
    location = Location(id="loc-1", name="Main")
    transaction = Transaction(
        id="txn-1",
        item_id="item-1",
        type=TransactionType.OUTBOUND,
        quantity_change=-2,
        timestamp=datetime(2024, 2, 1, 9, 0, tzinfo=timezone.utc),
        notes="Order 55",
    )
    store.replace_all("locations", [location])
    store.replace_all("transactions", [transaction])

    assert store.read_all("locations") == [location]
    assert store.read_all("transactions") == [transaction]


def test_failed_replace_keeps_previous_contents(store):
    original = _item()
    store.replace_all("items", [original])

    with pytest.raises(StorageError):
        store.replace_all("items", [_item("dup", "SKU-A"), _item("dup", "SKU-B")])

    assert store.read_all("items") == [original]


def test_unknown_collection_is_rejected(store):
    with pytest.raises(ValueError, match="Unknown collection"):
        store.read_all("orders")


def test_find_item_by_sku(store):
    store.replace_all("items", [_item(), _item("item-2", "SKU-002")])

    assert store.find_item_by_sku("SKU-002").id == "item-2"
    assert store.find_item_by_sku("SKU-404") is None


def test_clear_empties_every_collection(store):
    store.replace_all("items", [_item()])
    store.replace_all("locations", [Location(id="loc-1", name="Main")])

    store.clear()

    assert store.read_all("items") == []
    assert store.read_all("locations") == []


def test_unusable_location_raises_storage_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    store = LocalStore(f"sqlite:///{blocker / 'cache.db'}")

    with pytest.raises(StorageError):
        store.read_all("items")
    assert not store.initialized


def test_in_memory_store_is_shared_across_connections():
    store = LocalStore("sqlite://")
    store.replace_all("items", [_item()])

    assert store.read_all("items") == [_item()]


def test_get_store_reuses_instances(tmp_path):
    url = f"sqlite:///{tmp_path / 'shared.db'}"

    assert get_store(url) is get_store(url)
