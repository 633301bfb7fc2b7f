"""In-memory authority over items, locations, categories and transactions.

Every mutation waits for the remote API before touching memory, so readers
only ever see the state before or after a change. Settled state is mirrored
into the local cache; cache failures are logged and otherwise ignored.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from invsync.auth import SessionContext
from invsync.errors import (
    Conflict,
    InconsistentState,
    InventoryError,
    NotFound,
    StorageError,
    Unauthenticated,
    ValidationFailed,
)
from invsync.models import (
    InventorySnapshot,
    Item,
    ItemDraft,
    Location,
    LocationDraft,
    Transaction,
    TransactionType,
    utcnow,
)
from invsync.remote import RemoteInventoryClient
from invsync.store import LocalStore
from invsync.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)

T = TypeVar("T")

ITEM_NOT_FOUND_MESSAGE = "Item not found. Do you want to add this item?"

Confirm = Callable[[Any], "bool | Awaitable[bool]"]


class AdjustmentStatus(str, Enum):
    APPLIED = "applied"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    FAILED = "failed"
    INCONSISTENT = "inconsistent"


@dataclass(frozen=True)
class AdjustmentResult:
    status: AdjustmentStatus
    sku: str
    item: Item | None = None
    transaction: Transaction | None = None
    error: InventoryError | None = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is AdjustmentStatus.APPLIED

    def __bool__(self) -> bool:
        return self.succeeded


def _whole_number(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailed(f"{name} must be a whole number.")
    return value


class StockLedger:
    def __init__(
        self,
        session: SessionContext,
        remote: RemoteInventoryClient,
        store: LocalStore | None = None,
        *,
        transaction_retention: str = "hide",
        negative_stock: str = "allow",
    ) -> None:
        self.session = session
        self.remote = remote
        self.store = store
        self.transaction_retention = transaction_retention
        self.negative_stock = negative_stock

        self._items: dict[str, Item] = {}
        self._locations: dict[str, Location] = {}
        self._transactions: list[Transaction] = []
        self._extra_categories: set[str] = set()
        self._opening: dict[str, int] = {}

        self._item_locks = KeyedLock()
        self._category_lock = asyncio.Lock()

        self.needs_reload = False
        self.loaded_at: datetime | None = None

    # -- read-only projections -----------------------------------------------

    @property
    def items(self) -> tuple[Item, ...]:
        return tuple(self._items.values())

    @property
    def locations(self) -> tuple[Location, ...]:
        return tuple(self._locations.values())

    @property
    def transactions(self) -> tuple[Transaction, ...]:
        """Transactions of live items, newest first."""

        return tuple(t for t in self._transactions if t.item_id in self._items)

    @property
    def categories(self) -> tuple[str, ...]:
        derived = {item.category for item in self._items.values() if item.category}
        return tuple(sorted(derived | self._extra_categories))

    def snapshot(self) -> InventorySnapshot:
        return InventorySnapshot(
            items=self.items,
            locations=self.locations,
            transactions=self.transactions,
            categories=self.categories,
        )

    def get_item(self, item_id: str) -> Item | None:
        return self._items.get(item_id)

    def get_location(self, location_id: str) -> Location | None:
        return self._locations.get(location_id)

    def find_by_sku(self, sku: str) -> Item | None:
        sku = (sku or "").strip()
        if not sku:
            return None
        for item in self._items.values():
            if item.sku == sku:
                return item
        return None

    def history(self, item_id: str) -> tuple[Transaction, ...]:
        if item_id not in self._items:
            return ()
        return tuple(t for t in self._transactions if t.item_id == item_id)

    def opening_quantity(self, item_id: str) -> int:
        """Quantity the item had before any of its recorded transactions."""

        item = self._items.get(item_id)
        if item is None:
            raise NotFound("Item not found.")
        if item_id in self._opening:
            return self._opening[item_id]
        return item.quantity - sum(t.quantity_change for t in self.history(item_id))

    def check_balance(self, item_id: str) -> bool:
        item = self._items.get(item_id)
        if item is None:
            raise NotFound("Item not found.")
        balance = self.opening_quantity(item_id)
        for transaction in sorted(self.history(item_id), key=lambda t: t.timestamp):
            balance += transaction.quantity_change
        return balance == item.quantity

    # -- loading -------------------------------------------------------------

    async def load_all(self) -> InventorySnapshot:
        self.session.ensure_active()
        results = await asyncio.gather(
            self.remote.list_items(),
            self.remote.list_locations(),
            self.remote.list_transactions(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                if isinstance(result, Unauthenticated):
                    self.session.expire(result.message)
                logger.warning("Inventory load failed: %s", result)
                raise result
        items, locations, transactions = results

        self._items = {item.id: item for item in items}
        self._locations = {location.id: location for location in locations}
        self._transactions = sorted(transactions, key=lambda t: t.timestamp, reverse=True)
        self._record_openings()
        self.needs_reload = False
        self.loaded_at = utcnow()
        logger.info(
            "Loaded %d items, %d locations, %d transactions",
            len(self._items),
            len(self._locations),
            len(self._transactions),
        )
        self._mirror("items", "locations", "transactions")
        return self.snapshot()

    def restore_from_cache(self) -> bool:
        """Fill memory from the local cache; returns whether anything was found."""

        if self.store is None:
            return False
        try:
            items = self.store.read_all("items")
            locations = self.store.read_all("locations")
            transactions = self.store.read_all("transactions")
        except StorageError as exc:
            logger.warning("Could not restore from local cache: %s", exc.message)
            return False
        if not (items or locations or transactions):
            return False
        self._items = {item.id: item for item in items}
        self._locations = {location.id: location for location in locations}
        self._transactions = sorted(transactions, key=lambda t: t.timestamp, reverse=True)
        self._record_openings()
        logger.info("Restored %d items from local cache", len(self._items))
        return True

    def _record_openings(self) -> None:
        """Pin each item's opening quantity against its history as loaded."""

        changes: dict[str, int] = {}
        for transaction in self._transactions:
            changes[transaction.item_id] = (
                changes.get(transaction.item_id, 0) + transaction.quantity_change
            )
        self._opening = {
            item_id: item.quantity - changes.get(item_id, 0)
            for item_id, item in self._items.items()
        }

    # -- items ---------------------------------------------------------------

    async def create_item(self, draft: ItemDraft) -> Item:
        self.session.ensure_active()
        self._validate_item_draft(draft)
        if draft.quantity < 0:
            raise ValidationFailed("Quantity cannot be negative.")
        sku = draft.sku.strip()
        async with self._item_locks.hold(("sku", sku)):
            if self.find_by_sku(sku) is not None:
                raise Conflict(f"An item with SKU {sku} already exists.")
            item = await self._call(self.remote.create_item(draft))
            self._items[item.id] = item
            self._opening[item.id] = item.quantity
        logger.info("Created item %s (%s)", item.sku, item.id)
        self._mirror("items")
        return item

    async def update_item(self, item_id: str, draft: ItemDraft) -> Item:
        """Save an edited item.

        A changed quantity is recorded as an ADJUSTMENT so the item's history
        still adds up to its stock level.
        """

        self.session.ensure_active()
        self._validate_item_draft(draft)
        if draft.quantity < 0:
            raise ValidationFailed("Quantity cannot be negative.")
        async with self._item_locks.hold(item_id):
            current = self._items.get(item_id)
            if current is None:
                raise NotFound("Item not found.")
            clash = self.find_by_sku(draft.sku)
            if clash is not None and clash.id != item_id:
                raise Conflict(f"An item with SKU {draft.sku.strip()} already exists.")

            fields = draft.to_payload()
            change = draft.quantity - current.quantity
            if not change:
                fields.pop("quantity")
                updated = await self._call(self.remote.update_item(item_id, fields))
                self._items[item_id] = updated
            else:
                updated, transaction = await self._write_with_audit(
                    current,
                    fields,
                    change,
                    TransactionType.ADJUSTMENT,
                    "Quantity edited",
                )
                self._items[item_id] = updated
                self._transactions.insert(0, transaction)
        logger.info("Updated item %s", updated.sku)
        self._mirror("items", "transactions")
        return updated

    async def delete_item(self, item_id: str, confirm: Confirm | None = None) -> bool:
        self.session.ensure_active()
        async with self._item_locks.hold(item_id):
            item = self._items.get(item_id)
            if item is None:
                raise NotFound("Item not found.")
            if not await _confirmed(confirm, item):
                logger.info("Deletion of %s cancelled", item.sku)
                return False
            purge = self.transaction_retention == "purge"
            await self._call(self.remote.delete_item(item_id, purge_transactions=purge))
            del self._items[item_id]
            self._opening.pop(item_id, None)
            self._transactions = [t for t in self._transactions if t.item_id != item_id]
        logger.info("Deleted item %s (transactions %s)", item.sku, "purged" if purge else "hidden")
        self._mirror("items", "transactions")
        return True

    async def adjust_stock(
        self,
        sku: str,
        quantity_change: int,
        transaction_type: TransactionType | str,
        notes: str | None = None,
    ) -> AdjustmentResult:
        transaction_type = TransactionType.parse(transaction_type)
        change = _whole_number(quantity_change, "Quantity change")
        if not change:
            raise ValidationFailed("Quantity change cannot be zero.")
        if transaction_type.signed(change) != change:
            raise ValidationFailed(
                f"{transaction_type.label} movements cannot have a change of {change:+d}."
            )
        sku = (sku or "").strip()
        if not sku:
            raise ValidationFailed("SKU is required.")
        self.session.ensure_active()

        item = self.find_by_sku(sku)
        if item is None:
            logger.info("No item with SKU %s", sku)
            return AdjustmentResult(AdjustmentStatus.NOT_FOUND, sku, message=ITEM_NOT_FOUND_MESSAGE)

        async with self._item_locks.hold(item.id):
            # The SKU may have been edited away while waiting for the lock.
            current = self._items.get(item.id)
            if current is None or current.sku != sku:
                return AdjustmentResult(
                    AdjustmentStatus.NOT_FOUND, sku, message=ITEM_NOT_FOUND_MESSAGE
                )

            new_quantity = current.quantity + change
            if new_quantity < 0 and self.negative_stock != "allow":
                if self.negative_stock == "reject" or current.quantity <= 0:
                    return AdjustmentResult(
                        AdjustmentStatus.REJECTED,
                        sku,
                        item=current,
                        message=f"Not enough stock for {sku}. Available {current.quantity}.",
                    )
                change = -current.quantity
                new_quantity = 0

            try:
                updated, transaction = await self._write_with_audit(
                    current, {"quantity": new_quantity}, change, transaction_type, notes
                )
            except InconsistentState as exc:
                return AdjustmentResult(
                    AdjustmentStatus.INCONSISTENT, sku, item=current, error=exc, message=exc.message
                )
            except InventoryError as exc:
                return AdjustmentResult(
                    AdjustmentStatus.FAILED, sku, item=current, error=exc, message=exc.message
                )

            self._items[updated.id] = updated
            self._transactions.insert(0, transaction)

        logger.info("Stock %s %+d -> %d", sku, change, updated.quantity)
        self._mirror("items", "transactions")
        return AdjustmentResult(
            AdjustmentStatus.APPLIED,
            sku,
            item=updated,
            transaction=transaction,
            message=f"Stock updated! SKU: {sku}, Change: {change:+d}",
        )

    async def _write_with_audit(
        self,
        current: Item,
        fields: dict[str, Any],
        change: int,
        transaction_type: TransactionType,
        notes: str | None,
    ) -> tuple[Item, Transaction]:
        """Write the item and its transaction as one unit.

        If the transaction cannot be recorded the item write is reverted; if
        the revert fails too the ledger is flagged for reload and
        :class:`InconsistentState` is raised.
        """

        updated = await self._call(self.remote.update_item(current.id, fields))
        try:
            transaction = await self._call(
                self.remote.create_transaction(
                    item_id=current.id,
                    transaction_type=transaction_type,
                    quantity_change=change,
                    notes=notes,
                    timestamp=utcnow(),
                )
            )
        except InventoryError as exc:
            await self._revert_item(current, fields, exc)
            raise
        return updated, transaction

    async def _revert_item(
        self, previous: Item, fields: dict[str, Any], cause: InventoryError
    ) -> None:
        before = previous.to_dict()
        revert = {key: before[key] for key in fields if key in before}
        try:
            await self._call(self.remote.update_item(previous.id, revert))
        except InventoryError as exc:
            self.needs_reload = True
            logger.error(
                "Item %s changed on the server without a transaction (%s); revert failed: %s",
                previous.sku,
                cause.message,
                exc.message,
            )
            raise InconsistentState() from cause
        logger.warning("Reverted item %s after failed transaction: %s", previous.sku, cause.message)

    # -- locations -----------------------------------------------------------

    async def create_location(self, draft: LocationDraft) -> Location:
        self.session.ensure_active()
        _validate_location_draft(draft)
        location = await self._call(self.remote.create_location(draft))
        self._locations[location.id] = location
        logger.info("Created location %s", location.name)
        self._mirror("locations")
        return location

    async def update_location(self, location_id: str, draft: LocationDraft) -> Location:
        self.session.ensure_active()
        _validate_location_draft(draft)
        if location_id not in self._locations:
            raise NotFound("Location not found.")
        location = await self._call(self.remote.update_location(location_id, draft.to_payload()))
        self._locations[location.id] = location
        self._mirror("locations")
        return location

    async def delete_location(self, location_id: str, confirm: Confirm | None = None) -> bool:
        self.session.ensure_active()
        location = self._locations.get(location_id)
        if location is None:
            raise NotFound("Location not found.")
        in_use = [item for item in self._items.values() if item.location_id == location_id]
        if in_use:
            raise Conflict(f"Location still has items ({len(in_use)}).")
        if not await _confirmed(confirm, location):
            return False
        await self._call(self.remote.delete_location(location_id))
        self._locations.pop(location_id, None)
        logger.info("Deleted location %s", location.name)
        self._mirror("locations")
        return True

    # -- categories ----------------------------------------------------------

    def add_category(self, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Category name is required.")
        if name in self.categories:
            raise Conflict(f"Category {name} already exists.")
        self._extra_categories.add(name)
        return name

    async def rename_category(self, old_name: str, new_name: str) -> int:
        """Rename a category on every item carrying it; returns the item count."""

        self.session.ensure_active()
        new_name = (new_name or "").strip()
        if not new_name:
            raise ValidationFailed("Category name is required.")
        async with self._category_lock:
            categories = self.categories
            if old_name not in categories:
                raise NotFound(f"Category {old_name} not found.")
            if new_name in categories:
                raise Conflict(f"Category {new_name} already exists.")

            tagged = [item.id for item in self._items.values() if item.category == old_name]
            try:
                await self._call(self.remote.rename_category(old_name, new_name))
            except NotFound:
                if tagged:
                    raise
                logger.debug("Category %s only existed locally", old_name)

            # Items may have moved stock during the remote call; rewrite the live records.
            for item_id in tagged:
                live = self._items.get(item_id)
                if live is not None and live.category == old_name:
                    self._items[item_id] = replace(live, category=new_name)
            if old_name in self._extra_categories:
                self._extra_categories.discard(old_name)
                self._extra_categories.add(new_name)
        logger.info("Renamed category %s -> %s on %d items", old_name, new_name, len(tagged))
        if tagged:
            self._mirror("items")
        return len(tagged)

    async def delete_category(self, name: str) -> None:
        self.session.ensure_active()
        async with self._category_lock:
            if name not in self.categories:
                raise NotFound(f"Category {name} not found.")
            in_use = sum(1 for item in self._items.values() if item.category == name)
            if in_use:
                raise Conflict(f"Category {name} is still used by {in_use} item(s).")
            try:
                await self._call(self.remote.delete_category(name))
            except NotFound:
                logger.debug("Category %s only existed locally", name)
            self._extra_categories.discard(name)
        logger.info("Deleted category %s", name)

    async def refresh_categories(self) -> tuple[str, ...]:
        self.session.ensure_active()
        names = await self._call(self.remote.list_categories())
        self._extra_categories.update(name.strip() for name in names if name.strip())
        return self.categories

    # -- lifecycle -----------------------------------------------------------

    def teardown(self) -> None:
        self._items = {}
        self._locations = {}
        self._transactions = []
        self._extra_categories = set()
        self._opening = {}
        self.loaded_at = None
        if self.store is None:
            return
        try:
            self.store.clear()
        except StorageError as exc:
            logger.warning("Could not clear local cache: %s", exc.message)

    # -- helpers -------------------------------------------------------------

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except Unauthenticated as exc:
            self.session.expire(exc.message)
            raise

    def _mirror(self, *collections: str) -> None:
        if self.store is None:
            return
        sources: dict[str, Iterable[Any]] = {
            "items": self._items.values(),
            "locations": self._locations.values(),
            "transactions": self._transactions,
        }
        for name in collections:
            try:
                self.store.replace_all(name, list(sources[name]))
            except StorageError as exc:
                logger.warning("Local cache not updated (%s): %s", name, exc.message)

    def _validate_item_draft(self, draft: ItemDraft) -> None:
        missing = draft.missing_fields()
        if missing:
            raise ValidationFailed(
                f"Please fill in all required fields: {', '.join(missing)}."
            )
        _whole_number(draft.quantity, "Quantity")
        _whole_number(draft.min_stock, "Minimum stock")
        if draft.min_stock < 0:
            raise ValidationFailed("Minimum stock cannot be negative.")


def _validate_location_draft(draft: LocationDraft) -> None:
    if not (draft.name or "").strip():
        raise ValidationFailed("Location name is required.")


async def _confirmed(confirm: Confirm | None, record: Any) -> bool:
    if confirm is None:
        return True
    answer = confirm(record)
    if inspect.isawaitable(answer):
        answer = await answer
    return bool(answer)
