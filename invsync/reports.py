"""Read-only projections for the dashboard, inventory list and reports."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Sequence

from invsync.models import Item, Transaction, TransactionType

UNKNOWN_ITEM = "N/A"

TRANSACTION_REPORT_COLUMNS = (
    ("timestamp", "Date"),
    ("item_name", "Item"),
    ("sku", "SKU"),
    ("type", "Type"),
    ("quantity_change", "Change"),
    ("notes", "Notes"),
)

LOW_STOCK_COLUMNS = (
    ("sku", "SKU"),
    ("name", "Item"),
    ("category", "Category"),
    ("quantity", "Quantity"),
    ("min_stock", "Min Stock"),
)


class StockStatus(str, Enum):
    OUT_OF_STOCK = "out_of_stock"
    LOW = "low"
    MEDIUM = "medium"
    IN_STOCK = "in_stock"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @property
    def priority(self) -> int:
        """Lower sorts first; out-of-stock items are the most urgent."""

        return _STATUS_PRIORITY[self]


_STATUS_LABELS = {
    StockStatus.OUT_OF_STOCK: "Out of Stock",
    StockStatus.LOW: "Low Stock",
    StockStatus.MEDIUM: "Medium",
    StockStatus.IN_STOCK: "In Stock",
}

_STATUS_PRIORITY = {
    StockStatus.OUT_OF_STOCK: 0,
    StockStatus.LOW: 1,
    StockStatus.MEDIUM: 2,
    StockStatus.IN_STOCK: 3,
}


def stock_status(item: Item) -> StockStatus:
    if item.quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if item.quantity <= item.min_stock:
        return StockStatus.LOW
    if item.quantity <= item.min_stock * 2:
        return StockStatus.MEDIUM
    return StockStatus.IN_STOCK


def is_low_stock(item: Item) -> bool:
    return item.quantity <= item.min_stock


@dataclass(frozen=True)
class DailyMovement:
    day: date
    inbound: int
    outbound: int


@dataclass(frozen=True)
class DashboardSummary:
    total_items: int
    total_stock: int
    low_stock_count: int
    low_stock_items: tuple[Item, ...]
    movements: tuple[DailyMovement, ...]


def dashboard_summary(
    items: Sequence[Item],
    transactions: Iterable[Transaction],
    today: date | None = None,
    *,
    days: int = 7,
) -> DashboardSummary:
    """Totals plus daily inbound/outbound sums for the last ``days`` days.

    Outbound is reported as a positive amount. Adjustments count towards
    neither series.
    """

    if today is None:
        today = datetime.now(timezone.utc).date()
    window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    inbound = {day: 0 for day in window}
    outbound = {day: 0 for day in window}
    for transaction in transactions:
        day = transaction.timestamp.date()
        if day not in inbound:
            continue
        if transaction.type is TransactionType.INBOUND:
            inbound[day] += transaction.quantity_change
        elif transaction.type is TransactionType.OUTBOUND:
            outbound[day] += abs(transaction.quantity_change)

    low = tuple(
        sorted(
            (item for item in items if is_low_stock(item)),
            key=lambda item: (stock_status(item).priority, item.quantity, item.sku),
        )
    )
    return DashboardSummary(
        total_items=len(items),
        total_stock=sum(item.quantity for item in items),
        low_stock_count=len(low),
        low_stock_items=low,
        movements=tuple(DailyMovement(day, inbound[day], outbound[day]) for day in window),
    )


def search_items(
    items: Iterable[Item],
    term: str = "",
    category: str | None = None,
    location_id: str | None = None,
) -> list[Item]:
    needle = (term or "").strip().lower()
    matches = []
    for item in items:
        if needle and needle not in item.name.lower() and needle not in item.sku.lower():
            continue
        if category and item.category != category:
            continue
        if location_id and item.location_id != location_id:
            continue
        matches.append(item)
    return matches


def filter_transactions(
    transactions: Iterable[Transaction],
    transaction_type: TransactionType | str | None = None,
    item_id: str | None = None,
) -> list[Transaction]:
    wanted = TransactionType.parse(transaction_type) if transaction_type else None
    selected = [
        transaction
        for transaction in transactions
        if (wanted is None or transaction.type is wanted)
        and (not item_id or transaction.item_id == item_id)
    ]
    selected.sort(key=lambda transaction: transaction.timestamp, reverse=True)
    return selected


def transaction_report_rows(
    transactions: Iterable[Transaction],
    items: Iterable[Item],
) -> list[dict[str, object]]:
    by_id = {item.id: item for item in items}
    rows = []
    for transaction in transactions:
        item = by_id.get(transaction.item_id)
        rows.append(
            {
                "id": transaction.id,
                "timestamp": transaction.timestamp,
                "item_id": transaction.item_id,
                "item_name": item.name if item else UNKNOWN_ITEM,
                "sku": item.sku if item else UNKNOWN_ITEM,
                "type": transaction.type.label,
                "quantity_change": transaction.quantity_change,
                "notes": transaction.notes or "",
            }
        )
    return rows
