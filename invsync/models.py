"""Inventory records exchanged with the remote API and the local cache.

Records are frozen dataclasses: the ledger hands them out to views as-is, so
any change has to go through ``dataclasses.replace`` inside the ledger.
The remote API speaks camelCase JSON; ``from_dict``/``to_dict`` translate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from invsync.errors import ValidationFailed


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValidationFailed(f"Invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _require(payload: Mapping[str, Any], key: str, kind: str) -> Any:
    value = payload.get(key)
    if value is None or value == "":
        raise ValidationFailed(f"Malformed {kind} record: missing {key!r}")
    return value


def _as_int(value: Any, *, name: str, default: int = 0) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationFailed(f"{name} must be a whole number")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationFailed(f"{name} must be a whole number") from exc
    if isinstance(value, float) and value != number:
        raise ValidationFailed(f"{name} must be a whole number")
    return number


class TransactionType(str, Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"
    ADJUSTMENT = "ADJUSTMENT"

    @classmethod
    def parse(cls, value: Any) -> "TransactionType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError as exc:
            raise ValidationFailed(f"Unknown transaction type: {value!r}") from exc

    @property
    def label(self) -> str:
        return _TYPE_LABELS[self]

    @property
    def icon(self) -> str:
        return _TYPE_ICONS[self]

    def signed(self, quantity: int) -> int:
        """Apply the sign convention of this movement type to ``quantity``."""

        if self is TransactionType.INBOUND:
            return abs(quantity)
        if self is TransactionType.OUTBOUND:
            return -abs(quantity)
        if self is TransactionType.ADJUSTMENT:
            return quantity
        raise ValueError(f"Unhandled transaction type {self!r}")


_TYPE_LABELS = {
    TransactionType.INBOUND: "Inbound",
    TransactionType.OUTBOUND: "Outbound",
    TransactionType.ADJUSTMENT: "Adjustment",
}

_TYPE_ICONS = {
    TransactionType.INBOUND: "arrow-down-circle",
    TransactionType.OUTBOUND: "arrow-up-circle",
    TransactionType.ADJUSTMENT: "sliders",
}


@dataclass(frozen=True)
class User:
    id: str
    email: str
    name: str = ""
    created_at: datetime | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "User":
        return cls(
            id=str(_require(payload, "id", "user")),
            email=str(payload.get("email") or ""),
            name=str(payload.get("name") or ""),
            created_at=parse_timestamp(payload.get("createdAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "createdAt": format_timestamp(self.created_at),
        }


@dataclass(frozen=True)
class Item:
    id: str
    sku: str
    name: str
    category: str = ""
    location_id: str = ""
    quantity: int = 0
    min_stock: int = 0
    description: str = ""
    image_url: str = ""
    user_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Item":
        return cls(
            id=str(_require(payload, "id", "item")),
            sku=str(_require(payload, "sku", "item")),
            name=str(payload.get("name") or ""),
            category=str(payload.get("category") or ""),
            location_id=str(payload.get("locationId") or ""),
            quantity=_as_int(payload.get("quantity"), name="quantity"),
            min_stock=_as_int(payload.get("minStock"), name="minStock"),
            description=str(payload.get("description") or ""),
            image_url=str(payload.get("imageUrl") or ""),
            user_id=payload.get("userId"),
            created_at=parse_timestamp(payload.get("createdAt")),
            updated_at=parse_timestamp(payload.get("updatedAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "locationId": self.location_id,
            "quantity": self.quantity,
            "minStock": self.min_stock,
            "description": self.description,
            "imageUrl": self.image_url,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }


@dataclass(frozen=True)
class Location:
    id: str
    name: str
    description: str | None = None
    user_id: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Location":
        return cls(
            id=str(_require(payload, "id", "location")),
            name=str(payload.get("name") or ""),
            description=payload.get("description"),
            user_id=payload.get("userId"),
            created_at=parse_timestamp(payload.get("createdAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "name": self.name,
            "description": self.description,
            "createdAt": format_timestamp(self.created_at),
        }


@dataclass(frozen=True)
class Transaction:
    id: str
    item_id: str
    type: TransactionType
    quantity_change: int
    timestamp: datetime
    notes: str | None = None
    user_id: str | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Transaction":
        timestamp = parse_timestamp(_require(payload, "timestamp", "transaction"))
        return cls(
            id=str(_require(payload, "id", "transaction")),
            item_id=str(_require(payload, "itemId", "transaction")),
            type=TransactionType.parse(payload.get("type")),
            quantity_change=_as_int(payload.get("quantityChange"), name="quantityChange"),
            timestamp=timestamp,
            notes=payload.get("notes"),
            user_id=payload.get("userId"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "itemId": self.item_id,
            "type": self.type.value,
            "quantityChange": self.quantity_change,
            "notes": self.notes,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass(frozen=True)
class ItemDraft:
    """Form payload for creating or editing an item."""

    name: str
    sku: str
    category: str
    location_id: str
    quantity: int = 0
    min_stock: int = 10
    description: str = ""
    image_url: str = ""

    @classmethod
    def for_scanned_sku(cls, sku: str, *, location_id: str = "") -> "ItemDraft":
        return cls(
            name="",
            sku=sku,
            category="",
            location_id=location_id,
            image_url=f"https://picsum.photos/seed/{sku}/400/300",
        )

    @classmethod
    def from_item(cls, item: Item) -> "ItemDraft":
        return cls(
            name=item.name,
            sku=item.sku,
            category=item.category,
            location_id=item.location_id,
            quantity=item.quantity,
            min_stock=item.min_stock,
            description=item.description,
            image_url=item.image_url,
        )

    def missing_fields(self) -> list[str]:
        required = {
            "name": self.name,
            "sku": self.sku,
            "category": self.category,
            "location_id": self.location_id,
        }
        return [key for key, value in required.items() if not str(value or "").strip()]

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name.strip(),
            "sku": self.sku.strip(),
            "category": self.category.strip(),
            "locationId": self.location_id,
            "quantity": self.quantity,
            "minStock": self.min_stock,
            "description": self.description,
            "imageUrl": self.image_url,
        }


@dataclass(frozen=True)
class LocationDraft:
    name: str
    description: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name.strip()}
        if self.description is not None:
            payload["description"] = self.description
        return payload


@dataclass(frozen=True)
class InventorySnapshot:
    """A consistent view of every collection the ledger holds."""

    items: tuple[Item, ...] = ()
    locations: tuple[Location, ...] = ()
    transactions: tuple[Transaction, ...] = ()
    categories: tuple[str, ...] = field(default_factory=tuple)
