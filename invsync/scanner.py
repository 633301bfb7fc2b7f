"""Scanner-driven stock movements.

The workflow consumes decoded payloads from a capture device (camera decoder,
keyboard-wedge scanner, ...) and turns them into ledger adjustments. The
capture is paused while a scanned SKU waits for its quantity or is being
committed, so a frame still in view cannot trigger a second movement.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Protocol

from invsync.errors import InventoryError, Unauthenticated
from invsync.ledger import AdjustmentResult, AdjustmentStatus, StockLedger
from invsync.models import Item, ItemDraft, TransactionType

logger = logging.getLogger(__name__)


class ScanMode(str, Enum):
    INBOUND = "Inbound"
    OUTBOUND = "Outbound"
    LOOKUP = "Lookup"

    @property
    def transaction_type(self) -> TransactionType | None:
        return _MODE_TYPES[self]


_MODE_TYPES = {
    ScanMode.INBOUND: TransactionType.INBOUND,
    ScanMode.OUTBOUND: TransactionType.OUTBOUND,
    ScanMode.LOOKUP: None,
}


class ScanState(str, Enum):
    AWAITING_SCAN = "awaiting_scan"
    DECODING = "decoding"
    AWAITING_QUANTITY = "awaiting_quantity"
    COMMITTING = "committing"
    NEEDS_ITEM_CREATION = "needs_item_creation"
    HANDED_OFF = "handed_off"
    SESSION_EXPIRED = "session_expired"


class Resolution(str, Enum):
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class ScanMessage:
    text: str
    level: str = "info"


class ScanCapture(Protocol):
    def arm(self) -> None:
        ...

    def pause(self) -> None:
        ...


class ScanWorkflow:
    def __init__(
        self,
        ledger: StockLedger,
        capture: ScanCapture,
        *,
        mode: ScanMode = ScanMode.LOOKUP,
        on_create_item: Callable[[ItemDraft], None] | None = None,
        on_view_item: Callable[[Item], None] | None = None,
        on_session_expired: Callable[[str], None] | None = None,
        rearm_delay: float = 0.5,
    ) -> None:
        self.ledger = ledger
        self.capture = capture
        self.mode = ScanMode(mode)
        self.on_create_item = on_create_item
        self.on_view_item = on_view_item
        self.on_session_expired = on_session_expired
        self.rearm_delay = rearm_delay

        self.state = ScanState.AWAITING_SCAN
        self.pending_sku: str | None = None
        self.quantity = 1
        self.resolution: Resolution | None = None
        self.resolved_item: Item | None = None
        self.message: ScanMessage | None = None
        self.last_result: AdjustmentResult | None = None
        self.transitions: Deque[ScanState] = deque([self.state], maxlen=50)
        self._rearm_handle: asyncio.TimerHandle | None = None

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        self._reset_pending()
        self._enter(ScanState.AWAITING_SCAN)
        self.capture.arm()

    def stop(self) -> None:
        self._cancel_rearm()
        self.capture.pause()

    def set_mode(self, mode: ScanMode | str) -> None:
        if self.state is not ScanState.AWAITING_SCAN:
            raise RuntimeError("Finish or cancel the current scan before switching modes.")
        self.mode = ScanMode(mode)
        self.message = None

    # -- capture events ------------------------------------------------------

    def on_decoded(self, payload: str) -> ScanState:
        if self.state is not ScanState.AWAITING_SCAN:
            logger.debug("Ignoring decode while %s", self.state.value)
            return self.state
        self.capture.pause()
        self._cancel_rearm()
        self._enter(ScanState.DECODING)

        sku = (payload or "").strip()
        if not sku:
            self._enter(ScanState.AWAITING_SCAN)
            self.capture.arm()
            return self.state

        self.resolved_item = self.ledger.find_by_sku(sku)
        self.resolution = Resolution.RESOLVED if self.resolved_item else Resolution.UNRESOLVED
        self.message = None

        if self.mode is ScanMode.LOOKUP:
            return self._finish_lookup(sku)

        self.pending_sku = sku
        self.quantity = 1
        self._enter(ScanState.AWAITING_QUANTITY)
        return self.state

    def _finish_lookup(self, sku: str) -> ScanState:
        if self.resolved_item is None:
            logger.info("Lookup of unknown SKU %s", sku)
            self.message = ScanMessage(f"Item not found: {sku}", "error")
            self._return_to_scan()
            return self.state
        self._enter(ScanState.HANDED_OFF)
        if self.on_view_item is not None:
            self.on_view_item(self.resolved_item)
        return self.state

    # -- user input ----------------------------------------------------------

    def set_quantity(self, value: int | str) -> int:
        if self.state is not ScanState.AWAITING_QUANTITY:
            raise RuntimeError("No scanned SKU is waiting for a quantity.")
        try:
            quantity = int(value)
        except (TypeError, ValueError):
            quantity = 1
        self.quantity = max(1, quantity)
        return self.quantity

    def scan_again(self) -> None:
        if self.state not in (ScanState.AWAITING_QUANTITY, ScanState.NEEDS_ITEM_CREATION):
            raise RuntimeError("There is no pending scan to discard.")
        self._reset_pending()
        self.message = None
        self._enter(ScanState.AWAITING_SCAN)
        self.capture.arm()

    async def commit(self) -> AdjustmentResult | None:
        if self.state is ScanState.COMMITTING:
            logger.debug("Commit already in flight for %s", self.pending_sku)
            return None
        if self.state is not ScanState.AWAITING_QUANTITY or self.pending_sku is None:
            raise RuntimeError("No scanned SKU is waiting for confirmation.")

        transaction_type = self.mode.transaction_type
        if transaction_type is None:
            raise RuntimeError("Lookup mode does not move stock.")

        sku = self.pending_sku
        self._enter(ScanState.COMMITTING)
        try:
            result = await self.ledger.adjust_stock(
                sku, transaction_type.signed(self.quantity), transaction_type
            )
        except Unauthenticated as exc:
            self._expire_session(exc.message)
            return None
        except InventoryError as exc:
            logger.warning("Scan commit for %s failed: %s", sku, exc.message)
            self.message = ScanMessage(exc.message, "error")
            self._reset_pending()
            self._return_to_scan()
            return None

        self.last_result = result
        if isinstance(result.error, Unauthenticated):
            self._expire_session(result.message)
        elif result.status is AdjustmentStatus.APPLIED:
            sign = "+" if transaction_type is TransactionType.INBOUND else "-"
            self.message = ScanMessage(
                f"Stock updated! SKU: {sku}, Change: {sign}{self.quantity}", "success"
            )
            self.resolution = Resolution.RESOLVED
            self._reset_pending()
            self._return_to_scan()
        elif result.status is AdjustmentStatus.NOT_FOUND:
            self.message = ScanMessage(result.message, "error")
            self.resolution = Resolution.UNRESOLVED
            self._enter(ScanState.NEEDS_ITEM_CREATION)
        else:
            self.message = ScanMessage(result.message, "error")
            self._reset_pending()
            self._return_to_scan()
        return result

    def create_item_from_scan(self) -> ItemDraft:
        if self.state is not ScanState.NEEDS_ITEM_CREATION or self.pending_sku is None:
            raise RuntimeError("There is no unknown SKU to create an item for.")
        locations = self.ledger.locations
        draft = ItemDraft.for_scanned_sku(
            self.pending_sku, location_id=locations[0].id if locations else ""
        )
        self._enter(ScanState.HANDED_OFF)
        if self.on_create_item is not None:
            self.on_create_item(draft)
        return draft

    # -- helpers -------------------------------------------------------------

    def _enter(self, state: ScanState) -> None:
        self.state = state
        self.transitions.append(state)
        logger.debug("Scanner -> %s", state.value)

    def _reset_pending(self) -> None:
        self.pending_sku = None
        self.quantity = 1

    def _expire_session(self, message: str) -> None:
        """Stop scanning until the user logs in again; ``start`` resumes."""
        logger.warning("Scanner stopped: %s", message)
        self.message = ScanMessage(message, "auth")
        self._reset_pending()
        self._cancel_rearm()
        self._enter(ScanState.SESSION_EXPIRED)
        self.capture.pause()
        if self.on_session_expired is not None:
            self.on_session_expired(message)

    def _return_to_scan(self) -> None:
        self._enter(ScanState.AWAITING_SCAN)
        if self.rearm_delay <= 0:
            self.capture.arm()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Decoded off the event loop; nothing can schedule the delay.
            self.capture.arm()
            return
        self._rearm_handle = loop.call_later(self.rearm_delay, self._rearm)

    def _rearm(self) -> None:
        self._rearm_handle = None
        if self.state is ScanState.AWAITING_SCAN:
            self.capture.arm()

    def _cancel_rearm(self) -> None:
        if self._rearm_handle is not None:
            self._rearm_handle.cancel()
            self._rearm_handle = None
