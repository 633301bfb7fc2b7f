from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import Optional, Sequence

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from invsync import InventoryApp, create_app
from invsync.config import Config
from invsync.errors import InventoryError
from invsync.ledger import StockLedger
from invsync.models import Item, TransactionType
from invsync.reports import (
    LOW_STOCK_COLUMNS,
    TRANSACTION_REPORT_COLUMNS,
    DashboardSummary,
    dashboard_summary,
    filter_transactions,
    stock_status,
    transaction_report_rows,
)
from invsync.scanner import ScanMode, ScanState, ScanWorkflow
from invsync.utils.csv_export import write_csv
from invsync.utils.logging import configure_logging

logger = logging.getLogger(__name__)

console = Console()

_MESSAGE_STYLES = {
    "success": "bold green",
    "error": "bold red",
    "auth": "bold magenta",
    "info": "cyan",
}


class LineCapture:
    """Keyboard-wedge scanner: every line typed on stdin is one decode."""

    def __init__(self) -> None:
        self.ready = asyncio.Event()

    def arm(self) -> None:
        self.ready.set()

    def pause(self) -> None:
        self.ready.clear()


# -- rendering ---------------------------------------------------------------


def build_summary_table(summary: DashboardSummary) -> Table:
    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Metric", style="bold cyan")
    table.add_column("Value", style="white")
    table.add_row("Total items", str(summary.total_items))
    table.add_row("Total stock", str(summary.total_stock))
    low_style = "bold red" if summary.low_stock_count else "green"
    table.add_row("Low stock", Text(str(summary.low_stock_count), style=low_style))
    return table


def build_movements_table(summary: DashboardSummary) -> Table:
    table = Table(title="Last 7 days", box=box.SIMPLE)
    table.add_column("Day", style="bold")
    table.add_column("Inbound", justify="right", style="green")
    table.add_column("Outbound", justify="right", style="red")
    for movement in summary.movements:
        table.add_row(movement.day.strftime("%a %d %b"), str(movement.inbound), str(movement.outbound))
    return table


def build_low_stock_table(items: Sequence[Item]) -> Table:
    table = Table(title="Low stock", box=box.SIMPLE)
    for _, header in LOW_STOCK_COLUMNS:
        table.add_column(header)
    table.add_column("Status")
    for item in items:
        status = stock_status(item)
        table.add_row(
            item.sku,
            item.name,
            item.category,
            str(item.quantity),
            str(item.min_stock),
            status.label,
        )
    return table


def build_report_table(rows: Sequence[dict[str, object]]) -> Table:
    table = Table(title="Transactions", box=box.SIMPLE)
    for _, header in TRANSACTION_REPORT_COLUMNS:
        table.add_column(header)
    for row in rows:
        change = int(row["quantity_change"])
        table.add_row(
            row["timestamp"].strftime("%Y-%m-%d %H:%M"),
            str(row["item_name"]),
            str(row["sku"]),
            str(row["type"]),
            Text(f"{change:+d}", style="green" if change > 0 else "red"),
            str(row["notes"]),
        )
    return table


def render_item(item: Item) -> Panel:
    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    table.add_row("SKU", item.sku)
    table.add_row("Category", item.category)
    table.add_row("Quantity", str(item.quantity))
    table.add_row("Min stock", str(item.min_stock))
    table.add_row("Status", stock_status(item).label)
    return Panel(table, title=item.name, box=box.ROUNDED)


# -- commands ----------------------------------------------------------------


def show_dashboard(ledger: StockLedger) -> None:
    summary = dashboard_summary(ledger.items, ledger.transactions)
    console.print(Panel(build_summary_table(summary), title="Inventory", box=box.ROUNDED))
    console.print(build_movements_table(summary))
    if summary.low_stock_items:
        console.print(build_low_stock_table(summary.low_stock_items))


def show_report(
    ledger: StockLedger,
    *,
    transaction_type: str | None = None,
    sku: str | None = None,
    csv_path: Path | None = None,
) -> int:
    item_id = None
    if sku:
        item = ledger.find_by_sku(sku)
        if item is None:
            console.print(f"[bold red]No item with SKU {sku}")
            return 1
        item_id = item.id
    transactions = filter_transactions(ledger.transactions, transaction_type, item_id)
    rows = transaction_report_rows(transactions, ledger.items)
    console.print(build_report_table(rows))
    if csv_path is not None:
        target = write_csv(csv_path, rows, TRANSACTION_REPORT_COLUMNS)
        console.print(f"[green]Exported {len(rows)} transactions to {target}")
    return 0


async def run_scanner(app: InventoryApp, mode: ScanMode) -> None:
    capture = LineCapture()
    workflow = app.scanner(
        capture,
        mode=mode,
        on_view_item=lambda item: console.print(render_item(item)),
        on_create_item=lambda draft: console.print(
            f"[yellow]Add item {draft.sku} in the inventory app, then scan it again."
        ),
    )
    workflow.start()
    console.print(f"[bold cyan]{mode.value} scanning. Empty line or Ctrl-D to stop.")
    try:
        while True:
            await capture.ready.wait()
            line = await asyncio.to_thread(console.input, "[bold cyan]scan> ")
            if not line.strip():
                break
            state = workflow.on_decoded(line)
            if state is ScanState.AWAITING_QUANTITY:
                await _confirm_quantity(workflow)
            elif state is ScanState.HANDED_OFF:
                workflow.start()
            _print_message(workflow)
            if workflow.state is ScanState.SESSION_EXPIRED:
                console.print("[yellow]Log in again to continue scanning.")
                break
    except (EOFError, KeyboardInterrupt):
        console.print()
    finally:
        workflow.stop()


async def _confirm_quantity(workflow: ScanWorkflow) -> None:
    item = workflow.resolved_item
    label = f"{item.name} ({item.quantity} on hand)" if item else "unknown item"
    answer = await asyncio.to_thread(
        console.input, f"{workflow.pending_sku} - {label}. Quantity [1], s to rescan: "
    )
    if answer.strip().lower() == "s":
        workflow.scan_again()
        return
    workflow.set_quantity(answer.strip() or 1)
    await workflow.commit()
    if workflow.state is ScanState.NEEDS_ITEM_CREATION:
        _print_message(workflow)
        workflow.create_item_from_scan()
        workflow.start()


def _print_message(workflow: ScanWorkflow) -> None:
    message = workflow.message
    if message is None:
        return
    console.print(Text(message.text, style=_MESSAGE_STYLES.get(message.level, "white")))
    workflow.message = None


# -- entry point -------------------------------------------------------------


def _credentials() -> tuple[str, str]:
    email = os.getenv("INVSYNC_EMAIL") or console.input("Email: ")
    password = os.getenv("INVSYNC_PASSWORD") or console.input("Password: ", password=True)
    return email, password


async def _run(args: argparse.Namespace, config: Config) -> int:
    app = create_app(config)
    try:
        ledger = None
        if config.api_token:
            ledger = await app.resume()
        if ledger is None:
            ledger = await app.login(*_credentials())
        if ledger.needs_reload:
            console.print("[yellow]Inventory may be out of date; reload before editing.")

        if args.command == "dashboard":
            show_dashboard(ledger)
        elif args.command == "report":
            return show_report(
                ledger,
                transaction_type=args.type,
                sku=args.sku,
                csv_path=args.csv,
            )
        elif args.command == "scan":
            await run_scanner(app, ScanMode[args.mode.upper()])
        return 0
    finally:
        await app.close()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inventory stock ledger console")
    parser.add_argument("--api-url", type=str, default=None, help="Base URL of the inventory API")
    parser.add_argument("--cache-url", type=str, default=None, help="SQLAlchemy URL of the local cache")
    commands = parser.add_subparsers(dest="command", required=True)

    scan = commands.add_parser("scan", help="Record stock movements with a barcode scanner")
    scan.add_argument(
        "--mode",
        choices=[mode.name.lower() for mode in ScanMode],
        default="inbound",
    )

    commands.add_parser("dashboard", help="Show stock totals and low-stock items")

    report = commands.add_parser("report", help="List transactions")
    report.add_argument(
        "--type",
        choices=[kind.value.lower() for kind in TransactionType],
        default=None,
    )
    report.add_argument("--sku", type=str, default=None, help="Only transactions of this SKU")
    report.add_argument("--csv", type=Path, default=None, help="Also export the report to CSV")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    overrides = {}
    if args.api_url:
        overrides["api_base_url"] = args.api_url
    if args.cache_url:
        overrides["cache_url"] = args.cache_url
    config = Config.from_env(**overrides)
    configure_logging(config)

    try:
        return asyncio.run(_run(args, config))
    except InventoryError as exc:
        logger.info("Command %s failed: %s", args.command, exc.message)
        console.print(f"[bold red]{exc.message}")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
