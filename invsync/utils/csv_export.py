"""CSV export utilities."""

from __future__ import annotations

import csv
import io
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, Sequence


def _serialize_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def _row_values(row: object, columns: Sequence[tuple[str, str]]) -> list[str]:
    values = []
    for field, _ in columns:
        if isinstance(row, dict):
            value = row.get(field)
        else:
            value = getattr(row, field, None)
        values.append(_serialize_value(value))
    return values


def iter_csv_lines(
    rows: Iterable[object],
    columns: Iterable[tuple[str, str]],
) -> Iterator[str]:
    columns = list(columns)
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([header for _, header in columns])
    yield output.getvalue()
    output.seek(0)
    output.truncate(0)
    for row in rows:
        writer.writerow(_row_values(row, columns))
        yield output.getvalue()
        output.seek(0)
        output.truncate(0)


def rows_to_csv(rows: Iterable[object], columns: Iterable[tuple[str, str]]) -> str:
    return "".join(iter_csv_lines(rows, columns))


def write_csv(
    path: Path | str,
    rows: Iterable[object],
    columns: Iterable[tuple[str, str]],
) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", newline="", encoding="utf-8") as handle:
        for chunk in iter_csv_lines(rows, columns):
            handle.write(chunk)
    return target
