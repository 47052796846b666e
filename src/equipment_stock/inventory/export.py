"""CSV stock report, matching the spreadsheet layout users already import."""

from __future__ import annotations

import csv
import io
import os
from datetime import date
from typing import Dict, Iterable, List, Optional

from ..domain.errors import InvalidInput
from ..domain.models import Item
from ..logging import get_logger
from .constants import EXPORT_HEADERS


LOG = get_logger("stock-export")

BOM = "\ufeff"


def report_filename(on: date) -> str:
    return f"informe_stock_{on.isoformat()}.csv"


def _row(item: Item) -> List[str]:
    return [
        item.name,
        item.description,
        item.device_type or "",
        str(item.quantity),
        item.serial_number,
        item.location,
    ]


def render_csv(items: Iterable[Item]) -> str:
    """Header plus one row per item, rows joined by newlines (no trailing newline).

    Fields containing a comma, quote or line break are quoted with inner quotes doubled.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, delimiter=",", quotechar='"', quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    for item in items:
        writer.writerow(_row(item))
    return buf.getvalue().rstrip("\n")


def read_csv(text: str) -> List[Dict[str, str]]:
    """Parse a report back into header -> value rows."""
    if text.startswith(BOM):
        text = text[len(BOM):]
    reader = csv.DictReader(io.StringIO(text, newline=""))
    return [dict(row) for row in reader]


def write_report(items: Iterable[Item], directory: str, *, on: Optional[date] = None) -> str:
    """Write `informe_stock_<date>.csv` (UTF-8 with BOM) and return its path."""
    rows = list(items)
    if not rows:
        raise InvalidInput("There are no items to include in the report")
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, report_filename(on or date.today()))
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(BOM + render_csv(rows))
    LOG.info("Wrote stock report with %d row(s) to %s", len(rows), path)
    return path
