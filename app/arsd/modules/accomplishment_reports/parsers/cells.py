from __future__ import annotations

import csv
import io
import logging
import math
from datetime import date, datetime
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils.datetime import from_excel
from openpyxl.workbook.workbook import Workbook

logger = logging.getLogger(__name__)

MIN_YEAR = 1900
MAX_YEAR = 2100

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b-%y",
    "%b %Y",
    "%B %Y",
)


class ParseError(ValueError):
    pass


def load_xlsx(file_bytes: bytes) -> Workbook:
    try:
        return load_workbook(io.BytesIO(file_bytes), data_only=True)
    except Exception as e:
        raise ParseError(f"Could not read workbook: {e}") from e


def sheet_rows(ws) -> list[list[Any]]:
    """Worksheet as a 2-D list of raw cell values (formulas already evaluated)."""
    return [list(row) for row in ws.iter_rows(values_only=True)]


def csv_rows(file_bytes: bytes) -> list[list[Any]]:
    text = file_bytes.decode("utf-8-sig", errors="replace")
    return [list(r) for r in csv.reader(io.StringIO(text))]


def cell(row: list[Any], idx: int) -> Any:
    if idx < 0 or idx >= len(row):
        return None
    return row[idx]


def cell_text(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, float):
        if not math.isfinite(value):
            return ""
        if value.is_integer():
            return str(int(value))
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def row_text(row: list[Any]) -> str:
    return " ".join(cell_text(v).lower() for v in row if v is not None)


def parse_number(value: Any) -> float | None:
    """Numeric cell value; accepts "1,234.50" style strings. Blank or junk gives None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        f = float(value)
        return f if math.isfinite(f) else None
    v = str(value).replace(",", "").strip()
    if not v:
        return None
    try:
        f = float(v)
    except ValueError:
        return None
    return f if math.isfinite(f) else None


def _in_range(d: date) -> bool:
    return MIN_YEAR <= d.year <= MAX_YEAR


def parse_date(value: Any) -> date | None:
    """
    Real dates, Excel serial numbers and the common text formats seen in the
    reports. Anything outside 1900-2100 is treated as garbage.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        d = value.date()
    elif isinstance(value, date):
        d = value
    elif isinstance(value, (int, float)):
        d = _from_serial(float(value))
    else:
        v = str(value).strip()
        if not v:
            return None
        d = _from_text(v)
    if d is None:
        return None
    if not _in_range(d):
        logger.warning("Rejected out-of-range date value: %r", value)
        return None
    return d


def _from_serial(serial: float) -> date | None:
    if not math.isfinite(serial) or serial <= 0:
        return None
    try:
        return from_excel(serial).date()
    except (OverflowError, ValueError, TypeError):
        return None


def _from_text(v: str) -> date | None:
    try:
        return date.fromisoformat(v[:10])
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(v, fmt).date()
        except ValueError:
            continue
    # Serial numbers that arrived as text (CSV exports).
    num = parse_number(v)
    if num is not None:
        return _from_serial(num)
    return None
