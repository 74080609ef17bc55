"""
Accomplishment report parser.

A report workbook carries a "DATA SHEET" where each data set lives in its own
block of columns. Every block starts under a header row recognised by its
column names; the block runs until the next header row. Columns inside a block
are fixed positions (0-based, A=0):

    project details       V..AL   (21-37)
    project costs         AN..AX  (39-49)
    man hours             BA..BC  (52-54)
    cost items (WBS)      BE..BK  (56-62)
    cost items secondary  BM..BR  (64-69)
    monthly costs         BT..BY  (71-76)
    materials             CA..CE  (78-82)
    purchase orders       CG..CO  (84-92)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Callable

from app.arsd.modules.accomplishment_reports.parsers.cells import (
    ParseError,
    cell,
    cell_text,
    csv_rows,
    load_xlsx,
    parse_date,
    parse_number,
    row_text,
    sheet_rows,
)
from app.arsd.modules.accomplishment_reports.parsers.ipow import find_ipow_sheet, parse_ipow_rows

logger = logging.getLogger(__name__)

PROJECT_DETAIL_COLUMNS = {
    "project_code": 21,
    "project_name": 22,
    "client": 23,
    "contractor_license": 24,
    "project_location": 25,
    "contract_amount": 26,
    "direct_contract_amount": 27,
    "planned_start_date": 28,
    "planned_end_date": 29,
    "actual_start_date": 30,
    "actual_end_date": 31,
    "calendar_days": 32,
    "working_days": 33,
    "pm_name": 34,
    "site_engineer_name": 35,
    "priority_level": 36,
    "remarks": 37,
}

PROJECT_COST_COLUMNS = {
    "project_code": 39,
    "target_cost_total": 40,
    "swa_cost_total": 41,
    "billed_cost_total": 42,
    "direct_cost_total": 43,
    "balance": 44,
    "collectibles": 45,
    "direct_cost_savings": 46,
    "received_percentage": 47,
    "utilization_percentage": 48,
    "total_pos": 49,
}

MAN_HOUR_COLUMNS = {
    "date": 52,
    "actual_man_hours": 53,
    "projected_man_hours": 54,
}

COST_ITEM_COLUMNS = {
    "project_code": 56,
    "item_no": 57,
    "description": 58,
    "date": 59,
    "type": 60,
    "cost": 61,
    "wbs": 62,
}

COST_ITEM_SECONDARY_COLUMNS = {
    "project_code": 64,
    "item_no": 65,
    "description": 66,
    "date": 67,
    "type": 68,
    "cost": 69,
}

MONTHLY_COST_COLUMNS = {
    "project_code": 71,
    "month": 72,
    "target_cost": 73,
    "swa_cost": 74,
    "billed_cost": 75,
    "direct_cost": 76,
}

MATERIAL_COLUMNS = {
    "project_code": 78,
    "material": 79,
    "type": 80,
    "unit": 81,
    "sum_qty": 82,
}

PURCHASE_ORDER_COLUMNS = {
    "project_code": 84,
    "po_number": 85,
    "date_requested": 86,
    "expected_delivery_date": 87,
    "materials_requested": 88,
    "qty": 89,
    "unit": 90,
    "status": 91,
    "priority_level": 92,
}

NUMBER_FIELDS = frozenset(
    {
        "contract_amount",
        "direct_contract_amount",
        "calendar_days",
        "working_days",
        "target_cost_total",
        "swa_cost_total",
        "billed_cost_total",
        "direct_cost_total",
        "balance",
        "collectibles",
        "direct_cost_savings",
        "received_percentage",
        "utilization_percentage",
        "total_pos",
        "actual_man_hours",
        "projected_man_hours",
        "cost",
        "target_cost",
        "swa_cost",
        "billed_cost",
        "direct_cost",
        "sum_qty",
        "qty",
    }
)

DATE_FIELDS = frozenset(
    {
        "planned_start_date",
        "planned_end_date",
        "actual_start_date",
        "actual_end_date",
        "date",
        "month",
        "date_requested",
        "expected_delivery_date",
    }
)


def _is_project_details(t: str) -> bool:
    return "projectid" in t and ("project name" in t or "client" in t)


def _is_project_costs(t: str) -> bool:
    return "target cost total" in t or "swa cost total" in t


def _is_man_hours(t: str) -> bool:
    return "actual_manhours" in t or "projected_manhours" in t


def _is_cost_items(t: str) -> bool:
    return "item_no" in t and "description" in t and "cost" in t and "wbs" in t


def _is_cost_items_secondary(t: str) -> bool:
    return "item_no" in t and "description" in t and "cost" in t and "wbs" not in t


def _is_monthly_costs(t: str) -> bool:
    return "month" in t and ("targetcost" in t or "swa_cost" in t)


def _is_materials(t: str) -> bool:
    return "material" in t and "type" in t and "sumqty" in t


def _is_purchase_orders(t: str) -> bool:
    return "po number" in t or "date requested" in t or "materials requested" in t


SECTION_RULES: dict[str, Callable[[str], bool]] = {
    "project_details": _is_project_details,
    "project_costs": _is_project_costs,
    "man_hours": _is_man_hours,
    "cost_items": _is_cost_items,
    "cost_items_secondary": _is_cost_items_secondary,
    "monthly_costs": _is_monthly_costs,
    "materials": _is_materials,
    "purchase_orders": _is_purchase_orders,
}


@dataclass(frozen=True)
class Section:
    start: int  # header row index
    end: int  # exclusive


@dataclass
class ParsedReport:
    project_details: list[dict] = field(default_factory=list)
    project_costs: list[dict] = field(default_factory=list)
    man_hours: list[dict] = field(default_factory=list)
    cost_items: list[dict] = field(default_factory=list)
    cost_items_secondary: list[dict] = field(default_factory=list)
    monthly_costs: list[dict] = field(default_factory=list)
    materials: list[dict] = field(default_factory=list)
    purchase_orders: list[dict] = field(default_factory=list)
    ipow_items: list[dict] = field(default_factory=list)
    sections_found: list[str] = field(default_factory=list)

    @property
    def project_code(self) -> str | None:
        """The report's own project id, taken from the project details block."""
        for row in self.project_details:
            if row.get("project_code"):
                return row["project_code"]
        return None

    def counts(self) -> dict[str, int]:
        return {
            "project_details": len(self.project_details),
            "project_costs": len(self.project_costs),
            "man_hours": len(self.man_hours),
            "cost_items": len(self.cost_items),
            "cost_items_secondary": len(self.cost_items_secondary),
            "monthly_costs": len(self.monthly_costs),
            "materials": len(self.materials),
            "purchase_orders": len(self.purchase_orders),
        }

    @property
    def total_records(self) -> int:
        return sum(self.counts().values())


def is_header_row(row: list[Any]) -> bool:
    t = row_text(row)
    if not t:
        return False
    return any(rule(t) for rule in SECTION_RULES.values())


def find_data_sheet(wb):
    for name in wb.sheetnames:
        lowered = name.strip().lower()
        if "data sheet" in lowered or "datasheet" in lowered:
            return wb[name]
    raise ParseError("DATA SHEET not found in the workbook")


def find_sections(rows: list[list[Any]]) -> dict[str, Section]:
    sections: dict[str, Section] = {}
    header_idx = [i for i, row in enumerate(rows) if row and is_header_row(row)]

    def _end(start: int) -> int:
        for i in header_idx:
            if i > start:
                return i
        return len(rows)

    for i in header_idx:
        t = row_text(rows[i])
        for name, rule in SECTION_RULES.items():
            if not rule(t):
                continue
            # A cost items header (with WBS) takes precedence over the secondary block.
            if name == "cost_items_secondary" and "cost_items" in sections:
                continue
            # a repeated header replaces the earlier block
            sections[name] = Section(start=i, end=_end(i))
    return sections


def _read_row(row: list[Any], columns: dict[str, int]) -> dict:
    out: dict[str, Any] = {}
    for key, idx in columns.items():
        raw = cell(row, idx)
        if key in NUMBER_FIELDS:
            out[key] = parse_number(raw)
        elif key in DATE_FIELDS:
            out[key] = parse_date(raw)
        else:
            out[key] = cell_text(raw) or None
    return out


def _parse_block(
    rows: list[list[Any]],
    section: Section,
    columns: dict[str, int],
    key: str = "project_code",
) -> list[dict]:
    out = []
    for i in range(section.start + 1, section.end):
        row = rows[i]
        if not row:
            continue
        data = _read_row(row, columns)
        if not data.get(key):
            continue
        out.append(data)
    return out


def _parse_secondary_fallback(rows: list[list[Any]]) -> list[dict]:
    """Scan BM..BR on every data row when no secondary header was detected."""
    out = []
    cols = COST_ITEM_SECONDARY_COLUMNS
    for row in rows:
        if not row or len(row) <= cols["cost"] or is_header_row(row):
            continue
        data = _read_row(row, cols)
        if not data.get("project_code"):
            continue
        if not (data.get("item_no") or data.get("description") or data.get("cost") is not None):
            continue
        out.append(data)
    return out


def parse_rows(rows: list[list[Any]], *, default_project_code: str | None = None) -> ParsedReport:
    sections = find_sections(rows)
    result = ParsedReport(sections_found=sorted(sections))

    blocks = (
        ("project_details", PROJECT_DETAIL_COLUMNS),
        ("project_costs", PROJECT_COST_COLUMNS),
        ("cost_items", COST_ITEM_COLUMNS),
        ("cost_items_secondary", COST_ITEM_SECONDARY_COLUMNS),
        ("monthly_costs", MONTHLY_COST_COLUMNS),
        ("materials", MATERIAL_COLUMNS),
        ("purchase_orders", PURCHASE_ORDER_COLUMNS),
    )
    for name, columns in blocks:
        if name in sections:
            setattr(result, name, _parse_block(rows, sections[name], columns))

    if "cost_items_secondary" not in sections:
        result.cost_items_secondary = _parse_secondary_fallback(rows)

    if "man_hours" in sections:
        # The man hours block has no project id column.
        code = result.project_code or default_project_code or ""
        man_hours = _parse_block(rows, sections["man_hours"], MAN_HOUR_COLUMNS, key="date")
        for mh in man_hours:
            mh["project_code"] = code
        result.man_hours = man_hours

    logger.info("Parsed accomplishment report: %s", result.counts())
    return result


def parse_accomplishment_report(
    file_bytes: bytes,
    filename: str,
    *,
    default_project_code: str | None = None,
) -> ParsedReport:
    ext = PurePath(filename or "").suffix.lower()
    if ext == ".csv":
        # A CSV export is the data sheet itself.
        return parse_rows(csv_rows(file_bytes), default_project_code=default_project_code)
    if ext == ".xls":
        raise ParseError("Legacy .xls workbooks are not supported; re-save the report as .xlsx")

    wb = load_xlsx(file_bytes)
    try:
        result = parse_rows(sheet_rows(find_data_sheet(wb)), default_project_code=default_project_code)
        ipow_ws = find_ipow_sheet(wb)
        if ipow_ws is not None:
            result.ipow_items = parse_ipow_rows(sheet_rows(ipow_ws))
    finally:
        wb.close()
    return result
