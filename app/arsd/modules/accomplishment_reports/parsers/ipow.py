from __future__ import annotations

import logging
from typing import Any

from app.arsd.modules.accomplishment_reports.parsers.cells import cell, cell_text, load_xlsx, parse_number, sheet_rows

logger = logging.getLogger(__name__)

# field -> accepted header spellings (lowercased, whitespace collapsed)
IPOW_HEADERS: dict[str, tuple[str, ...]] = {
    "wbs": ("wbs", "wbs no", "wbs no.", "wbs code"),
    "item_description": ("item description", "description", "item", "particulars"),
    "resource": ("resource", "resources"),
    "type": ("type", "resource type"),
    "unit": ("unit", "uom", "unit of measure"),
    "latest_ipow_qty": ("qty", "quantity", "ipow qty", "latest ipow qty", "ipow quantity"),
    "unit_cost": ("unit cost", "unit price", "rate"),
    "total_cost": ("total cost", "amount", "total amount", "total"),
}


def _norm(value: Any) -> str:
    return " ".join(cell_text(value).lower().split())


def find_ipow_sheet(wb):
    for name in wb.sheetnames:
        if "ipow" in name.strip().lower():
            return wb[name]
    return None


def _map_header(row: list[Any]) -> dict[str, int]:
    col_map: dict[str, int] = {}
    for i, h in enumerate(row):
        h_norm = _norm(h)
        if not h_norm:
            continue
        for field, options in IPOW_HEADERS.items():
            if field not in col_map and h_norm in options:
                col_map[field] = i
                break
    return col_map


def find_header_row(rows: list[list[Any]]) -> tuple[int, dict[str, int]] | None:
    """First row naming both a WBS column and a description column."""
    for i, row in enumerate(rows):
        if not row:
            continue
        col_map = _map_header(row)
        if "wbs" in col_map and "item_description" in col_map:
            return i, col_map
    return None


def parse_ipow_rows(rows: list[list[Any]]) -> list[dict]:
    found = find_header_row(rows)
    if found is None:
        logger.warning("IPOW sheet has no WBS/description header row; skipped")
        return []
    header_idx, col_map = found

    def get_val(row: list[Any], field: str) -> Any:
        idx = col_map.get(field)
        return cell(row, idx) if idx is not None else None

    items: list[dict] = []
    for row in rows[header_idx + 1 :]:
        if not row:
            continue
        description = cell_text(get_val(row, "item_description"))
        wbs = cell_text(get_val(row, "wbs"))
        if not description or not wbs:
            continue
        qty = parse_number(get_val(row, "latest_ipow_qty")) or 0.0
        unit_cost = parse_number(get_val(row, "unit_cost"))
        total_cost = parse_number(get_val(row, "total_cost"))
        if total_cost is None and unit_cost is not None:
            total_cost = unit_cost * qty
        items.append(
            {
                "wbs": wbs,
                "item_description": description,
                "resource": cell_text(get_val(row, "resource")) or None,
                "type": cell_text(get_val(row, "type")) or None,
                "unit": cell_text(get_val(row, "unit")) or None,
                "latest_ipow_qty": qty,
                "unit_cost": unit_cost,
                "total_cost": total_cost,
            }
        )
    return items


def parse_ipow_workbook(file_bytes: bytes) -> list[dict]:
    """IPOW rows of a standalone workbook; empty when it has no IPOW sheet."""
    wb = load_xlsx(file_bytes)
    try:
        ws = find_ipow_sheet(wb)
        return parse_ipow_rows(sheet_rows(ws)) if ws is not None else []
    finally:
        wb.close()
