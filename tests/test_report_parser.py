import csv
import io
from datetime import date

import pytest
from openpyxl import Workbook

from app.arsd.modules.accomplishment_reports.parsers.accomplishment import (
    find_sections,
    parse_accomplishment_report,
    parse_rows,
)
from app.arsd.modules.accomplishment_reports.parsers.cells import (
    ParseError,
    cell_text,
    parse_date,
    parse_number,
)
from app.arsd.modules.accomplishment_reports.parsers.ipow import parse_ipow_rows

WIDTH = 93
CODE = "BCDDB-2025-001"


def _row(values: dict) -> list:
    row = [None] * WIDTH
    for idx, v in values.items():
        row[idx] = v
    return row


HEADER = _row(
    {
        21: "ProjectID", 22: "Project Name", 23: "Client", 26: "Contract Amount", 28: "Planned Start",
        39: "ProjectID", 40: "Target Cost Total", 41: "SWA Cost Total", 42: "Billed Cost Total",
        43: "Direct Cost Total", 44: "Balance",
        52: "Date", 53: "Actual_Manhours", 54: "Projected_Manhours",
        56: "ProjectID", 57: "Item_No", 58: "Description", 59: "Date", 60: "Type", 61: "Cost", 62: "WBS",
        64: "ProjectID", 65: "Item_No", 66: "Description", 67: "Date", 68: "Type", 69: "Cost",
        71: "ProjectID", 72: "Month", 73: "TargetCost", 74: "SWA_Cost", 75: "Billed_Cost", 76: "Direct_Cost",
        78: "ProjectID", 79: "Material", 80: "Type", 81: "Unit", 82: "SumQty",
        84: "ProjectID", 85: "PO Number", 86: "Date Requested", 87: "Expected Delivery",
        88: "Materials Requested", 89: "Qty", 90: "Unit", 91: "Status", 92: "Priority",
    }
)

DATA = _row(
    {
        21: CODE, 22: "School Building", 23: "DepEd", 26: 5000000, 28: date(2025, 1, 6),
        39: CODE, 40: 4000000, 41: 1500000, 42: 1200000, 43: 1000000, 44: 0,
        52: date(2025, 1, 4), 53: 120, 54: 150,
        56: CODE, 57: "1", 58: "Excavation", 59: date(2025, 1, 3), 60: "Labor", 61: 25000, 62: "1.1",
        64: CODE, 65: "A-1", 66: "Mobilization", 67: date(2025, 1, 2), 68: "Equipment", 69: "1,500.00",
        71: CODE, 72: "Jan-25", 73: 100000, 74: 90000, 75: 80000, 76: 70000,
        78: CODE, 79: "Cement", 80: "Consumable", 81: "bag", 82: 300,
        84: CODE, 85: "PO-001", 86: "1/15/2025", 87: date(2025, 1, 20),
        88: "Cement", 89: 100, 90: "bag", 91: "Pending", 92: "High",
    }
)

MAN_HOURS_ONLY = _row({52: date(2025, 1, 11), 53: 100, 54: 140})

IPOW_ROWS = [
    ["Bill of Quantities"],
    ["WBS", "Item Description", "Resource", "Type", "Unit", "Qty", "Unit Cost", "Total Cost"],
    ["1.1", "Cement", "Materials", "Material", "bag", 200, 250, None],
    [None, "No WBS line", "Materials", "Material", "pc", 5, 10, 50],
    ["1.2", "Rebar 10mm", "Materials", "Material", "pc", 10, None, 9999],
]


def _workbook_bytes(*, data_sheet="DATA SHEET", with_ipow=True) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = data_sheet
    for r in (HEADER, DATA, MAN_HOURS_ONLY):
        ws.append(r)
    if with_ipow:
        ipow = wb.create_sheet("IPOW")
        for r in IPOW_ROWS:
            ipow.append(r)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_parse_workbook_reads_every_block():
    result = parse_accomplishment_report(_workbook_bytes(), "week.xlsx")

    assert result.counts() == {
        "project_details": 1,
        "project_costs": 1,
        "man_hours": 2,
        "cost_items": 1,
        "cost_items_secondary": 1,
        "monthly_costs": 1,
        "materials": 1,
        "purchase_orders": 1,
    }
    assert result.project_code == CODE

    details = result.project_details[0]
    assert details["project_name"] == "School Building"
    assert details["contract_amount"] == 5000000
    assert details["planned_start_date"] == date(2025, 1, 6)

    # zero is a value, not a blank
    assert result.project_costs[0]["balance"] == 0.0

    assert [m["project_code"] for m in result.man_hours] == [CODE, CODE]
    assert result.man_hours[1]["date"] == date(2025, 1, 11)

    assert result.cost_items[0]["wbs"] == "1.1"
    assert result.cost_items_secondary[0]["cost"] == 1500.0
    assert result.monthly_costs[0]["month"] == date(2025, 1, 1)
    assert result.materials[0]["sum_qty"] == 300
    assert result.purchase_orders[0]["date_requested"] == date(2025, 1, 15)


def test_single_header_row_starts_all_sections_and_secondary_falls_back():
    sections = find_sections([HEADER, DATA])
    # "wbs" on the shared header hides the secondary block; the column scan picks it up instead
    assert "cost_items_secondary" not in sections
    assert {"project_details", "cost_items", "man_hours", "purchase_orders"} <= set(sections)
    assert sections["cost_items"].start == 0


def test_repeated_header_takes_the_later_block():
    cost_header = _row({39: "ProjectID", 40: "Target Cost Total"})
    rows = [
        cost_header,
        _row({39: "OLD", 40: 1}),
        cost_header,
        _row({39: "NEW", 40: 2}),
    ]
    sections = find_sections(rows)
    assert sections["project_costs"].start == 2

    result = parse_rows(rows)
    assert [c["project_code"] for c in result.project_costs] == ["NEW"]
    assert result.project_costs[0]["target_cost_total"] == 2.0


def test_secondary_header_ignored_after_cost_items():
    wbs_header = _row({56: "ProjectID", 57: "Item_No", 58: "Description", 61: "Cost", 62: "WBS"})
    plain_header = _row({64: "ProjectID", 65: "Item_No", 66: "Description", 69: "Cost"})
    sections = find_sections([wbs_header, _row({}), plain_header])
    assert "cost_items_secondary" not in sections

    sections = find_sections([plain_header, _row({}), wbs_header])
    assert sections["cost_items_secondary"].start == 0
    assert sections["cost_items"].start == 2


def test_ipow_sheet_items():
    result = parse_accomplishment_report(_workbook_bytes(), "week.xlsx")
    assert [i["wbs"] for i in result.ipow_items] == ["1.1", "1.2"]
    cement, rebar = result.ipow_items
    assert cement["total_cost"] == 50000.0
    assert cement["latest_ipow_qty"] == 200
    assert rebar["total_cost"] == 9999
    assert rebar["unit_cost"] is None


def test_ipow_without_header_is_empty():
    assert parse_ipow_rows([["nothing"], ["here", 1, 2]]) == []


def test_man_hours_use_default_project_code():
    header = _row({52: "Date", 53: "Actual_Manhours", 54: "Projected_Manhours"})
    result = parse_rows([header, MAN_HOURS_ONLY], default_project_code="PRJ-2025-0001")
    assert len(result.man_hours) == 1
    assert result.man_hours[0]["project_code"] == "PRJ-2025-0001"
    assert result.total_records == 1


def test_missing_data_sheet():
    with pytest.raises(ParseError):
        parse_accomplishment_report(_workbook_bytes(data_sheet="Summary"), "week.xlsx")


def test_xls_not_supported():
    with pytest.raises(ParseError):
        parse_accomplishment_report(b"\xd0\xcf\x11\xe0", "old.xls")


def test_corrupt_xlsx():
    with pytest.raises(ParseError):
        parse_accomplishment_report(b"not a zip", "week.xlsx")


def test_csv_export_is_parsed_as_data_sheet():
    buf = io.StringIO()
    writer = csv.writer(buf)
    for r in (HEADER, DATA, MAN_HOURS_ONLY):
        writer.writerow(["" if v is None else (v.isoformat() if isinstance(v, date) else v) for v in r])
    result = parse_accomplishment_report(buf.getvalue().encode("utf-8"), "week.csv")

    assert result.project_code == CODE
    assert len(result.man_hours) == 2
    assert result.project_costs[0]["target_cost_total"] == 4000000
    assert result.ipow_items == []


def test_parse_date_variants():
    assert parse_date(45658) == date(2025, 1, 1)
    assert parse_date("45658") == date(2025, 1, 1)
    assert parse_date("1/15/2025") == date(2025, 1, 15)
    assert parse_date("2025-02-03T00:00:00") == date(2025, 2, 3)
    assert parse_date("3000-01-01") is None
    assert parse_date(date(1850, 1, 1)) is None
    assert parse_date("not a date") is None
    assert parse_date("") is None
    assert parse_date(None) is None


def test_parse_number_variants():
    assert parse_number("1,234.50") == 1234.5
    assert parse_number(0) == 0.0
    assert parse_number("abc") is None
    assert parse_number(" ") is None
    assert parse_number(float("nan")) is None
    assert parse_number(True) is None


def test_cell_text():
    assert cell_text(3.0) == "3"
    assert cell_text(2.5) == "2.5"
    assert cell_text(None) == ""
    assert cell_text("  x ") == "x"
    assert cell_text(date(2025, 1, 4)) == "2025-01-04"
