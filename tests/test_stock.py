from types import SimpleNamespace as NS

from app.arsd.modules.warehouse.stock import compute_stock_items, normalize_description, stock_alerts


def _dr(*lines):
    return NS(items=[NS(item_description=d, qty_in_dr=q, qty_in_po=po, unit=u) for d, q, po, u in lines])


def _rel(*lines):
    return NS(items=[NS(item_description=d, qty=q, unit=None) for d, q in lines])


def _ipow(wbs, desc, qty, total=None, unit=None):
    return NS(wbs=wbs, item_description=desc, resource="Materials", unit=unit, latest_ipow_qty=qty, total_cost=total)


def test_normalize_description():
    assert normalize_description("  Portland CEMENT ") == "portland cement"
    assert normalize_description(None) == ""


def test_alerts():
    assert stock_alerts(100, 100, 95, 5) == ["low_stock"]
    assert stock_alerts(100, 120, 10, 110) == ["over_ipow_delivered"]
    assert stock_alerts(100, 150, 130, 20) == ["over_ipow_delivered", "over_ipow_utilized"]
    assert stock_alerts(100, 50, 0, 50) == []
    # no planned quantity, nothing to compare against
    assert stock_alerts(0, 10, 20, -10) == []


def test_ipow_rows_sum_across_documents():
    rows = compute_stock_items(
        [_ipow("1.1", "Cement", 100, total=26000), _ipow("1.2", "Gravel", 10)],
        [_dr(("cement ", 30, 40, "bag"), ("Sand", 3, 0, "m3")), _dr(("CEMENT", 20, 60, None))],
        [_rel(("Cement", 15))],
    )
    assert [r.item_description for r in rows] == ["Cement", "Gravel"]
    cement, gravel = rows
    assert cement.delivered == 50
    assert cement.utilized == 15
    assert cement.running_balance == 35
    assert cement.variance == 35 - 100
    assert cement.po == 60  # largest PO quantity seen
    assert cement.unit == "bag"
    assert cement.total_cost == 26000
    assert cement.alerts == []
    assert gravel.delivered == 0
    assert gravel.alerts == ["low_stock"]


def test_po_override_wins():
    rows = compute_stock_items(
        [_ipow("1.1", "Cement", 100)],
        [_dr(("Cement", 10, 40, None))],
        [],
        {("1.1", "cement"): 75.0},
    )
    assert rows[0].po == 75.0
    assert rows[0].key == ("1.1", "cement")


def test_without_ipow_rows_follow_first_seen_order():
    rows = compute_stock_items(
        [],
        [_dr(("Rebar", 10, 0, "pc"))],
        [_rel(("Tie Wire", 2), ("rebar", 4))],
    )
    assert [(r.item_description, r.delivered, r.utilized, r.running_balance) for r in rows] == [
        ("Rebar", 10, 4, 6),
        ("Tie Wire", 0, 2, -2),
    ]
    assert all(r.wbs is None and r.alerts == [] for r in rows)


def test_non_numeric_quantities_count_as_zero():
    rows = compute_stock_items(
        [_ipow("1.1", "Cement", float("nan"))],
        [_dr(("Cement", None, "x", None))],
        [],
    )
    assert rows[0].ipow_qty == 0
    assert rows[0].delivered == 0
    assert rows[0].to_dict()["alerts"] == []


def test_only_first_matching_line_per_document_counts():
    rows = compute_stock_items(
        [_ipow("1.1", "Cement", 100)],
        [_dr(("Cement", 10, 40, None), ("cement", 5, 90, None)), _dr(("Sand", 1, 0, None), ("CEMENT ", 7, 0, None))],
        [_rel(("Cement", 2), ("CEMENT", 3))],
    )
    cement = rows[0]
    assert cement.delivered == 17
    assert cement.utilized == 2
    assert cement.po == 40


def test_duplicate_lines_without_ipow():
    rows = compute_stock_items([], [_dr(("Rebar", 10, 0, None), ("rebar", 4, 0, None))], [])
    assert [(r.item_description, r.delivered) for r in rows] == [("Rebar", 10)]
