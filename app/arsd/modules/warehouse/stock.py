"""
Stock reconciliation for one project.

IPOW items (when the project has any) are the master list. Delivered and
utilized quantities come from delivery receipt and release lines whose item
description matches after trimming and lowercasing. Without IPOW data the rows
are the distinct descriptions seen on DRs, then releases, in first-seen order.
"""
from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field

LOW_STOCK_RATIO = 0.1


def normalize_description(value: str | None) -> str:
    return (value or "").strip().lower()


def _finite(value: float | None) -> float:
    if value is None:
        return 0.0
    try:
        f = float(value)
    except (TypeError, ValueError):
        return 0.0
    return f if math.isfinite(f) else 0.0


@dataclass
class StockItem:
    wbs: str | None
    item_description: str
    resource: str | None
    unit: str | None
    ipow_qty: float
    delivered: float
    utilized: float
    running_balance: float
    total_cost: float
    variance: float
    po: float
    alerts: list[str] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.wbs or "", normalize_description(self.item_description))

    def to_dict(self) -> dict:
        return asdict(self)


def stock_alerts(ipow_qty: float, delivered: float, utilized: float, running_balance: float) -> list[str]:
    if ipow_qty <= 0:
        return []
    alerts = []
    if running_balance < ipow_qty * LOW_STOCK_RATIO:
        alerts.append("low_stock")
    if delivered > ipow_qty:
        alerts.append("over_ipow_delivered")
    if utilized > ipow_qty:
        alerts.append("over_ipow_utilized")
    return alerts


class _Totals:
    """
    Per-description sums over DR and release documents. Only the first
    matching line of each document counts toward its quantities.
    """

    def __init__(self, receipts: Iterable, releases: Iterable):
        self.delivered: dict[str, float] = {}
        self.utilized: dict[str, float] = {}
        self.po: dict[str, float] = {}
        self.unit: dict[str, str] = {}
        # first spelling of each description, DRs before releases
        self.first_seen: dict[str, str] = {}

        for dr in receipts:
            counted: set[str] = set()
            for line in dr.items or []:
                key = normalize_description(line.item_description)
                if not key or key in counted:
                    continue
                counted.add(key)
                self.first_seen.setdefault(key, line.item_description.strip())
                self.delivered[key] = self.delivered.get(key, 0.0) + _finite(line.qty_in_dr)
                self.po[key] = max(self.po.get(key, 0.0), _finite(line.qty_in_po))
                if line.unit:
                    self.unit.setdefault(key, line.unit)
        for rel in releases:
            counted = set()
            for line in rel.items or []:
                key = normalize_description(line.item_description)
                if not key or key in counted:
                    continue
                counted.add(key)
                self.first_seen.setdefault(key, line.item_description.strip())
                self.utilized[key] = self.utilized.get(key, 0.0) + _finite(line.qty)
                if line.unit:
                    self.unit.setdefault(key, line.unit)


def compute_stock_items(
    ipow_items: Iterable,
    receipts: Iterable,
    releases: Iterable,
    po_overrides: dict[tuple[str, str], float] | None = None,
) -> list[StockItem]:
    """
    po_overrides maps (wbs or "", normalized description) to the PO quantity
    material control entered for that row.
    """
    overrides = po_overrides or {}
    totals = _Totals(receipts, releases)
    ipow_items = list(ipow_items)
    rows: list[StockItem] = []

    if ipow_items:
        for ipow in ipow_items:
            key = normalize_description(ipow.item_description)
            ipow_qty = _finite(ipow.latest_ipow_qty)
            delivered = totals.delivered.get(key, 0.0)
            utilized = totals.utilized.get(key, 0.0)
            balance = delivered - utilized
            variance = balance - ipow_qty
            rows.append(
                StockItem(
                    wbs=ipow.wbs,
                    item_description=ipow.item_description,
                    resource=ipow.resource,
                    unit=ipow.unit or totals.unit.get(key),
                    ipow_qty=ipow_qty,
                    delivered=delivered,
                    utilized=utilized,
                    running_balance=balance,
                    total_cost=_finite(ipow.total_cost),
                    variance=variance if math.isfinite(variance) else 0.0,
                    po=overrides.get((ipow.wbs or "", key), totals.po.get(key, 0.0)),
                    alerts=stock_alerts(ipow_qty, delivered, utilized, balance),
                )
            )
        return rows

    for key, description in totals.first_seen.items():
        delivered = totals.delivered.get(key, 0.0)
        utilized = totals.utilized.get(key, 0.0)
        rows.append(
            StockItem(
                wbs=None,
                item_description=description,
                resource=None,
                unit=totals.unit.get(key),
                ipow_qty=0.0,
                delivered=delivered,
                utilized=utilized,
                running_balance=delivered - utilized,
                total_cost=0.0,
                variance=0.0,
                po=overrides.get(("", key), totals.po.get(key, 0.0)),
            )
        )
    return rows
