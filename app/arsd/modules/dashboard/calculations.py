"""
Progress and cost figures derived from a report's parsed project cost and
project details rows. Shared by the project analytics page and the
leaderboard so both rank projects the same way.
"""
from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass
from typing import Any

from app.arsd.constants import CURRENCY_SYMBOL

_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def parse_numeric_value(value: Any, default: float = 0.0) -> float:
    """Best-effort number from a cell or stored value ("₱1,200.50" → 1200.5)."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else default
    cleaned = _NON_NUMERIC.sub("", str(value))
    try:
        n = float(cleaned)
    except ValueError:
        return default
    return n if math.isfinite(n) else default


def calculate_percentage(numerator: float, denominator: float) -> float:
    return (numerator / denominator) * 100 if denominator > 0 else 0.0


def round2(value: float) -> float:
    return round(value, 2)


def format_currency(value: Any) -> str:
    n = parse_numeric_value(value)
    if n == int(n):
        return f"{CURRENCY_SYMBOL}{int(n):,}"
    return f"{CURRENCY_SYMBOL}{n:,.2f}"


@dataclass(frozen=True)
class ProjectStats:
    contract_amount: float
    target_cost_total: float
    direct_cost_total: float
    swa_cost_total: float
    billed_cost_total: float
    target_progress: float
    actual_progress: float
    slippage: float
    balance: float
    collectible: float
    savings: float

    def to_dict(self) -> dict:
        return asdict(self)


def _get(row: Any, name: str) -> Any:
    if row is None:
        return None
    if isinstance(row, dict):
        return row.get(name)
    return getattr(row, name, None)


def target_progress(cost: Any, details: Any) -> float:
    """
    Target progress in percent. Uses the sheet's target_percentage when present,
    otherwise target cost over contract amount, capped at 100 when the target
    total exceeds the contract.
    """
    contract = parse_numeric_value(_get(details, "contract_amount"))
    target_total = parse_numeric_value(_get(cost, "target_cost_total"))
    target_pct = parse_numeric_value(_get(cost, "target_percentage"))
    if target_pct > 0:
        progress = round2(target_pct * 100)
    else:
        progress = round2(calculate_percentage(target_total, contract))
    if progress > 100 and target_total > contract:
        progress = 100.0
    return progress


def calculate_project_stats(cost: Any, details: Any) -> ProjectStats:
    """Accepts ORM rows or plain dicts; missing rows count as zeros."""
    contract = parse_numeric_value(_get(details, "contract_amount"))
    swa_total = parse_numeric_value(_get(cost, "swa_cost_total"))
    target = target_progress(cost, details)
    actual = round2(calculate_percentage(swa_total, contract))
    return ProjectStats(
        contract_amount=contract,
        target_cost_total=parse_numeric_value(_get(cost, "target_cost_total")),
        direct_cost_total=parse_numeric_value(_get(cost, "direct_cost_total")),
        swa_cost_total=swa_total,
        billed_cost_total=parse_numeric_value(_get(cost, "billed_cost_total")),
        target_progress=target,
        actual_progress=actual,
        slippage=round2(actual - target),
        balance=parse_numeric_value(_get(cost, "balance")),
        collectible=parse_numeric_value(_get(cost, "collectibles")),
        savings=parse_numeric_value(_get(cost, "direct_cost_savings")),
    )
