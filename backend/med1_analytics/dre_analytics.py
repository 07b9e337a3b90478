"""
In-memory DRE (P&L) aggregation over already-fetched fact rows.

Line totals and P&L figures go through the metric catalog's in-memory
evaluator, so they read the same token definitions the pivot SQL compiles.
Ratios with a zero denominator are None rather than NaN/Infinity.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .metric_catalog import (
    PNL_COGS,
    PNL_EXPENSE_LINES,
    PNL_MARKETING,
    PNL_NET_REVENUE,
    PNL_SGA,
    MetricContext,
    evaluate_metric,
    row_amount,
    row_value,
)

logger = logging.getLogger(__name__)

# Grouping dimension -> (fact field, display label)
DIMENSION_FIELDS: Dict[str, tuple[str, str]] = {
    "costCenter": ("costCenterCode", "Centro de Custo"),
    "product": ("productSku", "Produto"),
    "customer": ("customer", "Cliente"),
    "channel": ("channel", "Canal"),
    "region": ("region", "Região"),
    "bu": ("bu", "BU"),
}

# Dimensions that also report distinct SKUs and revenue per SKU
SKU_DIMENSIONS = {"customer", "channel"}


@dataclass(frozen=True)
class DRESummary:
    totalRevenue: float = 0.0
    totalCosts: float = 0.0
    totalExpenses: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def _ratio(num: Optional[float], den: Optional[float]) -> Optional[float]:
    if num is None or den is None or den == 0:
        return None
    return num / den


def _pct(num: Optional[float], den: Optional[float]) -> Optional[float]:
    r = _ratio(num, den)
    return None if r is None else r * 100


def _line_total(rows: Iterable[Any], lines: Sequence[str]) -> float:
    return sum(row_amount(r) for r in rows if row_value(r, "pnlLine") in lines)


def summarize(rows: Iterable[Any]) -> DRESummary:
    """Revenue, COGS and operating expenses (Marketing + SG&A) over all rows."""
    items = list(rows)
    return DRESummary(
        totalRevenue=float(evaluate_metric(f"{PNL_NET_REVENUE}_sum", items) or 0.0),
        totalCosts=float(evaluate_metric(f"{PNL_COGS}_sum", items) or 0.0),
        totalExpenses=_line_total(items, PNL_EXPENSE_LINES),
    )


def calculate_metrics(summary: DRESummary) -> Dict[str, Optional[float]]:
    gross_profit = summary.totalRevenue - summary.totalCosts
    operating_profit = gross_profit - summary.totalExpenses
    return {
        "grossProfit": gross_profit,
        "operatingProfit": operating_profit,
        "grossMargin": _pct(gross_profit, summary.totalRevenue),
        "operatingMargin": _pct(operating_profit, summary.totalRevenue),
        "expenseRatio": _pct(summary.totalExpenses, summary.totalRevenue),
    }


def _periods_desc(rows: Iterable[Any]) -> List[str]:
    return sorted({str(p) for p in (row_value(r, "period") for r in rows) if p is not None}, reverse=True)


def calculate_period_metrics(rows: Iterable[Any]) -> Dict[str, Any]:
    """Net Revenue of the latest period against the one before it.

    revenueGrowth is None when there is no previous period or its revenue is 0.
    """
    items = list(rows)
    periods = _periods_desc(items)
    latest = periods[0] if periods else None
    previous = periods[1] if len(periods) > 1 else None

    def _revenue(period: Optional[str]) -> float:
        if period is None:
            return 0.0
        return _line_total((r for r in items if row_value(r, "period") == period), (PNL_NET_REVENUE,))

    current_rev = _revenue(latest)
    previous_rev = _revenue(previous)
    growth = _pct(current_rev - previous_rev, previous_rev) if previous is not None else None
    return {
        "currentPeriod": latest,
        "previousPeriod": previous,
        "currentPeriodRevenue": current_rev,
        "previousPeriodRevenue": previous_rev,
        "revenueGrowth": growth,
    }


def group_by_dimension(rows: Iterable[Any], dimension: str) -> List[Dict[str, Any]]:
    """Net Revenue per value of `dimension`, largest first.

    Rows missing the dimension are grouped under None, the same way the pivot
    groups NULLs. Customer and channel also carry skuCount and averageTicket.
    """
    if dimension not in DIMENSION_FIELDS:
        raise ValueError(f"Unknown dimension: {dimension}")
    fact_field, label = DIMENSION_FIELDS[dimension]
    with_skus = dimension in SKU_DIMENSIONS

    groups: Dict[Any, Dict[str, Any]] = {}
    skus: Dict[Any, set] = {}
    for r in rows:
        if row_value(r, "pnlLine") != PNL_NET_REVENUE:
            continue
        key = row_value(r, fact_field)
        g = groups.get(key)
        if g is None:
            g = {"dimension": label, "value": key, "netRevenue": 0.0}
            groups[key] = g
            skus[key] = set()
        g["netRevenue"] += row_amount(r)
        sku = row_value(r, "productSku")
        if sku is not None:
            skus[key].add(sku)

    out = list(groups.values())
    if with_skus:
        for g in out:
            count = len(skus[g["value"]])
            g["skuCount"] = count
            g["averageTicket"] = _ratio(g["netRevenue"], count)
    out.sort(key=lambda g: g["netRevenue"], reverse=True)
    return out


def period_financials(rows: Iterable[Any]) -> List[Dict[str, Any]]:
    """Per-period revenue, COGS, expenses, gross profit and profit, oldest first."""
    acc: Dict[str, Dict[str, Any]] = {}
    for r in rows:
        period = row_value(r, "period")
        if period is None:
            continue
        line = row_value(r, "pnlLine")
        if line not in (PNL_NET_REVENUE, PNL_COGS) + PNL_EXPENSE_LINES:
            continue
        p = acc.setdefault(
            period,
            {"period": period, "revenue": 0.0, "cogs": 0.0, "expenses": 0.0, "grossProfit": 0.0, "profit": 0.0},
        )
        v = row_amount(r)
        if line == PNL_NET_REVENUE:
            p["revenue"] += v
            p["grossProfit"] += v
            p["profit"] += v
        elif line == PNL_COGS:
            p["cogs"] += v
            p["grossProfit"] -= v
            p["profit"] -= v
        else:
            p["expenses"] += v
            p["profit"] -= v
    return [acc[k] for k in sorted(acc)]


def cost_center_breakdown(rows: Iterable[Any], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Revenue, costs and gross profit per cost center.

    contribution is the cost center's profit as a percentage of the latest
    period's profit (None when that profit is 0 or there are no periods).
    """
    items = list(rows)
    periods = period_financials(items)
    latest_profit = periods[-1]["profit"] if periods else None

    acc: Dict[Any, Dict[str, Any]] = {}
    for r in items:
        code = row_value(r, "costCenterCode")
        c = acc.setdefault(code, {"costCenter": code, "revenue": 0.0, "costs": 0.0, "profit": 0.0})
        line = row_value(r, "pnlLine")
        v = row_amount(r)
        if line == PNL_NET_REVENUE:
            c["revenue"] += v
            c["profit"] += v
        elif line == PNL_COGS:
            c["costs"] += v
            c["profit"] -= v

    out = list(acc.values())
    for c in out:
        c["contribution"] = _pct(c["profit"], latest_profit)
    out.sort(key=lambda c: (c["contribution"] is None, -(c["contribution"] or 0.0)))
    return out[:limit] if limit else out


def pl_statement(rows: Iterable[Any], ctx: Optional[MetricContext] = None) -> Dict[str, Optional[float]]:
    """P&L statement built from catalog metrics (margins in percent)."""
    items = list(rows)
    gross_margin = evaluate_metric("gross_margin", items, ctx)
    ebitda_margin = evaluate_metric("ebitda_margin", items, ctx)
    return {
        "netRevenue": evaluate_metric(f"{PNL_NET_REVENUE}_sum", items, ctx),
        "cogs": evaluate_metric(f"{PNL_COGS}_sum", items, ctx),
        "grossProfit": evaluate_metric("gross_profit", items, ctx),
        "marketingExpenses": evaluate_metric(f"{PNL_MARKETING}_sum", items, ctx),
        "sgaExpenses": evaluate_metric(f"{PNL_SGA}_sum", items, ctx),
        "ebitda": evaluate_metric("ebitda", items, ctx),
        "grossMargin": None if gross_margin is None else gross_margin * 100,
        "ebitdaMargin": None if ebitda_margin is None else ebitda_margin * 100,
    }


def analyze(
    rows: Iterable[Any],
    *,
    summary: Optional[DRESummary] = None,
    dimensions: Sequence[str] = tuple(DIMENSION_FIELDS),
    metrics: Sequence[str] = (),
    reference_year: Optional[int] = None,
) -> Dict[str, Any]:
    """Everything the DRE page shows, computed from one row set."""
    items = list(rows)
    ctx = MetricContext(reference_year or date.today().year)
    summ = summary if summary is not None else summarize(items)
    logger.debug("DRE analytics over %s rows (dimensions=%s, metrics=%s)", len(items), list(dimensions), list(metrics))
    return {
        "summary": summ.to_dict(),
        "metrics": calculate_metrics(summ),
        "periodMetrics": calculate_period_metrics(items),
        "dimensions": {d: group_by_dimension(items, d) for d in dimensions},
        "periods": period_financials(items),
        "costCenters": cost_center_breakdown(items),
        "plStatement": pl_statement(items, ctx),
        "catalogMetrics": {k: evaluate_metric(k, items, ctx) for k in metrics},
    }
