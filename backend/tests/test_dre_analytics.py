"""
Tests for the in-memory DRE aggregator.
"""
import pytest

from conftest import fact
from med1_analytics.dre_analytics import (
    DRESummary,
    analyze,
    calculate_metrics,
    calculate_period_metrics,
    cost_center_breakdown,
    group_by_dimension,
    period_financials,
    pl_statement,
    summarize,
)
from med1_analytics.errors import UnknownMetricError

ROWS = [
    fact("2024-02", "Actual", "Net Revenue", 1200, bu="Clinic", customer="Alpha", channel="Direct", sku="SKU-A", cost_center="CC-100"),
    fact("2024-02", "Actual", "Net Revenue", 300, bu="Clinic", customer="Alpha", channel="Direct", sku="SKU-B", cost_center="CC-100"),
    fact("2024-02", "Actual", "Net Revenue", 500, bu="Hospital", customer="Beta", channel="Online", sku="SKU-A", cost_center="CC-200"),
    fact("2024-01", "Actual", "Net Revenue", 1000, bu="Clinic", customer="Alpha", channel="Direct", sku="SKU-A", cost_center="CC-100"),
    fact("2024-02", "Actual", "Cost of Goods Sold", 800, cost_center="CC-100"),
    fact("2024-02", "Actual", "Marketing Expenses", 200, cost_center="CC-100"),
    fact("2024-02", "Actual", "SG&A Expenses", 100, cost_center="CC-200"),
]


class TestSummaryMetrics:
    """Headline DRE figures"""

    def test_summarize(self):
        s = summarize(ROWS)
        assert s == DRESummary(totalRevenue=3000, totalCosts=800, totalExpenses=300)

    def test_calculate_metrics(self):
        m = calculate_metrics(DRESummary(totalRevenue=1000, totalCosts=400, totalExpenses=100))
        assert m["grossProfit"] == 600
        assert m["operatingProfit"] == 500
        assert m["grossMargin"] == pytest.approx(60.0)
        assert m["operatingMargin"] == pytest.approx(50.0)
        assert m["expenseRatio"] == pytest.approx(10.0)

    def test_zero_revenue_margins_are_none(self):
        m = calculate_metrics(DRESummary(totalRevenue=0, totalCosts=400, totalExpenses=100))
        assert m["grossProfit"] == -400
        assert m["grossMargin"] is None
        assert m["operatingMargin"] is None


class TestPeriodMetrics:
    """Latest period against the one before"""

    def test_revenue_growth(self):
        pm = calculate_period_metrics(ROWS)
        assert pm["currentPeriod"] == "2024-02"
        assert pm["previousPeriod"] == "2024-01"
        assert pm["currentPeriodRevenue"] == 2000
        assert pm["previousPeriodRevenue"] == 1000
        assert pm["revenueGrowth"] == pytest.approx(100.0)

    def test_single_period_has_no_growth(self):
        pm = calculate_period_metrics([r for r in ROWS if r["period"] == "2024-02"])
        assert pm["previousPeriod"] is None
        assert pm["revenueGrowth"] is None

    def test_no_rows(self):
        pm = calculate_period_metrics([])
        assert pm["currentPeriod"] is None
        assert pm["currentPeriodRevenue"] == 0


class TestGroupByDimension:
    """Net Revenue per dimension value"""

    def test_by_bu_sorted_by_revenue(self):
        out = group_by_dimension(ROWS, "bu")
        assert [(g["value"], g["netRevenue"]) for g in out] == [("Clinic", 2500), ("Hospital", 500)]
        assert "skuCount" not in out[0]

    def test_customer_sku_count_and_ticket(self):
        out = group_by_dimension(ROWS, "customer")
        alpha = out[0]
        assert alpha["value"] == "Alpha"
        assert alpha["skuCount"] == 2
        assert alpha["averageTicket"] == pytest.approx(1250)
        assert alpha["dimension"] == "Cliente"

    def test_channel_sku_count(self):
        out = {g["value"]: g for g in group_by_dimension(ROWS, "channel")}
        assert out["Online"]["skuCount"] == 1
        assert out["Online"]["averageTicket"] == pytest.approx(500)

    def test_missing_values_group_under_none(self):
        rows = ROWS + [fact("2024-02", "Actual", "Net Revenue", 50, region=None)]
        out = {g["value"]: g["netRevenue"] for g in group_by_dimension(rows, "region")}
        assert out[None] == 50

    def test_unknown_dimension(self):
        with pytest.raises(ValueError):
            group_by_dimension(ROWS, "planet")


class TestChartsAndStatement:
    """Period series, cost centers and the P&L statement"""

    def test_period_financials(self):
        periods = period_financials(ROWS)
        assert [p["period"] for p in periods] == ["2024-01", "2024-02"]
        feb = periods[1]
        assert feb["revenue"] == 2000
        assert feb["cogs"] == 800
        assert feb["expenses"] == 300
        assert feb["grossProfit"] == 1200
        assert feb["profit"] == 900

    def test_cost_center_breakdown(self):
        out = cost_center_breakdown(ROWS)
        assert [c["costCenter"] for c in out] == ["CC-100", "CC-200"]
        cc100 = out[0]
        assert cc100["revenue"] == 2500
        assert cc100["costs"] == 800
        assert cc100["profit"] == 1700
        # latest period profit is 900
        assert cc100["contribution"] == pytest.approx(1700 / 900 * 100)
        assert cost_center_breakdown(ROWS, limit=1) == out[:1]

    def test_pl_statement(self):
        pl = pl_statement(ROWS)
        assert pl["netRevenue"] == 3000
        assert pl["grossProfit"] == 2200
        assert pl["ebitda"] == 1900
        assert pl["marketingExpenses"] == 200
        assert pl["sgaExpenses"] == 100
        assert pl["grossMargin"] == pytest.approx(2200 / 3000 * 100)
        assert pl["ebitdaMargin"] == pytest.approx(1900 / 3000 * 100)

    def test_statement_without_revenue(self):
        pl = pl_statement([fact("2024-01", "Actual", "Cost of Goods Sold", 10)])
        assert pl["grossMargin"] is None
        assert pl["ebitdaMargin"] is None


class TestAnalyze:
    """Full DRE payload"""

    def test_analyze(self):
        out = analyze(ROWS, dimensions=["bu", "customer"], metrics=["gross_margin", "row_count"], reference_year=2024)
        assert out["summary"] == {"totalRevenue": 3000, "totalCosts": 800, "totalExpenses": 300}
        assert set(out["dimensions"]) == {"bu", "customer"}
        assert out["catalogMetrics"]["row_count"] == len(ROWS)
        assert out["catalogMetrics"]["gross_margin"] == pytest.approx(2200 / 3000)

    def test_given_summary_is_used(self):
        out = analyze(ROWS, summary=DRESummary(totalRevenue=100, totalCosts=50, totalExpenses=0))
        assert out["metrics"]["grossMargin"] == pytest.approx(50.0)

    def test_unknown_catalog_metric(self):
        with pytest.raises(UnknownMetricError):
            analyze(ROWS, metrics=["bogus"])
