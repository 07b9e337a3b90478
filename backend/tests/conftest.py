from __future__ import annotations

from typing import Any, Dict, Iterable, List

import pytest
from sqlalchemy import create_engine, event, insert
from sqlalchemy.pool import StaticPool

from med1_analytics.metrics import reset_metrics
from med1_analytics.models import FACT_TABLE, init_db


def fact(
    period: str,
    version: str,
    pnl_line: str,
    value: float,
    *,
    bu: str | None = "Clinic",
    scenario: str | None = "Base",
    region: str | None = "South",
    channel: str | None = "Direct",
    sku: str | None = "SKU-A",
    customer: str | None = "Alpha",
    cost_center: str | None = "CC-100",
    gl_account: str | None = "4000",
) -> Dict[str, Any]:
    return {
        "period": period,
        "version": version,
        "scenario": scenario,
        "bu": bu,
        "region": region,
        "channel": channel,
        "productSku": sku,
        "customer": customer,
        "costCenterCode": cost_center,
        "glAccount": gl_account,
        "pnlLine": pnl_line,
        "value": value,
    }


# Revenue 1000 / COGS 400 on Actual; Forecast rows add a third BU (Lab)
SAMPLE_FACTS: List[Dict[str, Any]] = [
    fact("2024-01", "Actual", "Net Revenue", 600, bu="Clinic", cost_center="CC-100"),
    fact("2024-01", "Actual", "Net Revenue", 400, bu="Hospital", region="North", channel="Online",
         sku="SKU-B", customer="Beta", cost_center="CC-200"),
    fact("2024-01", "Actual", "Cost of Goods Sold", 250, bu="Clinic", cost_center="CC-100"),
    fact("2024-01", "Actual", "Cost of Goods Sold", 150, bu="Hospital", region="North", channel="Online",
         sku="SKU-B", customer="Beta", cost_center="CC-200"),
    fact("2024-01", "Forecast", "Net Revenue", 900, bu="Clinic"),
    fact("2024-01", "Forecast", "Net Revenue", 300, bu="Lab", region="East", cost_center="CC-300"),
]


class QueryLog:
    """Collects every statement the engine sends to the DBAPI."""

    def __init__(self) -> None:
        self.statements: List[str] = []

    def __call__(self, conn, cursor, statement, parameters, context, executemany):
        self.statements.append(statement)

    def clear(self) -> None:
        self.statements.clear()

    def __len__(self) -> int:
        return len(self.statements)


def make_engine(rows: Iterable[Dict[str, Any]] = ()):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    rows = list(rows)
    if rows:
        with engine.begin() as conn:
            conn.execute(insert(FACT_TABLE), rows)
    return engine


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def seeded_engine():
    engine = make_engine(SAMPLE_FACTS)
    yield engine
    engine.dispose()


@pytest.fixture
def query_log(seeded_engine):
    log = QueryLog()
    event.listen(seeded_engine, "before_cursor_execute", log)
    yield log
    event.remove(seeded_engine, "before_cursor_execute", log)
