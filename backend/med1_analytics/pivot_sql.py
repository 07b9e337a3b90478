"""
Pivot query composition over the fact table.

Every statement is built with SQLAlchemy Core: values travel as bound
parameters and identifiers only ever come from VerifiedColumn, so nothing the
client sends is spliced into SQL text.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import Select, asc, case, desc, func, literal_column, null, select
from sqlalchemy.engine import Dialect
from sqlalchemy.sql.elements import ColumnElement

from .columns import VerifiedColumn, unique_aliases, verify_column
from .metric_catalog import MetricContext, compile_metric
from .models import FACT_TABLE
from .schemas import PivotRequest

logger = logging.getLogger(__name__)

# Fields of each drill-down detail object, in output order
DETAIL_FIELDS = ("period", "version", "value", "scenario", "bu")
DETAILS_KEY = "details"

# sortBy.field that orders groups by their summed amount
SORT_VALUE_FIELD = "value"


def _dialect_name(dialect: str) -> str:
    d = (dialect or "").lower()
    if d.startswith("postgres"):
        return "postgres"
    if d.startswith("mysql") or d.startswith("mariadb"):
        return "mysql"
    if d.startswith("sqlite"):
        return "sqlite"
    return d


def details_agg_expr(dialect: str) -> ColumnElement:
    """JSON array of detail objects for the current group, per dialect."""
    t = FACT_TABLE.c
    pairs: List[Any] = []
    for name in DETAIL_FIELDS:
        # keys are fixed constants, values are fact-table columns
        pairs.extend([literal_column(f"'{name}'"), t[name]])
    d = _dialect_name(dialect)
    if d == "postgres":
        return func.json_agg(func.json_build_object(*pairs))
    if d == "mysql":
        return func.json_arrayagg(func.json_object(*pairs))
    # SQLite (JSON1) and default
    return func.json_group_array(func.json_object(*pairs))


def render_sql(stmt: Any, dialect: Dialect) -> str:
    """SQL text of a statement for logs (parameters stay as placeholders)."""
    return str(stmt.compile(dialect=dialect))


@dataclass
class MainQuery:
    statement: Select
    pivot_aliases: Dict[str, Any] = field(default_factory=dict)  # alias -> pivoted value
    value_keys: List[str] = field(default_factory=list)  # numeric output columns


class PivotQueryBuilder:
    """
    Build the statements of one pivot request.

    The builder verifies every identifier and resolves every metric up front,
    so constructing it fails with InvalidColumnError/UnknownMetricError before
    any statement exists.
    """

    def __init__(self, request: PivotRequest, dialect: str = "sqlite"):
        """
        Args:
            request: Validated pivot request
            dialect: SQLAlchemy dialect name of the target engine (postgresql, sqlite, ...)
        """
        self.request = request
        self.dialect = _dialect_name(dialect)
        self.ctx = MetricContext(request.referenceYear or date.today().year)
        self.rows: List[VerifiedColumn] = [verify_column(r) for r in request.rows]
        # Only the first columns entry is pivoted
        self.pivot_column: Optional[VerifiedColumn] = verify_column(request.columns[0]) if request.columns else None
        self.sort_column: Optional[VerifiedColumn] = (
            verify_column(request.sortBy.field) if request.sortBy is not None else None
        )
        self.metric_keys: List[str] = list(dict.fromkeys(request.metrics))
        self._metric_exprs: Dict[str, ColumnElement] = {
            k: compile_metric(k, self.ctx) for k in self.metric_keys
        }

    @property
    def is_pivot(self) -> bool:
        return self.pivot_column is not None

    def base_filter(self) -> List[ColumnElement]:
        """WHERE clauses shared by the count, main and totals statements.

        scenario is an exact match; version/period/bu are memberships and an
        empty list imposes no constraint.
        """
        f = self.request.filters
        t = FACT_TABLE.c
        clauses: List[ColumnElement] = []
        if f.scenario:
            clauses.append(t.scenario == f.scenario)
        if f.version:
            clauses.append(t.version.in_(f.version))
        if f.period:
            clauses.append(t.period.in_(f.period))
        if f.bu:
            clauses.append(t.bu.in_(f.bu))
        return clauses

    def _dimension_columns(self) -> List[ColumnElement]:
        return [rc.column for rc in self.rows]

    def count_query(self) -> Select:
        """Number of distinct row-dimension combinations in the filtered set."""
        groups = select(*self._dimension_columns()).where(*self.base_filter()).distinct().subquery("pivot_groups")
        return select(func.count()).select_from(groups)

    def unique_values_query(self) -> Select:
        """Distinct non-null values of the pivoted column, ordered."""
        if self.pivot_column is None:
            raise ValueError("unique values are only defined for pivot requests")
        col = self.pivot_column.column
        return select(col).where(col.is_not(None)).distinct().order_by(col)

    def main_query(self, pivot_values: Optional[Sequence[Any]] = None) -> MainQuery:
        """Grouped aggregation for one page.

        Args:
            pivot_values: Output of the unique values query when pivoting; one
                SUM(CASE WHEN col = v THEN value END) column per value
        """
        dims = self._dimension_columns()
        value_col = FACT_TABLE.c.value
        selected: List[ColumnElement] = list(dims)
        pivot_aliases: Dict[str, Any] = {}
        value_keys: List[str] = []

        if self.pivot_column is not None:
            values = list(pivot_values or [])
            reserved = {rc.name for rc in self.rows} | {DETAILS_KEY}
            aliases = unique_aliases([str(v) for v in values], reserved=reserved)
            pcol = self.pivot_column.column
            for value, alias in zip(values, aliases):
                selected.append(func.sum(case((pcol == value, value_col), else_=null())).label(alias))
                pivot_aliases[alias] = value
                value_keys.append(alias)
        else:
            for key, expr in self._metric_exprs.items():
                selected.append(expr.label(key))
                value_keys.append(key)

        selected.append(details_agg_expr(self.dialect).label(DETAILS_KEY))

        stmt = select(*selected).select_from(FACT_TABLE).where(*self.base_filter()).group_by(*dims)
        stmt = stmt.order_by(*self._order_by())
        page_size = self.request.pageSize
        stmt = stmt.limit(page_size).offset((self.request.page - 1) * page_size)
        return MainQuery(stmt, pivot_aliases, value_keys)

    def _order_by(self) -> List[ColumnElement]:
        dims = self._dimension_columns()
        sort = self.request.sortBy
        if sort is None or self.sort_column is None:
            return dims
        direction = desc if sort.direction == "desc" else asc
        if self.sort_column.name == SORT_VALUE_FIELD:
            primary = func.sum(FACT_TABLE.c.value)
            rest = dims
        else:
            primary = self.sort_column.column
            rest = [rc.column for rc in self.rows if rc.name != self.sort_column.name]
        # Remaining dimensions break ties so pages never overlap
        return [direction(primary)] + [asc(c) for c in rest]

    def totals_query(self) -> Optional[Select]:
        """Each requested metric over the whole filtered set; None when no metrics were asked for."""
        if not self._metric_exprs:
            return None
        cols = [expr.label(key) for key, expr in self._metric_exprs.items()]
        return select(*cols).select_from(FACT_TABLE).where(*self.base_filter())
