"""
Metric catalog and derived-metric compiler.

Base metrics are direct aggregations over the fact table. Derived metrics are
formula strings over a fixed token vocabulary (actual, forecast, revenue,
cogs, ebitda, current_year, previous_year). Formulas are parsed once, when the
catalog is built, into a small expression tree; the tree is then either

- compiled to a SQLAlchemy aggregate expression (server pivot path), or
- evaluated over in-memory fact rows (DRE analytics path).

Both paths read the same token definitions, so a metric cannot mean one thing
in SQL and another in memory.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from sqlalchemy import Float, case, cast, func, literal
from sqlalchemy.sql.elements import ColumnElement

from .errors import UnknownMetricError
from .models import FACT_TABLE

# P&L lines as written by the importer
PNL_NET_REVENUE = "Net Revenue"
PNL_COGS = "Cost of Goods Sold"
PNL_MARKETING = "Marketing Expenses"
PNL_SGA = "SG&A Expenses"
PNL_EXPENSE_LINES = (PNL_MARKETING, PNL_SGA)

VERSION_ACTUAL = "Actual"
VERSION_FORECAST = "Forecast"


def row_value(row: Any, name: str) -> Any:
    """Read a field from a fact row given as a mapping or an ORM object."""
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def row_amount(row: Any) -> float:
    v = row_value(row, "value")
    if v is None:
        return 0.0
    return float(v)


@dataclass(frozen=True)
class MetricContext:
    """Per-request inputs that some tokens depend on."""

    reference_year: int = field(default_factory=lambda: date.today().year)


# --- Token vocabulary ---

@dataclass(frozen=True)
class Condition:
    """Row predicate: `column IN values`, or `column LIKE '<year>-%'` when year_offset is set."""

    column: str
    values: Tuple[str, ...] = ()
    year_offset: Optional[int] = None

    def to_sql(self, ctx: MetricContext) -> ColumnElement:
        col = FACT_TABLE.c[self.column]
        if self.year_offset is not None:
            return col.like(f"{ctx.reference_year + self.year_offset}-%")
        if len(self.values) == 1:
            return col == self.values[0]
        return col.in_(self.values)

    def matches(self, row: Any, ctx: MetricContext) -> bool:
        v = row_value(row, self.column)
        if self.year_offset is not None:
            return v is not None and str(v).startswith(f"{ctx.reference_year + self.year_offset}-")
        return v in self.values


@dataclass(frozen=True)
class TokenDef:
    """A conditional sum: each (condition, sign) adds sign * value for matching rows.

    Conditions are tried in order; a row contributes through its first match only.
    """

    name: str
    terms: Tuple[Tuple[Condition, int], ...]
    description: str = ""

    def to_sql(self, ctx: MetricContext) -> ColumnElement:
        value = FACT_TABLE.c.value
        whens = [(cond.to_sql(ctx), value if sign > 0 else -value) for cond, sign in self.terms]
        return func.sum(case(*whens, else_=0))

    def evaluate(self, rows: Iterable[Any], ctx: MetricContext) -> float:
        total = 0.0
        for row in rows:
            for cond, sign in self.terms:
                if cond.matches(row, ctx):
                    total += sign * row_amount(row)
                    break
        return total


TOKENS: Dict[str, TokenDef] = {
    t.name: t
    for t in (
        TokenDef("actual", ((Condition("version", (VERSION_ACTUAL,)), 1),), "Sum of Actual version"),
        TokenDef("forecast", ((Condition("version", (VERSION_FORECAST,)), 1),), "Sum of Forecast version"),
        TokenDef("revenue", ((Condition("pnlLine", (PNL_NET_REVENUE,)), 1),), "Net Revenue"),
        TokenDef("cogs", ((Condition("pnlLine", (PNL_COGS,)), 1),), "Cost of Goods Sold"),
        TokenDef(
            "ebitda",
            (
                (Condition("pnlLine", (PNL_NET_REVENUE,)), 1),
                (Condition("pnlLine", (PNL_COGS,) + PNL_EXPENSE_LINES), -1),
            ),
            "Net Revenue minus COGS, Marketing and SG&A",
        ),
        TokenDef("current_year", ((Condition("period", year_offset=0), 1),), "Sum for the reference year"),
        TokenDef("previous_year", ((Condition("period", year_offset=-1), 1),), "Sum for the year before"),
    )
}


# --- Formula tree ---

class FormulaError(ValueError):
    pass


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class TokenRef:
    name: str


@dataclass(frozen=True)
class Negate:
    operand: "Node"


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"


Node = Union[Number, TokenRef, Negate, BinaryOp]

_LEX_RE = re.compile(r"\s*(?:(\d+(?:\.\d+)?)|([A-Za-z_][A-Za-z0-9_]*)|(\S))")


def _lex(formula: str) -> List[Tuple[str, str]]:
    out: List[Tuple[str, str]] = []
    pos = 0
    text = formula.rstrip()
    while pos < len(text):
        m = _LEX_RE.match(text, pos)
        if not m:
            break
        num, ident, sym = m.groups()
        if num is not None:
            out.append(("num", num))
        elif ident is not None:
            if ident not in TOKENS:
                raise FormulaError(f"Unknown token '{ident}' in formula: {formula}")
            out.append(("tok", ident))
        elif sym in "+-*/()":
            out.append(("sym", sym))
        else:
            raise FormulaError(f"Unexpected character '{sym}' in formula: {formula}")
        pos = m.end()
    return out


class _Parser:
    """Recursive descent: expr := term (('+'|'-') term)*; term := unary (('*'|'/') unary)*."""

    def __init__(self, formula: str):
        self.formula = formula
        self.items = _lex(formula)
        self.i = 0

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.items[self.i] if self.i < len(self.items) else None

    def _take(self) -> Tuple[str, str]:
        it = self._peek()
        if it is None:
            raise FormulaError(f"Unexpected end of formula: {self.formula}")
        self.i += 1
        return it

    def parse(self) -> Node:
        node = self._expr()
        if self._peek() is not None:
            raise FormulaError(f"Trailing input '{self._peek()[1]}' in formula: {self.formula}")
        return node

    def _expr(self) -> Node:
        node = self._term()
        while self._peek() in (("sym", "+"), ("sym", "-")):
            op = self._take()[1]
            node = BinaryOp(op, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._unary()
        while self._peek() in (("sym", "*"), ("sym", "/")):
            op = self._take()[1]
            node = BinaryOp(op, node, self._unary())
        return node

    def _unary(self) -> Node:
        if self._peek() == ("sym", "-"):
            self._take()
            return Negate(self._unary())
        return self._primary()

    def _primary(self) -> Node:
        kind, val = self._take()
        if kind == "num":
            return Number(float(val))
        if kind == "tok":
            return TokenRef(val)
        if val == "(":
            node = self._expr()
            if self._take() != ("sym", ")"):
                raise FormulaError(f"Missing ')' in formula: {self.formula}")
            return node
        raise FormulaError(f"Unexpected '{val}' in formula: {self.formula}")


def parse_formula(formula: str) -> Node:
    if not formula or not formula.strip():
        raise FormulaError("Empty formula")
    return _Parser(formula).parse()


def formula_tokens(node: Node) -> List[str]:
    if isinstance(node, TokenRef):
        return [node.name]
    if isinstance(node, Negate):
        return formula_tokens(node.operand)
    if isinstance(node, BinaryOp):
        return formula_tokens(node.left) + formula_tokens(node.right)
    return []


def compile_formula(node: Node, ctx: MetricContext) -> ColumnElement:
    """Compile a formula tree to a SQL aggregate. Division by zero yields NULL."""
    if isinstance(node, Number):
        return literal(node.value, Float)
    if isinstance(node, TokenRef):
        return TOKENS[node.name].to_sql(ctx)
    if isinstance(node, Negate):
        return -compile_formula(node.operand, ctx)
    left = compile_formula(node.left, ctx)
    right = compile_formula(node.right, ctx)
    if node.op == "+":
        return left + right
    if node.op == "-":
        return left - right
    if node.op == "*":
        return left * right
    return cast(left, Float) / func.nullif(right, 0)


def evaluate_formula(node: Node, rows: List[Any], ctx: MetricContext) -> Optional[float]:
    """Evaluate a formula tree over fact rows. None plays the role of SQL NULL."""
    if isinstance(node, Number):
        return node.value
    if isinstance(node, TokenRef):
        return TOKENS[node.name].evaluate(rows, ctx)
    if isinstance(node, Negate):
        v = evaluate_formula(node.operand, rows, ctx)
        return None if v is None else -v
    left = evaluate_formula(node.left, rows, ctx)
    right = evaluate_formula(node.right, rows, ctx)
    if left is None or right is None:
        return None
    if node.op == "+":
        return left + right
    if node.op == "-":
        return left - right
    if node.op == "*":
        return left * right
    if right == 0:
        return None
    return left / right


# --- Catalog ---

@dataclass(frozen=True)
class BaseMetric:
    key: str
    label: str
    aggregation: str  # sum | avg | count | line_sum
    pnl_line: Optional[str] = None
    format: str = "currency"

    @property
    def additive(self) -> bool:
        return self.aggregation in {"sum", "count", "line_sum"}

    def to_sql(self, ctx: MetricContext) -> ColumnElement:
        value = FACT_TABLE.c.value
        if self.aggregation == "sum":
            return func.sum(value)
        if self.aggregation == "avg":
            return func.avg(value)
        if self.aggregation == "count":
            return func.count()
        return func.sum(case((FACT_TABLE.c.pnlLine == self.pnl_line, value), else_=0))

    def evaluate(self, rows: List[Any], ctx: MetricContext) -> Optional[float]:
        if self.aggregation == "count":
            return float(len(rows))
        if self.aggregation == "line_sum":
            return sum(row_amount(r) for r in rows if row_value(r, "pnlLine") == self.pnl_line)
        amounts = [row_amount(r) for r in rows]
        if self.aggregation == "avg":
            return (sum(amounts) / len(amounts)) if amounts else None
        return sum(amounts)


@dataclass(frozen=True)
class DerivedMetric:
    key: str
    label: str
    calculation: str
    format: str = "currency"
    description: str = ""
    tree: Node = field(default=None, compare=False)  # type: ignore[assignment]

    @property
    def additive(self) -> bool:
        # Sums and differences of conditional sums stay additive; ratios and products do not
        def _additive(n: Node) -> bool:
            if isinstance(n, TokenRef):
                return True
            if isinstance(n, Negate):
                return _additive(n.operand)
            if isinstance(n, BinaryOp):
                return n.op in {"+", "-"} and _additive(n.left) and _additive(n.right)
            return False

        return _additive(self.tree)

    def to_sql(self, ctx: MetricContext) -> ColumnElement:
        return compile_formula(self.tree, ctx).self_group()

    def evaluate(self, rows: List[Any], ctx: MetricContext) -> Optional[float]:
        return evaluate_formula(self.tree, rows, ctx)


def derived(key: str, label: str, calculation: str, fmt: str = "currency", description: str = "") -> DerivedMetric:
    return DerivedMetric(key, label, calculation, fmt, description, parse_formula(calculation))


_LINE_LABELS = {
    PNL_NET_REVENUE: "Receita Líquida",
    PNL_COGS: "Custo dos Produtos Vendidos",
    PNL_MARKETING: "Despesas de Marketing",
    PNL_SGA: "Despesas SG&A",
}

BASE_METRICS: Dict[str, BaseMetric] = {
    m.key: m
    for m in [
        BaseMetric("value_sum", "Soma", "sum"),
        BaseMetric("value_avg", "Média", "avg"),
        BaseMetric("row_count", "Contagem", "count", format="number"),
        # Keys the pivot UI historically sent verbatim
        BaseMetric("SUM(value)", "Soma", "sum"),
        BaseMetric("AVG(value)", "Média", "avg"),
        BaseMetric("COUNT(*)", "Contagem", "count", format="number"),
    ]
    + [BaseMetric(f"{line}_sum", label, "line_sum", pnl_line=line) for line, label in _LINE_LABELS.items()]
}

DERIVED_METRICS: Dict[str, DerivedMetric] = {
    m.key: m
    for m in [
        derived("variance", "Variação (Real x Forecast)", "actual - forecast",
                description="Actual minus Forecast"),
        derived("variance_pct", "Variação %", "(actual - forecast) / forecast", "percent",
                description="Actual vs Forecast, relative to Forecast"),
        derived("gross_profit", "Lucro Bruto", "revenue - cogs",
                description="Net Revenue minus COGS"),
        derived("gross_margin", "Margem Bruta", "(revenue - cogs) / revenue", "percent",
                description="Gross profit over Net Revenue"),
        derived("ebitda", "EBITDA", "ebitda",
                description="Gross profit minus Marketing and SG&A expenses"),
        derived("ebitda_margin", "Margem EBITDA", "ebitda / revenue", "percent",
                description="EBITDA over Net Revenue"),
        derived("yoy_delta", "Variação Anual", "current_year - previous_year",
                description="Reference year minus the year before"),
        derived("yoy_growth", "Crescimento Anual", "(current_year - previous_year) / previous_year", "percent",
                description="Year-over-year growth relative to the year before"),
    ]
}

if set(BASE_METRICS) & set(DERIVED_METRICS):
    raise RuntimeError("metric keys must be unique across base and derived catalogs")

Metric = Union[BaseMetric, DerivedMetric]


def get_metric(key: str) -> Metric:
    m = BASE_METRICS.get(key) or DERIVED_METRICS.get(key)
    if m is None:
        raise UnknownMetricError(key)
    return m


def is_known_metric(key: str) -> bool:
    return key in BASE_METRICS or key in DERIVED_METRICS


def compile_metric(key: str, ctx: Optional[MetricContext] = None) -> ColumnElement:
    """SQL aggregate for `key`, unlabelled."""
    return get_metric(key).to_sql(ctx or MetricContext())


def resolve_metric(key: str, ctx: Optional[MetricContext] = None) -> ColumnElement:
    """SQL aggregate for `key`, labelled with the key (rendered as `(...) AS "<key>"`)."""
    return compile_metric(key, ctx).label(key)


def evaluate_metric(key: str, rows: Iterable[Any], ctx: Optional[MetricContext] = None) -> Optional[float]:
    """Compute `key` over in-memory fact rows with the same semantics as the SQL path."""
    return get_metric(key).evaluate(list(rows), ctx or MetricContext())


def describe_catalog() -> Dict[str, List[Dict[str, Any]]]:
    base = [
        {"key": m.key, "label": m.label, "format": m.format, "additive": m.additive}
        for m in BASE_METRICS.values()
    ]
    der = [
        {
            "key": m.key,
            "label": m.label,
            "calculation": m.calculation,
            "format": m.format,
            "description": m.description,
            "additive": m.additive,
        }
        for m in DERIVED_METRICS.values()
    ]
    tokens = [{"key": t.name, "description": t.description} for t in TOKENS.values()]
    return {"base": base, "derived": der, "tokens": tokens}
