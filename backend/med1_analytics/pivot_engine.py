from __future__ import annotations

import json
import logging
import time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.engine import Engine, Result
from sqlalchemy.exc import SQLAlchemyError

from .errors import DatabaseQueryError
from .metrics import counter_inc, summary_observe
from .pivot_sql import DETAILS_KEY, PivotQueryBuilder, render_sql
from .retry import with_retry
from .schemas import PivotRequest

logger = logging.getLogger(__name__)


def _num(v: Any) -> Any:
    if isinstance(v, Decimal):
        return float(v)
    return v


def _details(v: Any) -> List[Dict[str, Any]]:
    # SQLite hands back the JSON text; Postgres drivers decode json_agg already
    if v is None:
        return []
    if isinstance(v, (bytes, bytearray)):
        v = v.decode("utf-8")
    if isinstance(v, str):
        v = json.loads(v)
    return [{k: _num(x) for k, x in (d or {}).items()} for d in v]


class PivotEngine:
    """Run a validated pivot request against the fact store.

    Steps are strictly sequential: count, unique pivot values (when pivoting),
    main page, totals. Each is a single read through the retry wrapper; a step
    that still fails aborts the whole request.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        attempts: Optional[int] = None,
        backoff_ms: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine = engine
        self.attempts = attempts
        self.backoff_ms = backoff_ms
        self.sleep = sleep

    def _execute(self, step: str, stmt: Any, reader: Callable[[Result], Any]) -> Any:
        def _op() -> Any:
            with self.engine.connect() as conn:
                return reader(conn.execute(stmt))

        counter_inc("pivot_queries_total", {"step": step})
        try:
            return with_retry(
                _op,
                attempts=self.attempts,
                backoff_ms=self.backoff_ms,
                label=f"pivot.{step}",
                sleep=self.sleep,
            )
        except SQLAlchemyError as e:
            sql = render_sql(stmt, self.engine.dialect)
            attempts = int(getattr(e, "attempts", 1) or 1)
            logger.error("pivot %s query failed after %s attempt(s): %s | SQL: %s", step, attempts, e, sql)
            counter_inc("pivot_query_failures_total", {"step": step})
            raise DatabaseQueryError(
                f"Pivot {step} query failed: {e.__class__.__name__}",
                sql=sql,
                attempts=attempts,
                step=step,
            ) from e

    def run(self, request: PivotRequest) -> Dict[str, Any]:
        t0 = time.perf_counter()
        builder = PivotQueryBuilder(request, self.engine.dialect.name)
        outcome = "error"
        try:
            total = int(self._execute("count", builder.count_query(), lambda r: r.scalar()) or 0)
            metadata = {"page": request.page, "pageSize": request.pageSize, "total": total}
            if total == 0:
                outcome = "empty"
                return {"data": [], "totals": {}, "metadata": metadata}

            pivot_values: Optional[List[Any]] = None
            if builder.is_pivot:
                pivot_values = self._execute("unique_values", builder.unique_values_query(), lambda r: r.scalars().all())

            main = builder.main_query(pivot_values)
            rows = self._execute("main", main.statement, lambda r: r.mappings().all())
            data: List[Dict[str, Any]] = []
            for m in rows:
                item = {k: _num(v) for k, v in m.items() if k != DETAILS_KEY}
                item[DETAILS_KEY] = _details(m.get(DETAILS_KEY))
                data.append(item)

            totals: Dict[str, Any] = {}
            totals_stmt = builder.totals_query()
            if totals_stmt is not None:
                trow = self._execute("totals", totals_stmt, lambda r: r.mappings().first())
                totals = {k: _num(trow[k]) if trow is not None else None for k in builder.metric_keys}

            outcome = "ok"
            return {"data": data, "totals": totals, "metadata": metadata}
        finally:
            dt = time.perf_counter() - t0
            counter_inc("pivot_requests_total", {"outcome": outcome})
            summary_observe("pivot_request_seconds", dt, {"outcome": outcome})
            logger.debug("pivot request rows=%s columns=%s metrics=%s outcome=%s in %.3fs",
                         request.rows, request.columns, request.metrics, outcome, dt)
