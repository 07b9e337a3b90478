from __future__ import annotations

import logging
from typing import Any, Dict, List

from pydantic import ValidationError as PydanticValidationError

from .columns import is_allowed_column
from .config import settings
from .errors import ValidationError
from .metric_catalog import is_known_metric
from .schemas import PivotRequest

logger = logging.getLogger(__name__)

# sortBy.field may also name the fact amount itself (orders by SUM(value))
SORT_BY_VALUE = "value"


def _str_list(raw: Dict[str, Any], key: str) -> List[str]:
    val = raw.get(key)
    if not isinstance(val, list):
        return []
    return [v for v in val if isinstance(v, str)]


def _duplicates(values: List[str]) -> List[str]:
    seen: set = set()
    out: List[str] = []
    for v in values:
        if v in seen and v not in out:
            out.append(v)
        seen.add(v)
    return out


def _format_pydantic_errors(e: PydanticValidationError) -> List[str]:
    out: List[str] = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        out.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return out


def validate_pivot_request(raw: Any) -> PivotRequest:
    """Validate a raw pivot request body and return the typed request.

    Collects every structural and semantic violation before raising, so the
    client gets the complete list in one round trip. Never touches the database.
    """
    if not isinstance(raw, dict):
        raise ValidationError(["Request body must be a JSON object"])

    errors: List[str] = []
    req: PivotRequest | None = None
    try:
        req = PivotRequest.model_validate(raw)
    except PydanticValidationError as e:
        errors.extend(_format_pydantic_errors(e))

    rows = _str_list(raw, "rows")
    columns = _str_list(raw, "columns")
    metrics = _str_list(raw, "metrics")

    bad_rows = [r for r in rows if not is_allowed_column(r)]
    if bad_rows:
        errors.append(f"Invalid rows: {', '.join(bad_rows)}")
    bad_cols = [c for c in columns if not is_allowed_column(c)]
    if bad_cols:
        errors.append(f"Invalid columns: {', '.join(bad_cols)}")
    for key, values in (("rows", rows), ("columns", columns)):
        dupes = _duplicates(values)
        if dupes:
            errors.append(f"Duplicate {key}: {', '.join(dupes)}")
    bad_metrics = [m for m in metrics if not is_known_metric(m)]
    if bad_metrics:
        errors.append(f"Invalid metrics: {', '.join(bad_metrics)}")

    if req is not None:
        if not req.rows:
            errors.append("rows: at least one dimension is required")
        if not req.metrics and not req.columns:
            errors.append("metrics: at least one metric is required")
        if req.pageSize > settings.pivot_max_page_size:
            errors.append(f"pageSize: must be at most {settings.pivot_max_page_size}")
        if req.sortBy is not None:
            field = req.sortBy.field
            if not is_allowed_column(field):
                errors.append(f"Invalid sortBy field: {field}")
            elif field != SORT_BY_VALUE and field not in req.rows:
                errors.append(f"sortBy.field must be one of the row dimensions or '{SORT_BY_VALUE}': {field}")

    if errors or req is None:
        logger.info("pivot request rejected: %s", errors)
        raise ValidationError(errors or ["Invalid request data"])
    return req
