from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from ..columns import DIMENSIONS
from ..config import settings
from ..db import get_engine
from ..errors import DatabaseQueryError, ValidationError
from ..metric_catalog import describe_catalog
from ..metrics import counter_inc
from ..pivot_engine import PivotEngine
from ..schemas import CatalogResponse, DimensionOut, PivotResponse
from ..validation import validate_pivot_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pivot", tags=["pivot"])


def _invalid(errors: list[str]) -> JSONResponse:
    return JSONResponse(status_code=400, content={"message": "Invalid request data", "errors": errors})


def _failure(message: str, e: Exception, details: Dict[str, Any] | None = None) -> JSONResponse:
    body: Dict[str, Any] = {"message": message, "error": str(e)}
    # SQL and step context stay server-side in production
    if not settings.is_production and details:
        body["details"] = details
    return JSONResponse(status_code=500, content=body)


@router.post("/query", response_model=PivotResponse)
def pivot_query(payload: Any = Body(...), engine: Engine = Depends(get_engine)):
    try:
        req = validate_pivot_request(payload)
    except ValidationError as e:
        counter_inc("pivot_validation_failures_total")
        return _invalid(e.errors)

    try:
        return PivotEngine(engine).run(req)
    except ValidationError as e:
        # Column/metric checks repeated by the builder
        return _invalid(e.errors)
    except DatabaseQueryError as e:
        return _failure(
            "Error executing pivot query",
            e,
            {"step": e.step, "attempts": e.attempts, "sql": e.sql},
        )
    except Exception as e:
        logger.exception("pivot query failed unexpectedly")
        return _failure("Error executing pivot query", e, {"type": e.__class__.__name__})


@router.get("/catalog", response_model=CatalogResponse)
def pivot_catalog() -> CatalogResponse:
    cat = describe_catalog()
    return CatalogResponse(
        dimensions=[DimensionOut(**d) for d in DIMENSIONS],
        baseMetrics=cat["base"],
        derivedMetrics=cat["derived"],
        tokens=cat["tokens"],
    )
