from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..dre_analytics import DRESummary, analyze
from ..errors import ValidationError
from ..schemas import DREAnalyticsRequest, DREAnalyticsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dre", tags=["dre"])


@router.post("/analytics", response_model=DREAnalyticsResponse)
def dre_analytics(payload: DREAnalyticsRequest):
    """Aggregate posted fact rows the way the DRE page does, without touching the database."""
    summary = DRESummary(**payload.summary.model_dump()) if payload.summary is not None else None
    try:
        return analyze(
            payload.rows,
            summary=summary,
            dimensions=payload.dimensions,
            metrics=payload.metrics,
            reference_year=payload.referenceYear,
        )
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"message": "Invalid request data", "errors": e.errors})
