from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import settings


class HealthResponse(BaseModel):
    status: str = "ok"
    app: str
    env: str
    database: str = "ok"


# --- Pivot ---
class PivotFilters(BaseModel):
    model_config = ConfigDict(extra="ignore")

    scenario: Optional[str] = None
    version: List[str] = Field(default_factory=list)
    period: List[str] = Field(default_factory=list)
    bu: List[str] = Field(default_factory=list)


class SortBy(BaseModel):
    field: str
    direction: Literal["asc", "desc"] = "asc"


class PivotRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    filters: PivotFilters = Field(default_factory=PivotFilters)
    rows: List[str] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)
    metrics: List[str] = Field(default_factory=list)
    sortBy: Optional[SortBy] = None
    page: int = Field(default=1, ge=1)
    pageSize: int = Field(default_factory=lambda: settings.pivot_default_page_size, ge=1)
    referenceYear: Optional[int] = Field(default=None, ge=1900, le=9999, description="Year used by current_year/previous_year")


class PivotMetadata(BaseModel):
    page: int
    pageSize: int
    total: int


class PivotResponse(BaseModel):
    data: List[Dict[str, Any]] = Field(default_factory=list)
    totals: Dict[str, Optional[float]] = Field(default_factory=dict)
    metadata: PivotMetadata


class DimensionOut(BaseModel):
    key: str
    label: str
    type: str = "string"


class CatalogResponse(BaseModel):
    dimensions: List[DimensionOut]
    baseMetrics: List[Dict[str, Any]]
    derivedMetrics: List[Dict[str, Any]]
    tokens: List[Dict[str, Any]]


# --- DRE analytics ---
class FactRow(BaseModel):
    """Fact row as the DRE page holds it (already fetched)."""

    model_config = ConfigDict(extra="ignore")

    period: Optional[str] = None
    version: Optional[str] = None
    scenario: Optional[str] = None
    bu: Optional[str] = None
    region: Optional[str] = None
    channel: Optional[str] = None
    productSku: Optional[str] = None
    customer: Optional[str] = None
    costCenterCode: Optional[str] = None
    glAccount: Optional[str] = None
    pnlLine: Optional[str] = None
    value: float = 0.0


class DRESummaryIn(BaseModel):
    totalRevenue: float = 0.0
    totalCosts: float = 0.0
    totalExpenses: float = 0.0


class DREAnalyticsRequest(BaseModel):
    rows: List[FactRow] = Field(default_factory=list)
    summary: Optional[DRESummaryIn] = Field(default=None, description="Defaults to a summary computed from rows")
    dimensions: List[Literal["costCenter", "product", "customer", "channel", "region", "bu"]] = Field(
        default_factory=lambda: ["costCenter", "product", "customer", "channel", "region", "bu"]
    )
    metrics: List[str] = Field(default_factory=list, description="Catalog metric keys to evaluate over rows")
    referenceYear: Optional[int] = Field(default=None, ge=1900, le=9999)


class DREAnalyticsResponse(BaseModel):
    summary: Dict[str, float]
    metrics: Dict[str, Optional[float]]
    periodMetrics: Dict[str, Any]
    dimensions: Dict[str, List[Dict[str, Any]]]
    periods: List[Dict[str, Any]]
    costCenters: List[Dict[str, Any]]
    plStatement: Dict[str, Optional[float]]
    catalogMetrics: Dict[str, Optional[float]] = Field(default_factory=dict)
