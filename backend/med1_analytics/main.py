from __future__ import annotations

import logging
from contextlib import asynccontextmanager
import time as _t

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import settings
from .db import check_engine_connection, dispose_all_engines, get_engine
from .logging_config import configure_logging
from .metrics import gauge_dec, gauge_inc, render_prometheus, summary_observe
from .models import init_db
from .routers import dre as dre_router
from .routers import pivot as pivot_router
from .schemas import HealthResponse

logger = logging.getLogger(__name__)


# Startup: logging and optional dev schema; shutdown: release pooled connections
@asynccontextmanager
async def _lifespan(_app: FastAPI):
    configure_logging(settings.log_level)
    logger.info("starting %s (env=%s)", settings.app_name, settings.environment)
    if settings.create_tables:
        init_db(get_engine())
    yield
    released = dispose_all_engines()
    logger.info("disposed %s engine(s)", released)


app = FastAPI(title=settings.app_name, lifespan=_lifespan)

# CORS: always use explicit origins to ensure ACAO is set with credentials
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    # Regex safety net for the local Next.js dev server
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1):3000",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# Respect X-Forwarded-* headers when running behind a reverse proxy
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")


# Request duration (ms) and active requests gauge, API paths only
@app.middleware("http")
async def _metrics_mw(request: Request, call_next):
    path = request.url.path or ""
    method = request.method or "GET"
    is_api = path.startswith("/api/") and path != "/api/metrics"
    if is_api:
        gauge_inc("app_active_requests", 1.0, {"path": path, "method": method})
    _s = _t.perf_counter()
    try:
        resp: Response = await call_next(request)
        return resp
    finally:
        _e = int((_t.perf_counter() - _s) * 1000)
        if is_api:
            gauge_dec("app_active_requests", 1.0, {"path": path, "method": method})
            summary_observe("app_request_duration_ms", _e, {"path": path, "method": method})


app.include_router(pivot_router.router, prefix="/api")
app.include_router(dre_router.router, prefix="/api")


@app.get("/api/healthz", response_model=HealthResponse)
def healthz(engine: Engine = Depends(get_engine)) -> HealthResponse:
    ok, _err = check_engine_connection(engine)
    return HealthResponse(
        status="ok" if ok else "degraded",
        app=settings.app_name,
        env=settings.environment,
        database="ok" if ok else "unavailable",
    )


# Root for convenience
@app.get("/")
async def root():
    return {"ok": True, "app": settings.app_name}


@app.get("/api/metrics")
async def metrics() -> Response:
    body = render_prometheus()
    return Response(content=body, media_type="text/plain; version=0.0.4; charset=utf-8")
