from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

from .config import settings

logger = logging.getLogger(__name__)

_ENGINE_CACHE: dict[str, Engine] = {}
_CACHE_LOCK = threading.Lock()


def _normalize_dsn(dsn: str) -> str:
    d = (dsn or "").strip()
    low = d.lower()
    if low.startswith("postgres://"):
        d = "postgresql+psycopg2://" + d[len("postgres://"):]
    return d


def _ensure_sqlite_dir(dsn: str) -> None:
    url = make_url(dsn)
    db = url.database or ""
    if not db or db == ":memory:" or db.startswith("file:"):
        return
    Path(db).resolve().parent.mkdir(parents=True, exist_ok=True)


def get_engine_from_dsn(dsn: str) -> Engine:
    """Create (and cache) an engine from a SQLAlchemy DSN.

    Applies conservative pool settings to avoid pool exhaustion and stale
    connections, and reuses engines across requests.
    """
    d = _normalize_dsn(dsn)
    with _CACHE_LOCK:
        eng = _ENGINE_CACHE.get(d)
        if eng is not None:
            return eng

        kwargs: dict = {"pool_pre_ping": True}
        low = d.lower()
        if low.startswith("sqlite"):
            # SQLite in multithreaded FastAPI: allow cross-thread connections
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in low or low.rstrip("/") in {"sqlite:", "sqlite+pysqlite:"}:
                # One shared connection so every request sees the same in-memory database
                kwargs["poolclass"] = StaticPool
            else:
                _ensure_sqlite_dir(d)
                kwargs.update({"pool_size": 5, "max_overflow": 10})
        else:
            # Network DBs (Postgres and friends)
            kwargs.update({
                "pool_size": 5,
                "max_overflow": 20,
                "pool_recycle": 1800,  # seconds
                "pool_timeout": 30,
            })

        eng = create_engine(d, **kwargs)
        _ENGINE_CACHE[d] = eng
        logger.info("created engine for %s (dialect=%s)", make_url(d).render_as_string(hide_password=True), eng.dialect.name)
        return eng


def get_engine() -> Engine:
    """Engine for the configured fact store."""
    return get_engine_from_dsn(settings.database_url)


def check_engine_connection(engine: Engine) -> tuple[bool, Optional[str]]:
    """Run `SELECT 1`; returns (ok, error message)."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True, None
    except SQLAlchemyError as e:
        logger.warning("engine connection check failed: %s", e)
        return False, str(e)


def dispose_all_engines() -> int:
    """Dispose all cached engines; returns how many were released."""
    with _CACHE_LOCK:
        engines = list(_ENGINE_CACHE.values())
        _ENGINE_CACHE.clear()
    for eng in engines:
        eng.dispose()
    return len(engines)
