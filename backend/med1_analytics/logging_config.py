from __future__ import annotations

import logging

from .config import settings

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once (uvicorn keeps its own handlers)."""
    lvl = str(level or settings.log_level or "INFO").upper()
    logging.basicConfig(level=getattr(logging, lvl, logging.INFO), format=_FORMAT)
    logging.getLogger("med1_analytics").setLevel(getattr(logging, lvl, logging.INFO))
