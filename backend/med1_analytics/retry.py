from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy import exc as sa_exc

from .config import settings
from .metrics import counter_inc

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE codes worth another attempt: serialization failure, deadlock,
# and the connection-exception class (08xxx)
_TRANSIENT_SQLSTATES = {"40001", "40P01", "57P01", "HYT00", "08S01"}

# Driver messages of an OperationalError without SQLSTATE that mean the
# server or file was busy or unreachable rather than the statement being wrong
_TRANSIENT_MESSAGES = (
    "database is locked",
    "database table is locked",
    "server closed the connection",
    "could not connect",
    "connection refused",
    "connection reset",
    "terminating connection",
    "timeout expired",
)


def _sqlstate(e: BaseException) -> Optional[str]:
    orig = getattr(e, "orig", None)
    for attr in ("pgcode", "sqlstate"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)
    return None


def _driver_message(e: BaseException) -> str:
    orig = getattr(e, "orig", None)
    return str(orig if orig is not None else e).lower()


def is_transient_error(e: BaseException) -> bool:
    """Classify a database error as retryable.

    - Connection loss/invalidation, pool timeouts → retry
    - Deadlocks and serialization failures (40P01, 40001) → retry
    - OperationalError without SQLSTATE → retry only on lock/busy or
      connection messages; SQLite "no such table" and friends do not
    - Integrity/programming/data errors and anything non-DB → no retry
    """
    if isinstance(e, sa_exc.DBAPIError) and e.connection_invalidated:
        return True
    code = _sqlstate(e)
    if code and (code in _TRANSIENT_SQLSTATES or code.startswith("08")):
        return True
    if isinstance(e, (sa_exc.IntegrityError, sa_exc.ProgrammingError, sa_exc.DataError)):
        return False
    if isinstance(e, (sa_exc.InterfaceError, sa_exc.TimeoutError, sa_exc.DisconnectionError)):
        return True
    if isinstance(e, sa_exc.OperationalError):
        if code:
            return False
        msg = _driver_message(e)
        return any(m in msg for m in _TRANSIENT_MESSAGES)
    return False


def with_retry(
    operation: Callable[[], T],
    *,
    attempts: Optional[int] = None,
    backoff_ms: Optional[int] = None,
    label: str = "query",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run `operation`, re-invoking it on transient database failures.

    Waits `backoff_ms * attempt` between tries and gives up after `attempts`
    total calls. The last error is re-raised with an `attempts` attribute set.
    """
    max_attempts = max(1, int(attempts if attempts is not None else settings.db_retry_attempts))
    step_ms = max(0, int(backoff_ms if backoff_ms is not None else settings.db_retry_backoff_ms))
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except Exception as e:
            if not is_transient_error(e):
                e.attempts = attempt  # type: ignore[attr-defined]
                raise
            if attempt >= max_attempts:
                logger.error("%s failed after %s attempts: %s", label, attempt, e)
                counter_inc("db_retry_exhausted_total", {"step": label})
                e.attempts = attempt  # type: ignore[attr-defined]
                raise
            logger.warning("%s attempt %s failed (transient), retrying: %s", label, attempt, e)
            counter_inc("db_retries_total", {"step": label})
            sleep(step_ms * attempt / 1000.0)
