from __future__ import annotations

from typing import List, Optional


class PivotError(Exception):
    """Base class for analytics engine failures."""


class ValidationError(PivotError):
    """Request rejected before any query runs.

    Carries every violation found so the caller can report them in one round trip.
    """

    def __init__(self, errors: List[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors))


class InvalidColumnError(ValidationError):
    def __init__(self, column: str):
        self.column = column
        super().__init__(f"Invalid column: {column}")


class UnknownMetricError(ValidationError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Unknown metric: {key}")


class DatabaseQueryError(PivotError):
    """A fact-store query failed (after retries, when the failure was transient).

    `sql` is kept for server-side logging only.
    """

    def __init__(self, message: str, *, sql: Optional[str] = None, attempts: int = 1, step: Optional[str] = None):
        self.sql = sql
        self.attempts = attempts
        self.step = step
        super().__init__(message)
