from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.engine import Dialect
from sqlalchemy.sql.elements import ColumnElement

from .errors import InvalidColumnError
from .models import FACT_TABLE

# Columns that may appear as identifiers in composed pivot queries
ALLOWED_COLUMNS = frozenset({
    "pnlLine",
    "customer",
    "channel",
    "productSku",
    "version",
    "period",
    "bu",
    "region",
    "costCenterCode",
    "glAccount",
    "value",
})

# Dimensions offered to the pivot UI (label shown in the column picker)
DIMENSIONS: List[Dict[str, str]] = [
    {"key": "pnlLine", "label": "Linha DRE", "type": "string"},
    {"key": "customer", "label": "Cliente", "type": "string"},
    {"key": "channel", "label": "Canal", "type": "string"},
    {"key": "productSku", "label": "SKU do Produto", "type": "string"},
    {"key": "version", "label": "Versão", "type": "string"},
    {"key": "period", "label": "Período", "type": "string"},
    {"key": "bu", "label": "Unidade de Negócio", "type": "string"},
    {"key": "region", "label": "Região", "type": "string"},
    {"key": "costCenterCode", "label": "Centro de Custo", "type": "string"},
    {"key": "glAccount", "label": "Conta Contábil", "type": "string"},
]

_UNSAFE_IDENT_RE = re.compile(r"[^A-Za-z0-9_]")
_UNSAFE_ALIAS_RE = re.compile(r"[^a-zA-Z0-9_]")


@dataclass(frozen=True)
class VerifiedColumn:
    """A fact-table column name that passed the whitelist.

    Only `verify_column` builds these; the SQL builder accepts nothing else as
    an identifier.
    """

    name: str

    @property
    def column(self) -> ColumnElement:
        return FACT_TABLE.c[self.name]

    def quoted(self, dialect: Dialect) -> str:
        return dialect.identifier_preparer.quote(self.name)


def sanitize_identifier(name: str) -> str:
    return _UNSAFE_IDENT_RE.sub("", str(name or ""))


def verify_column(name: str) -> VerifiedColumn:
    """Return a VerifiedColumn for `name` or raise InvalidColumnError."""
    raw = str(name) if name is not None else ""
    if raw not in ALLOWED_COLUMNS:
        raise InvalidColumnError(raw)
    clean = sanitize_identifier(raw)
    if clean not in ALLOWED_COLUMNS:
        raise InvalidColumnError(raw)
    return VerifiedColumn(clean)


def is_allowed_column(name: Optional[str]) -> bool:
    return name in ALLOWED_COLUMNS


def pivot_alias(value: object) -> str:
    """Alias for a pivoted column value: non-alphanumerics become underscores."""
    return _UNSAFE_ALIAS_RE.sub("_", str(value))


def unique_aliases(values: List[str], reserved: Optional[set] = None) -> List[str]:
    """Alias each pivot value, suffixing collisions ('A-B' and 'A B' both map to 'A_B')."""
    taken = {r.lower() for r in (reserved or set())}
    out: List[str] = []
    for v in values:
        base = pivot_alias(v) or "_"
        alias = base
        n = 2
        while alias.lower() in taken:
            alias = f"{base}_{n}"
            n += 1
        taken.add(alias.lower())
        out.append(alias)
    return out
