from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, Integer, String, Text, func
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# Atomic unit of financial data. Rows are written by the import pipeline and
# only read here. Column names mirror the production schema (camelCase, quoted).
class FactEntry(Base):
    __tablename__ = "FactEntry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    period: Mapped[str] = mapped_column(String, nullable=False)  # YYYY-MM
    version: Mapped[str] = mapped_column(String, nullable=False)  # 'Actual' | 'Forecast' | ...
    scenario: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    bu: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    region: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    channel: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    productSku: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    customer: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    costCenterCode: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    glAccount: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    pnlLine: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    createdAt: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updatedAt: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    importedAt: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


# Lookup dimensions, created by the importer the first time a code is referenced
class ProductInfo(Base):
    __tablename__ = "ProductInfo"

    sku: Mapped[str] = mapped_column(String, primary_key=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class CostCenterInfo(Base):
    __tablename__ = "CostCenterInfo"

    code: Mapped[str] = mapped_column(String, primary_key=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


FACT_TABLE = FactEntry.__table__


def init_db(engine: Engine) -> None:
    """Create the fact/lookup tables if missing (dev and tests)."""
    Base.metadata.create_all(bind=engine)
