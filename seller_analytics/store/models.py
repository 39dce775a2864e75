"""
Event Store Tables

- event_log: append-only raw events, one JSON payload per row, indexed by
  occurrence time in epoch microseconds so range scans are timezone-free
- catalog_products: product lookup table maintained by catalog management
"""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Integer,
    JSON,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


class EventLogEntry(Base):
    """
    Event Log Table

    Rows are written by upstream systems and never updated or deleted.
    """
    __tablename__ = "event_log"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    occurred_at_us: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_event_log_time", "occurred_at_us", "seq"),
        Index("ix_event_log_product", "product_id"),
    )


class CatalogProduct(Base):
    """Product Catalog Table"""
    __tablename__ = "catalog_products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    min_stock_threshold: Mapped[int] = mapped_column(Integer, default=0)
