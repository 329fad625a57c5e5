"""SQLAlchemy database models."""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class MarketPrice(Base):
    """Daily price fact for one commodity/variety at one mandi."""

    __tablename__ = "market_prices"
    __table_args__ = (
        UniqueConstraint(
            "arrival_date", "state", "district", "market", "commodity", "variety",
            name="uq_market_prices_natural_key",
        ),
        Index("ix_market_prices_lookup", "commodity", "state", "district", "market", "arrival_date"),
        Index("ix_market_prices_date", "arrival_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    arrival_date: Mapped[date] = mapped_column(Date, nullable=False)
    state: Mapped[str] = mapped_column(String(100), nullable=False)
    district: Mapped[str] = mapped_column(String(100), nullable=False)
    market: Mapped[str] = mapped_column(String(200), nullable=False)
    commodity: Mapped[str] = mapped_column(String(200), nullable=False)
    # '' instead of NULL so the unique key stays a key
    variety: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    grade: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    min_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    max_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    modal_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    arrival_quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    data_source: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )


class MarketMaster(Base):
    """Known mandi. Filled from observed prices by the ingestion job."""

    __tablename__ = "markets_master"
    __table_args__ = (
        UniqueConstraint("state", "district", "market", name="uq_markets_master_location"),
        Index("ix_markets_master_state_district", "state", "district"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    state: Mapped[str] = mapped_column(String(100), nullable=False)
    district: Mapped[str] = mapped_column(String(100), nullable=False)
    market: Mapped[str] = mapped_column(String(200), nullable=False)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_data_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )


class CommodityMaster(Base):
    __tablename__ = "commodities_master"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    commodity_name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    aliases: Mapped[Optional[list]] = mapped_column(JSON(none_as_null=True), nullable=True)  # e.g. ["corn", "makka"]
    is_popular: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
