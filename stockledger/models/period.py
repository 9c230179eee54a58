"""
Accounting periods

A period is shared by all locations; its status is tracked per location
through PeriodLocation.
"""
from sqlalchemy import (
    CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, JSON,
    Numeric, String, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from stockledger.core.database import Base

PERIOD_STATUS_CHECK = "status IN ('OPEN', 'PENDING_CLOSE', 'CLOSED')"


class Period(Base):
    """Accounting window during which movements may be posted"""
    __tablename__ = "periods"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="OPEN", doc="Overall status, CLOSED once every location is closed")
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    close_requested_at = Column(DateTime(timezone=True))
    closed_at = Column(DateTime(timezone=True))

    period_locations = relationship(
        "PeriodLocation", back_populates="period", order_by="PeriodLocation.location_id"
    )
    prices = relationship("ItemPrice", back_populates="period")

    __table_args__ = (
        CheckConstraint(PERIOD_STATUS_CHECK, name='valid_status'),
        CheckConstraint("end_date >= start_date", name='valid_range'),
    )

    def __repr__(self):
        return f"<Period {self.name} {self.status}>"


class PeriodLocation(Base):
    """Status of one period at one location"""
    __tablename__ = "period_locations"

    period_id = Column(Integer, ForeignKey("periods.id"), primary_key=True)
    location_id = Column(Integer, ForeignKey("locations.id"), primary_key=True)
    status = Column(String(20), nullable=False, default="OPEN")
    opening_value = Column(Numeric(15, 2), doc="Closing value carried from the previous period")
    closing_value = Column(Numeric(15, 2), doc="Stock value frozen at close")
    snapshot_data = Column(JSON, doc="Per-item stock snapshot taken at close")
    close_requested_at = Column(DateTime(timezone=True))
    closed_at = Column(DateTime(timezone=True))

    period = relationship("Period", back_populates="period_locations")
    location = relationship("Location")

    __table_args__ = (
        CheckConstraint(PERIOD_STATUS_CHECK, name='valid_status'),
    )


class ItemPrice(Base):
    """Period-locked reference price used for delivery price variance"""
    __tablename__ = "item_prices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    period_id = Column(Integer, ForeignKey("periods.id"), nullable=False)
    price = Column(Numeric(15, 4), nullable=False)
    currency = Column(String(3), nullable=False, default="SAR")
    set_by = Column(String(50))
    set_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    period = relationship("Period", back_populates="prices")

    __table_args__ = (
        UniqueConstraint("item_id", "period_id", name="uq_item_prices_item_period"),
        CheckConstraint("price >= 0", name='non_negative_price'),
    )
