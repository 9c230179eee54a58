"""
Reconciliation Models
Period-end reconciliation, personnel on board and delivery price variances
"""
from sqlalchemy import (
    CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, Numeric,
    String, UniqueConstraint
)
from sqlalchemy.sql import func

from stockledger.core.database import Base


class Reconciliation(Base):
    """
    Saved reconciliation for one location and period

    Only the adjustments and the derived results are stored while the
    period is open. The movement aggregates are written once, at close,
    together with frozen_at.
    """
    __tablename__ = "reconciliations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    period_id = Column(Integer, ForeignKey("periods.id"), nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)

    # Supervisor adjustments (any sign)
    back_charges = Column(Numeric(15, 2), nullable=False, default=0)
    credits = Column(Numeric(15, 2), nullable=False, default=0)
    condemnations = Column(Numeric(15, 2), nullable=False, default=0)
    other_adjustments = Column(Numeric(15, 2), nullable=False, default=0)

    # Derived results
    consumption = Column(Numeric(15, 2), nullable=False, default=0)
    total_mandays = Column(Integer, nullable=False, default=0)
    manday_cost = Column(Numeric(15, 4), doc="Null when no mandays were recorded")

    # Frozen at close
    opening_stock = Column(Numeric(15, 2))
    receipts = Column(Numeric(15, 2))
    transfers_in = Column(Numeric(15, 2))
    transfers_out = Column(Numeric(15, 2))
    issues = Column(Numeric(15, 2))
    closing_stock = Column(Numeric(15, 2))
    frozen_at = Column(DateTime(timezone=True))

    saved_by = Column(String(50))
    saved_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    __table_args__ = (
        UniqueConstraint("period_id", "location_id", name="uq_reconciliations_period_location"),
    )

    @property
    def is_frozen(self) -> bool:
        return self.frozen_at is not None


class POBEntry(Base):
    """Daily personnel on board count at a location"""
    __tablename__ = "pob_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    period_id = Column(Integer, ForeignKey("periods.id"), nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    entry_date = Column(Date, nullable=False)
    crew_count = Column(Integer, nullable=False, default=0)
    extra_count = Column(Integer, nullable=False, default=0)
    entered_by = Column(String(50))
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    __table_args__ = (
        UniqueConstraint("period_id", "location_id", "entry_date", name="uq_pob_entries_period_location_date"),
        CheckConstraint("crew_count >= 0", name='non_negative_crew'),
        CheckConstraint("extra_count >= 0", name='non_negative_extra'),
    )

    @property
    def mandays(self) -> int:
        return (self.crew_count or 0) + (self.extra_count or 0)


class PriceVariance(Base):
    """
    Delivery line price deviation from the period-locked price

    Written once when the delivery is posted. ncr_reference is the only
    column updated afterwards, by the NCR workflow.
    """
    __tablename__ = "price_variances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    delivery_id = Column(Integer, ForeignKey("deliveries.id"), nullable=False)
    delivery_line_id = Column(Integer, ForeignKey("delivery_lines.id"), nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    period_id = Column(Integer, ForeignKey("periods.id"), nullable=False)

    expected_price = Column(Numeric(15, 4), nullable=False)
    actual_price = Column(Numeric(15, 4), nullable=False)
    quantity = Column(Numeric(15, 4), nullable=False)
    variance_per_unit = Column(Numeric(15, 4), nullable=False)
    variance_value = Column(Numeric(15, 4), nullable=False, doc="quantity x (actual - expected)")
    direction = Column(String(12), nullable=False)
    ncr_reference = Column(String(50))
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    __table_args__ = (
        CheckConstraint("direction IN ('OVERCHARGE', 'UNDERCHARGE')", name='valid_direction'),
    )
