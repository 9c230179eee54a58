"""
Stock Document Models
Deliveries, issues and transfers that drive ledger movements
"""
from sqlalchemy import (
    Boolean, CheckConstraint, Column, Date, DateTime, ForeignKey, Integer,
    Numeric, String, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from stockledger.core.database import Base


class Delivery(Base):
    """Goods received at a location from a supplier"""
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    delivery_no = Column(String(20), nullable=False, unique=True, doc="DLV-<year>-NNN")
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    period_id = Column(Integer, ForeignKey("periods.id"), nullable=False)
    supplier_ref = Column(String(50), doc="Supplier code or name")
    invoice_no = Column(String(50), doc="Supplier invoice number")
    delivery_date = Column(Date, nullable=False)
    total_amount = Column(Numeric(15, 2), nullable=False, default=0)
    has_variance = Column(Boolean, nullable=False, default=False)
    status = Column(String(10), nullable=False, default="POSTED")
    created_by = Column(String(50))
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    lines = relationship("DeliveryLine", back_populates="delivery", order_by="DeliveryLine.id")
    variances = relationship("PriceVariance", order_by="PriceVariance.id", viewonly=True)

    __table_args__ = (
        UniqueConstraint("supplier_ref", "invoice_no", name="uq_deliveries_supplier_invoice"),
        CheckConstraint("status IN ('DRAFT', 'POSTED')", name='valid_status'),
    )


class DeliveryLine(Base):
    __tablename__ = "delivery_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    delivery_id = Column(Integer, ForeignKey("deliveries.id"), nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    quantity = Column(Numeric(15, 4), nullable=False)
    unit_price = Column(Numeric(15, 4), nullable=False)
    period_price = Column(Numeric(15, 4), doc="Period-locked reference price")
    price_variance = Column(Numeric(15, 4), nullable=False, default=0, doc="unit_price - period_price")
    line_value = Column(Numeric(15, 2), nullable=False)
    movement_id = Column(Integer, ForeignKey("stock_movements.id"))

    delivery = relationship("Delivery", back_populates="lines")


class Issue(Base):
    """Stock consumed at a location"""
    __tablename__ = "issues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    issue_no = Column(String(20), nullable=False, unique=True, doc="ISS-<year>-NNN")
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    period_id = Column(Integer, ForeignKey("periods.id"), nullable=False)
    cost_centre = Column(String(10), nullable=False, default="FOOD")
    issue_date = Column(Date, nullable=False)
    total_value = Column(Numeric(15, 2), nullable=False, default=0)
    status = Column(String(10), nullable=False, default="POSTED")
    created_by = Column(String(50))
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    lines = relationship("IssueLine", back_populates="issue", order_by="IssueLine.id")

    __table_args__ = (
        CheckConstraint("cost_centre IN ('FOOD', 'CLEAN', 'OTHER')", name='valid_cost_centre'),
    )


class IssueLine(Base):
    __tablename__ = "issue_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    issue_id = Column(Integer, ForeignKey("issues.id"), nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    quantity = Column(Numeric(15, 4), nullable=False)
    wac_at_issue = Column(Numeric(18, 6), nullable=False)
    line_value = Column(Numeric(15, 2), nullable=False)
    movement_id = Column(Integer, ForeignKey("stock_movements.id"))

    issue = relationship("Issue", back_populates="lines")


class Transfer(Base):
    """
    Stock moved between two locations

    Requested first, applied to both ledgers only on approval.
    """
    __tablename__ = "transfers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transfer_no = Column(String(20), nullable=False, unique=True, doc="TRF-<year>-NNN")
    from_location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    to_location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    period_id = Column(Integer, ForeignKey("periods.id"), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING_APPROVAL")
    transfer_date = Column(Date, nullable=False)
    total_value = Column(Numeric(15, 2), nullable=False, default=0)
    notes = Column(Text)

    requested_by = Column(String(50))
    requested_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    approved_by = Column(String(50))
    approved_at = Column(DateTime(timezone=True))
    rejection_reason = Column(Text)

    lines = relationship("TransferLine", back_populates="transfer", order_by="TransferLine.id")

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING_APPROVAL', 'COMPLETED', 'REJECTED')",
            name='valid_status'
        ),
        CheckConstraint("from_location_id <> to_location_id", name='distinct_locations'),
    )


class TransferLine(Base):
    __tablename__ = "transfer_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transfer_id = Column(Integer, ForeignKey("transfers.id"), nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    quantity = Column(Numeric(15, 4), nullable=False)
    wac_at_request = Column(Numeric(18, 6), doc="Source WAC when requested, informational")
    transfer_wac = Column(Numeric(18, 6), doc="Source WAC applied at approval")
    line_value = Column(Numeric(15, 2))

    transfer = relationship("Transfer", back_populates="lines")
