"""
Stock Ledger Models
Per-location stock balances and the append-only movement log
"""
from sqlalchemy import (
    CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String
)
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func

from stockledger.core.database import Base
from stockledger.core.exceptions import BusinessLogicError


class LocationStock(Base):
    """
    Location Stock - running balance of one item at one location

    (location_id, item_id) is the natural key and the unit of locking for
    every ledger mutation. Rows are created with zero stock the first time
    an item reaches a location and are never deleted.
    """
    __tablename__ = "location_stock"

    location_id = Column(Integer, ForeignKey("locations.id"), primary_key=True)
    item_id = Column(Integer, ForeignKey("items.id"), primary_key=True)

    on_hand = Column(Numeric(15, 4), nullable=False, default=0, doc="Quantity on hand")
    wac = Column(Numeric(18, 6), nullable=False, default=0, doc="Weighted average cost per unit")
    last_movement_at = Column(DateTime(timezone=True), doc="Time of the last posted movement")
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    location = relationship("Location")
    item = relationship("Item")

    __table_args__ = (
        CheckConstraint("on_hand >= 0", name='non_negative_on_hand'),
        CheckConstraint("wac >= 0", name='non_negative_wac'),
    )

    def __repr__(self):
        return f"<LocationStock {self.location_id}/{self.item_id} {self.on_hand} @ {self.wac}>"


class StockMovement(Base):
    """
    Stock Movement - immutable record of one ledger mutation

    Quantity, cost and value never change once the movement is posted,
    and a posted movement never returns to DRAFT.
    """
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    period_id = Column(Integer, ForeignKey("periods.id"), nullable=False)

    kind = Column(String(20), nullable=False, doc="RECEIPT, ISSUE, TRANSFER_OUT or TRANSFER_IN")
    quantity = Column(Numeric(15, 4), nullable=False, doc="Quantity moved, always positive")
    unit_cost = Column(Numeric(18, 6), nullable=False, doc="Unit price received or WAC consumed")
    value = Column(Numeric(15, 2), nullable=False, doc="quantity x unit_cost at currency precision")
    wac_after = Column(Numeric(18, 6), nullable=False, doc="Location WAC after the movement")
    on_hand_after = Column(Numeric(15, 4), nullable=False, doc="Location on hand after the movement")
    status = Column(String(10), nullable=False, default="POSTED")

    reference_type = Column(String(20), nullable=False, default="NONE", doc="Source document type or NONE")
    reference_id = Column(Integer, doc="Source document id, null when reference_type is NONE")
    counterpart_location_id = Column(Integer, ForeignKey("locations.id"), doc="Other side of a transfer")

    created_by = Column(String(50))
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    __table_args__ = (
        CheckConstraint(
            "kind IN ('RECEIPT', 'ISSUE', 'TRANSFER_OUT', 'TRANSFER_IN')",
            name='valid_kind'
        ),
        CheckConstraint("status IN ('DRAFT', 'POSTED')", name='valid_status'),
        CheckConstraint(
            "reference_type IN ('NONE', 'DELIVERY', 'ISSUE', 'TRANSFER')",
            name='valid_reference_type'
        ),
        CheckConstraint("quantity > 0", name='positive_quantity'),
        Index("ix_stock_movements_location_period", "location_id", "period_id"),
        Index("ix_stock_movements_item", "item_id"),
    )

    @validates("quantity", "unit_cost", "value", "wac_after", "on_hand_after")
    def _freeze_posted_amounts(self, key, value):
        if self.id is not None and self.status == "POSTED":
            current = getattr(self, key)
            if current is not None and current != value:
                raise BusinessLogicError(
                    f"Posted movement {self.id} is immutable ({key})",
                    movement_id=self.id,
                    field=key,
                )
        return value

    @validates("status")
    def _forward_only_status(self, key, value):
        if self.status == "POSTED" and value != "POSTED":
            raise BusinessLogicError(
                f"Posted movement {self.id} cannot return to {value}",
                movement_id=self.id,
            )
        return value

    def __repr__(self):
        return f"<StockMovement {self.kind} {self.quantity} @ {self.unit_cost}>"
