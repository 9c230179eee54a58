"""
Reference data: locations and items

Maintained by the outer application; the ledger only needs the rows
for referential integrity.
"""
from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from stockledger.core.database import Base


class Location(Base):
    """Kitchen, store or warehouse holding stock"""
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(10), nullable=False, unique=True, doc="Location code")
    name = Column(String(100), nullable=False, doc="Location name")
    location_type = Column(String(20), nullable=False, default="KITCHEN", doc="KITCHEN, STORE, CENTRAL or WAREHOUSE")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    __table_args__ = (
        CheckConstraint(
            "location_type IN ('KITCHEN', 'STORE', 'CENTRAL', 'WAREHOUSE')",
            name='valid_location_type'
        ),
    )

    def __repr__(self):
        return f"<Location {self.code}>"


class Item(Base):
    """Stock item"""
    __tablename__ = "items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=False, unique=True, doc="Item code")
    name = Column(String(200), nullable=False, doc="Item name")
    unit = Column(String(10), nullable=False, default="EA", doc="Unit of measure")
    category = Column(String(50))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    __table_args__ = (
        CheckConstraint("unit IN ('KG', 'EA', 'LTR', 'BOX', 'CASE', 'PACK')", name='valid_unit'),
    )

    def __repr__(self):
        return f"<Item {self.code}>"
