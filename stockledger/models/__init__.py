"""
Stock Ledger Models
Importing this package registers every table with Base.metadata
"""
from .location import Location, Item
from .period import Period, PeriodLocation, ItemPrice
from .stock import LocationStock, StockMovement
from .documents import Delivery, DeliveryLine, Issue, IssueLine, Transfer, TransferLine
from .reconciliation import Reconciliation, POBEntry, PriceVariance
from .audit import AuditLog

__all__ = [
    "Location",
    "Item",
    "Period",
    "PeriodLocation",
    "ItemPrice",
    "LocationStock",
    "StockMovement",
    "Delivery",
    "DeliveryLine",
    "Issue",
    "IssueLine",
    "Transfer",
    "TransferLine",
    "Reconciliation",
    "POBEntry",
    "PriceVariance",
    "AuditLog",
]
