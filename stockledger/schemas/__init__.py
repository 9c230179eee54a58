"""
Stock Ledger Schemas
Value objects returned by the services
"""

from .stock import (
    Adjustments, CloseFailure, CostCentre, DeliveryLineInput, IssueLineInput,
    LocationCloseSummary, LocationStockSnapshot, LocationType, MovementKind,
    MovementStatus, PeriodCloseResult, PeriodStatus, POBEntryInput,
    ReconciliationMode, ReconciliationResult, ReferenceType, TransferLineInput,
    TransferStatus, Unit, VarianceDirection, VarianceRecord
)

__all__ = [
    "Adjustments",
    "CloseFailure",
    "CostCentre",
    "DeliveryLineInput",
    "IssueLineInput",
    "LocationCloseSummary",
    "LocationStockSnapshot",
    "LocationType",
    "MovementKind",
    "MovementStatus",
    "PeriodCloseResult",
    "PeriodStatus",
    "POBEntryInput",
    "ReconciliationMode",
    "ReconciliationResult",
    "ReferenceType",
    "TransferLineInput",
    "TransferStatus",
    "Unit",
    "VarianceDirection",
    "VarianceRecord",
]
