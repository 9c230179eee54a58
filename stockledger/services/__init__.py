"""
Stock Ledger Services
Ledger mutations, documents, reconciliation and period close
"""

from .authorization import Actor, Authorizer, Role, RoleAuthorizer
from .ncr import CollectingNCRGateway, LoggingNCRGateway, NCRGateway
from .stock import (
    DeliveryService, IssueService, MovementValidator, PriceVarianceDetector,
    StockLedger, TransferService
)
from .pob import POBService
from .periods import PeriodCloseService, PeriodService
from .reconciliation import ReconciliationCalculator

__all__ = [
    "Actor",
    "Authorizer",
    "Role",
    "RoleAuthorizer",
    "NCRGateway",
    "LoggingNCRGateway",
    "CollectingNCRGateway",
    "StockLedger",
    "MovementValidator",
    "PriceVarianceDetector",
    "DeliveryService",
    "IssueService",
    "TransferService",
    "POBService",
    "PeriodService",
    "PeriodCloseService",
    "ReconciliationCalculator",
]
