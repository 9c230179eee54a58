"""Stock Ledger Services - balances, movements and stock documents"""

from .validator import MovementValidator
from .ledger import StockLedger
from .price_variance import PriceVarianceDetector, detect_variance
from .deliveries import DeliveryService
from .issues import IssueService
from .transfers import TransferService

__all__ = [
    "MovementValidator",
    "StockLedger",
    "PriceVarianceDetector",
    "detect_variance",
    "DeliveryService",
    "IssueService",
    "TransferService",
]
