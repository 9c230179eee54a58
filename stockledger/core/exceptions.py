"""
Stock Ledger Exceptions
Business rule violations raised by the ledger, reconciliation and close services
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional


class StockLedgerException(Exception):
    """Base exception for the stock ledger"""
    code = "STOCK_LEDGER_ERROR"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.__class__.__doc__ or self.code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Machine readable form for callers mapping errors to messages"""
        return {
            "code": self.code,
            "message": self.message,
            "details": {k: _plain(v) for k, v in self.details.items()},
        }


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


class InsufficientPermissionsError(StockLedgerException):
    """Raised when the actor lacks the required capability"""
    code = "PERMISSION_DENIED"


PermissionDeniedError = InsufficientPermissionsError


class NotFoundError(StockLedgerException):
    """Raised when a referenced record does not exist"""
    code = "NOT_FOUND"


class ValidationError(StockLedgerException):
    """Raised when data validation fails"""
    code = "VALIDATION_ERROR"


class BusinessLogicError(StockLedgerException):
    """Raised when business rules are violated"""
    code = "BUSINESS_RULE_VIOLATION"


class StockError(BusinessLogicError):
    """Raised when a stock movement cannot be applied"""
    code = "STOCK_ERROR"


class PeriodClosedError(StockError):
    """Period is not open for this location"""
    code = "PERIOD_CLOSED"

    def __init__(self, period_id=None, location_id=None, status=None, message=None):
        super().__init__(
            message or f"Period {period_id} is not open at location {location_id} (status {status})",
            period_id=period_id,
            location_id=location_id,
            status=status,
        )


class InvalidQuantityError(StockError, ValidationError):
    """Quantity must be greater than zero"""
    code = "INVALID_QUANTITY"

    def __init__(self, quantity=None, message=None):
        super().__init__(
            message or f"Quantity must be greater than zero, got {quantity}",
            quantity=quantity,
        )


class InsufficientStockError(StockError):
    """Outgoing movement exceeds stock on hand"""
    code = "INSUFFICIENT_STOCK"

    def __init__(self, requested: Decimal, available: Decimal, location_id=None, item_id=None):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for item {item_id} at location {location_id}: "
            f"requested {requested}, available {available}",
            location_id=location_id,
            item_id=item_id,
            requested=requested,
            available=available,
            shortfall=requested - available,
        )


class SameLocationTransferError(StockError, ValidationError):
    """Transfer source and destination are the same location"""
    code = "SAME_LOCATION_TRANSFER"

    def __init__(self, location_id=None):
        super().__init__(
            f"Cannot transfer stock from location {location_id} to itself",
            location_id=location_id,
        )


class InvalidAdjustmentError(ValidationError):
    """Reconciliation adjustment values are invalid"""
    code = "INVALID_ADJUSTMENT"


class InvalidPOBEntryError(ValidationError):
    """Personnel-on-board entry is invalid"""
    code = "INVALID_POB_ENTRY"


class MissingPeriodPriceError(BusinessLogicError):
    """Items have no period-locked reference price"""
    code = "MISSING_PERIOD_PRICES"

    def __init__(self, period_id=None, item_ids: Optional[List] = None):
        self.item_ids = list(item_ids or [])
        super().__init__(
            f"No period price set for {len(self.item_ids)} item(s) in period {period_id}",
            period_id=period_id,
            item_ids=self.item_ids,
        )


class InvalidTransferStateError(BusinessLogicError):
    """Transfer is not in a state that allows this action"""
    code = "INVALID_TRANSFER_STATUS"


class InvalidPeriodStateError(BusinessLogicError):
    """Period is not in a state that allows this action"""
    code = "INVALID_PERIOD_STATUS"


class ClosePreconditionError(BusinessLogicError):
    """One or more locations block the period close"""
    code = "CLOSE_PRECONDITIONS_FAILED"

    def __init__(self, period_id=None, failures: Optional[List[Dict[str, Any]]] = None):
        self.failures = list(failures or [])
        locations = sorted({int(f["location_id"]) for f in self.failures})
        super().__init__(
            f"Period {period_id} cannot be closed: {len(locations)} location(s) not ready",
            period_id=period_id,
            failing_locations=locations,
            failures=self.failures,
        )

    @property
    def failing_locations(self) -> List[int]:
        return self.details["failing_locations"]
