"""Stock Ledger Schemas"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stockledger.core.money import round_money, to_decimal


# Enums
class MovementKind(str, Enum):
    RECEIPT = "RECEIPT"
    ISSUE = "ISSUE"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"

    @property
    def is_outgoing(self) -> bool:
        return self in (MovementKind.ISSUE, MovementKind.TRANSFER_OUT)


class MovementStatus(str, Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"


class ReferenceType(str, Enum):
    NONE = "NONE"
    DELIVERY = "DELIVERY"
    ISSUE = "ISSUE"
    TRANSFER = "TRANSFER"


class PeriodStatus(str, Enum):
    OPEN = "OPEN"
    PENDING_CLOSE = "PENDING_CLOSE"
    CLOSED = "CLOSED"


class TransferStatus(str, Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class LocationType(str, Enum):
    KITCHEN = "KITCHEN"
    STORE = "STORE"
    CENTRAL = "CENTRAL"
    WAREHOUSE = "WAREHOUSE"


class Unit(str, Enum):
    KG = "KG"
    EA = "EA"
    LTR = "LTR"
    BOX = "BOX"
    CASE = "CASE"
    PACK = "PACK"


class CostCentre(str, Enum):
    FOOD = "FOOD"
    CLEAN = "CLEAN"
    OTHER = "OTHER"


class VarianceDirection(str, Enum):
    OVERCHARGE = "OVERCHARGE"
    UNDERCHARGE = "UNDERCHARGE"


class ReconciliationMode(str, Enum):
    DERIVED = "DERIVED"
    SAVED = "SAVED"
    FROZEN = "FROZEN"


# Ledger snapshots
class LocationStockSnapshot(BaseModel):
    """Inventory position of one item at one location"""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    location_id: int
    item_id: int
    on_hand: Decimal
    wac: Decimal
    movement_id: Optional[int] = None

    @property
    def value(self) -> Decimal:
        return round_money(self.on_hand * self.wac)

    @property
    def display_wac(self) -> Decimal:
        return round_money(self.wac)


# Document lines
class DeliveryLineInput(BaseModel):
    item_id: int
    quantity: Decimal
    unit_price: Decimal = Field(..., ge=0)

    @field_validator("quantity", "unit_price", mode="before")
    @classmethod
    def coerce_decimal(cls, v):
        return to_decimal(v)


class IssueLineInput(BaseModel):
    item_id: int
    quantity: Decimal

    @field_validator("quantity", mode="before")
    @classmethod
    def coerce_decimal(cls, v):
        return to_decimal(v)


class TransferLineInput(IssueLineInput):
    pass


class POBEntryInput(BaseModel):
    entry_date: date
    crew_count: int = Field(default=0, ge=0)
    extra_count: int = Field(default=0, ge=0)

    @property
    def mandays(self) -> int:
        return self.crew_count + self.extra_count


# Price variance
class VarianceRecord(BaseModel):
    """Price deviation of a delivery line from its period-locked price"""
    model_config = ConfigDict(frozen=True)

    expected_price: Decimal
    actual_price: Decimal
    quantity: Decimal
    variance_per_unit: Decimal
    variance_value: Decimal
    direction: VarianceDirection
    location_id: Optional[int] = None
    item_id: Optional[int] = None
    period_id: Optional[int] = None
    delivery_id: Optional[int] = None
    delivery_line_id: Optional[int] = None
    variance_id: Optional[int] = None

    @property
    def display_value(self) -> Decimal:
        return round_money(self.variance_value)

    @property
    def variance_percent(self) -> Optional[Decimal]:
        if self.expected_price == 0:
            return None
        return round_money(self.variance_per_unit / self.expected_price * 100)


# Reconciliation
class Adjustments(BaseModel):
    """Supervisor-entered reconciliation adjustments (any sign)"""
    back_charges: Decimal = Decimal("0")
    credits: Decimal = Decimal("0")
    condemnations: Decimal = Decimal("0")
    other: Decimal = Decimal("0")

    @field_validator("back_charges", "credits", "condemnations", "other", mode="before")
    @classmethod
    def coerce_decimal(cls, v):
        return to_decimal(v if v is not None else 0)

    @property
    def total(self) -> Decimal:
        return self.back_charges + self.credits + self.condemnations + self.other


class ReconciliationResult(BaseModel):
    """
    Consumption and manday cost for one location and period

    manday_cost is None when no mandays were recorded; a zero there
    would read as a real zero cost.
    """
    location_id: int
    period_id: int
    mode: ReconciliationMode
    opening_stock: Decimal
    receipts: Decimal
    transfers_in: Decimal
    transfers_out: Decimal
    issues: Decimal
    closing_stock: Decimal
    adjustments: Adjustments
    consumption: Decimal
    total_mandays: int
    manday_cost: Optional[Decimal] = None
    calculated_at: datetime

    @property
    def total_adjustments(self) -> Decimal:
        return self.adjustments.total

    @property
    def has_manday_cost(self) -> bool:
        return self.manday_cost is not None

    @property
    def is_negative_consumption(self) -> bool:
        return self.consumption < 0

    def display(self) -> Dict[str, Any]:
        """Figures rounded to currency precision"""
        return {
            "opening_stock": round_money(self.opening_stock),
            "receipts": round_money(self.receipts),
            "transfers_in": round_money(self.transfers_in),
            "transfers_out": round_money(self.transfers_out),
            "issues": round_money(self.issues),
            "closing_stock": round_money(self.closing_stock),
            "total_adjustments": round_money(self.total_adjustments),
            "consumption": round_money(self.consumption),
            "total_mandays": self.total_mandays,
            "manday_cost": round_money(self.manday_cost) if self.has_manday_cost else None,
        }


# Period close
class CloseFailure(BaseModel):
    location_id: int
    reason: str
    detail: Optional[str] = None


class LocationCloseSummary(BaseModel):
    location_id: int
    status: PeriodStatus
    closing_value: Optional[Decimal] = None
    consumption: Optional[Decimal] = None
    item_count: int = 0


class PeriodCloseResult(BaseModel):
    period_id: int
    period_status: PeriodStatus
    locations: List[LocationCloseSummary]

    @property
    def closed_locations(self) -> List[int]:
        return [loc.location_id for loc in self.locations if loc.status == PeriodStatus.CLOSED]
