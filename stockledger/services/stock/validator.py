"""
Movement Validator
Checks every ledger mutation before it is applied
"""
import logging
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy.orm import Session

from stockledger.core.exceptions import (
    InsufficientStockError, InvalidQuantityError, NotFoundError,
    PeriodClosedError, SameLocationTransferError
)
from stockledger.core.money import ZERO, quantize_quantity
from stockledger.models.period import Period, PeriodLocation
from stockledger.models.stock import LocationStock
from stockledger.schemas.stock import MovementKind, PeriodStatus

logger = logging.getLogger(__name__)


def get_period_location(
    db: Session,
    period_id: int,
    location_id: int,
    lock: bool = False,
    shared: bool = False
) -> Optional[PeriodLocation]:
    """
    Period membership row for a location, optionally locked

    shared=True takes FOR SHARE: movements do not block each other but
    wait for a close holding FOR UPDATE on the row.
    """
    query = db.query(PeriodLocation).filter(
        PeriodLocation.period_id == period_id,
        PeriodLocation.location_id == location_id
    )
    if lock:
        query = query.with_for_update(read=shared)
    return query.first()


def locked_stock_row(db: Session, location_id: int, item_id: int) -> Optional[LocationStock]:
    """Read a stock row under a row lock"""
    return db.query(LocationStock).filter(
        LocationStock.location_id == location_id,
        LocationStock.item_id == item_id
    ).with_for_update().first()


class MovementValidator:
    """
    Movement Validator

    Checks, in order:
        1. the period is OPEN at the location
        2. quantity is greater than zero
        3. outgoing movements do not exceed stock on hand
        4. transfers do not start and end at the same location

    Stock on hand is read under a row lock, so a check that passes
    inside a transaction holds until that transaction ends.
    """

    def __init__(self, db: Session):
        self.db = db

    def check_period_open(self, period_id: int, location_id: int) -> PeriodLocation:
        membership = get_period_location(self.db, period_id, location_id, lock=True, shared=True)
        if membership is None:
            if self.db.get(Period, period_id) is None:
                raise NotFoundError(f"Period {period_id} not found", period_id=period_id)
            raise PeriodClosedError(
                period_id, location_id, None,
                message=f"Location {location_id} is not part of period {period_id}"
            )
        if membership.status != PeriodStatus.OPEN.value:
            raise PeriodClosedError(period_id, location_id, membership.status)
        return membership

    @staticmethod
    def check_quantity(quantity) -> Decimal:
        try:
            value = quantize_quantity(quantity)
        except (TypeError, ValueError):
            raise InvalidQuantityError(quantity)
        if value <= 0:
            raise InvalidQuantityError(quantity)
        return value

    def available(self, location_id: int, item_id: int) -> Decimal:
        row = locked_stock_row(self.db, location_id, item_id)
        return Decimal(row.on_hand) if row is not None else ZERO

    def validate(
        self,
        location_id: int,
        item_id: int,
        quantity,
        kind: Union[MovementKind, str],
        period_id: int,
        counterpart_location_id: Optional[int] = None
    ) -> None:
        """
        Validate one movement, raising the first rule it breaks

        counterpart_location_id is the other side of a transfer: the
        destination for TRANSFER_OUT, the source for TRANSFER_IN.
        """
        kind = MovementKind(kind)

        self.check_period_open(period_id, location_id)
        qty = self.check_quantity(quantity)

        if kind.is_outgoing:
            available = self.available(location_id, item_id)
            if qty > available:
                logger.warning(
                    f"Rejected {kind.value} of {qty} for item {item_id} at location "
                    f"{location_id}: only {available} on hand"
                )
                raise InsufficientStockError(qty, available, location_id=location_id, item_id=item_id)

        if kind in (MovementKind.TRANSFER_OUT, MovementKind.TRANSFER_IN):
            if counterpart_location_id == location_id:
                raise SameLocationTransferError(location_id)
