"""
Stock Ledger Service
Per-location running balances of quantity and weighted average cost

Every mutation validates first, locks the (location, item) row, appends
one posted StockMovement and updates the balance. Nothing here commits:
the calling service owns the transaction.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from stockledger.core.exceptions import NotFoundError, ValidationError
from stockledger.core.money import (
    ZERO, line_value, quantize_quantity, quantize_wac, round_money, to_decimal,
    weighted_average_cost
)
from stockledger.models.location import Item, Location
from stockledger.models.stock import LocationStock, StockMovement
from stockledger.schemas.stock import (
    LocationStockSnapshot, MovementKind, MovementStatus, ReferenceType
)
from stockledger.services.stock.validator import MovementValidator, locked_stock_row

logger = logging.getLogger(__name__)

_CONFLICT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class StockLedger:
    """
    Stock Ledger

    receive / transfer_in blend the incoming cost into the WAC.
    issue / transfer_out consume stock at the current WAC and leave it
    unchanged. When on_hand reaches zero the last WAC is kept; the next
    incoming movement then replaces it with its own unit cost.
    """

    def __init__(self, db: Session, validator: Optional[MovementValidator] = None):
        self.db = db
        self.validator = validator or MovementValidator(db)

    # Mutations

    def receive(
        self,
        location_id: int,
        item_id: int,
        quantity,
        unit_price,
        period_id: int,
        reference_type: ReferenceType = ReferenceType.NONE,
        reference_id: Optional[int] = None,
        created_by: Optional[str] = None
    ) -> LocationStockSnapshot:
        """Receive stock at a unit price"""
        self.validator.validate(location_id, item_id, quantity, MovementKind.RECEIPT, period_id)
        return self._apply_incoming(
            MovementKind.RECEIPT, location_id, item_id, quantity, unit_price, period_id,
            reference_type, reference_id, created_by
        )

    def issue(
        self,
        location_id: int,
        item_id: int,
        quantity,
        period_id: int,
        reference_type: ReferenceType = ReferenceType.NONE,
        reference_id: Optional[int] = None,
        created_by: Optional[str] = None
    ) -> LocationStockSnapshot:
        """Consume stock at the current WAC"""
        self.validator.validate(location_id, item_id, quantity, MovementKind.ISSUE, period_id)
        return self._apply_outgoing(
            MovementKind.ISSUE, location_id, item_id, quantity, period_id,
            reference_type, reference_id, created_by
        )

    def transfer_out(
        self,
        location_id: int,
        item_id: int,
        quantity,
        period_id: int,
        destination_location_id: int,
        reference_type: ReferenceType = ReferenceType.NONE,
        reference_id: Optional[int] = None,
        created_by: Optional[str] = None
    ) -> LocationStockSnapshot:
        """Send stock to another location at the current WAC"""
        self.validator.validate(
            location_id, item_id, quantity, MovementKind.TRANSFER_OUT, period_id,
            counterpart_location_id=destination_location_id
        )
        return self._apply_outgoing(
            MovementKind.TRANSFER_OUT, location_id, item_id, quantity, period_id,
            reference_type, reference_id, created_by,
            counterpart_location_id=destination_location_id
        )

    def transfer_in(
        self,
        location_id: int,
        item_id: int,
        quantity,
        source_wac,
        period_id: int,
        source_location_id: int,
        reference_type: ReferenceType = ReferenceType.NONE,
        reference_id: Optional[int] = None,
        created_by: Optional[str] = None
    ) -> LocationStockSnapshot:
        """Receive stock from another location at the source's WAC"""
        self.validator.validate(
            location_id, item_id, quantity, MovementKind.TRANSFER_IN, period_id,
            counterpart_location_id=source_location_id
        )
        return self._apply_incoming(
            MovementKind.TRANSFER_IN, location_id, item_id, quantity, source_wac, period_id,
            reference_type, reference_id, created_by,
            counterpart_location_id=source_location_id
        )

    # Queries

    def get_stock(self, location_id: int, item_id: int) -> LocationStockSnapshot:
        """Current position, zero when the item has never been at the location"""
        row = self.db.get(LocationStock, (location_id, item_id))
        if row is None:
            return LocationStockSnapshot(location_id=location_id, item_id=item_id, on_hand=ZERO, wac=ZERO)
        return LocationStockSnapshot.model_validate(row)

    def list_location_stock(self, location_id: int, include_zero: bool = True) -> List[LocationStockSnapshot]:
        query = self.db.query(LocationStock).filter(LocationStock.location_id == location_id)
        if not include_zero:
            query = query.filter(LocationStock.on_hand > 0)
        rows = query.order_by(LocationStock.item_id).all()
        return [LocationStockSnapshot.model_validate(row) for row in rows]

    def location_stock_value(self, location_id: int) -> Decimal:
        """Sum of on_hand x wac over every item at the location, 2 dp"""
        rows = self.db.query(LocationStock).filter(LocationStock.location_id == location_id).all()
        total = sum((Decimal(row.on_hand) * Decimal(row.wac) for row in rows), ZERO)
        return round_money(total)

    def movement_history(
        self,
        location_id: int,
        item_id: Optional[int] = None,
        period_id: Optional[int] = None
    ) -> List[StockMovement]:
        query = self.db.query(StockMovement).filter(StockMovement.location_id == location_id)
        if item_id is not None:
            query = query.filter(StockMovement.item_id == item_id)
        if period_id is not None:
            query = query.filter(StockMovement.period_id == period_id)
        return query.order_by(StockMovement.id).all()

    # Internals

    def _locked_row(self, location_id: int, item_id: int) -> LocationStock:
        row = locked_stock_row(self.db, location_id, item_id)
        if row is not None:
            return row

        if self.db.get(Location, location_id) is None:
            raise NotFoundError(f"Location {location_id} not found", location_id=location_id)
        if self.db.get(Item, item_id) is None:
            raise NotFoundError(f"Item {item_id} not found", item_id=item_id)

        insert = _CONFLICT_INSERTS.get(self.db.get_bind().dialect.name)
        if insert is None:
            row = LocationStock(location_id=location_id, item_id=item_id, on_hand=ZERO, wac=ZERO)
            self.db.add(row)
            self.db.flush()
            return row

        # A concurrent first movement may have created the row since the read
        self.db.execute(
            insert(LocationStock)
            .values(location_id=location_id, item_id=item_id, on_hand=ZERO, wac=ZERO)
            .on_conflict_do_nothing(index_elements=["location_id", "item_id"])
        )
        return locked_stock_row(self.db, location_id, item_id)

    def _apply_incoming(
        self, kind, location_id, item_id, quantity, unit_cost, period_id,
        reference_type, reference_id, created_by, counterpart_location_id=None
    ) -> LocationStockSnapshot:
        qty = quantize_quantity(quantity)
        try:
            cost = to_decimal(unit_cost)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid unit cost: {unit_cost!r}", unit_cost=unit_cost)
        if cost < 0:
            raise ValidationError(f"Unit cost cannot be negative, got {cost}", unit_cost=cost)

        row = self._locked_row(location_id, item_id)
        on_hand_before = Decimal(row.on_hand)
        wac_before = Decimal(row.wac)

        new_wac = quantize_wac(weighted_average_cost(on_hand_before, wac_before, qty, cost))
        row.on_hand = on_hand_before + qty
        row.wac = new_wac

        movement = self._record(
            kind, row, qty, cost, period_id, reference_type, reference_id,
            created_by, counterpart_location_id
        )

        logger.info(
            f"{kind.value} {qty} of item {item_id} at location {location_id} @ {cost}: "
            f"on_hand {on_hand_before} -> {row.on_hand}, wac {wac_before} -> {new_wac}"
        )
        return self._snapshot(row, movement)

    def _apply_outgoing(
        self, kind, location_id, item_id, quantity, period_id,
        reference_type, reference_id, created_by, counterpart_location_id=None
    ) -> LocationStockSnapshot:
        qty = quantize_quantity(quantity)

        # Validated under the same lock, so on_hand >= qty here
        row = self._locked_row(location_id, item_id)
        on_hand_before = Decimal(row.on_hand)
        wac = Decimal(row.wac)

        row.on_hand = on_hand_before - qty

        movement = self._record(
            kind, row, qty, wac, period_id, reference_type, reference_id,
            created_by, counterpart_location_id
        )

        logger.info(
            f"{kind.value} {qty} of item {item_id} at location {location_id} @ {wac}: "
            f"on_hand {on_hand_before} -> {row.on_hand}"
        )
        return self._snapshot(row, movement)

    def _record(
        self, kind, row, quantity, unit_cost, period_id, reference_type,
        reference_id, created_by, counterpart_location_id
    ) -> StockMovement:
        reference_type = ReferenceType(reference_type)
        if reference_type == ReferenceType.NONE:
            reference_id = None

        now = datetime.now(timezone.utc)
        row.last_movement_at = now

        movement = StockMovement(
            location_id=row.location_id,
            item_id=row.item_id,
            period_id=period_id,
            kind=kind.value,
            quantity=quantity,
            unit_cost=unit_cost,
            value=line_value(quantity, unit_cost),
            wac_after=row.wac,
            on_hand_after=row.on_hand,
            status=MovementStatus.POSTED.value,
            reference_type=reference_type.value,
            reference_id=reference_id,
            counterpart_location_id=counterpart_location_id,
            created_by=created_by,
            created_at=now
        )
        self.db.add(movement)
        self.db.flush()
        return movement

    @staticmethod
    def _snapshot(row: LocationStock, movement: StockMovement) -> LocationStockSnapshot:
        return LocationStockSnapshot(
            location_id=row.location_id,
            item_id=row.item_id,
            on_hand=Decimal(row.on_hand),
            wac=Decimal(row.wac),
            movement_id=movement.id
        )
