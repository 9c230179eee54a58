"""
Reconciliation Calculator
Derives period consumption and manday cost for a location

    consumption = opening + receipts + transfers_in - transfers_out
                  - issues - closing + total_adjustments
    manday_cost = consumption / total_mandays, None when no mandays

Three modes:
    DERIVED  nothing saved yet, adjustments are zero, nothing persisted
    SAVED    adjustments read from storage, movement figures re-aggregated
    FROZEN   period closed at the location, every figure read from storage
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

import pydantic
from sqlalchemy.orm import Session

from stockledger.core.audit import log_user_action
from stockledger.core.exceptions import (
    InvalidAdjustmentError, InvalidPeriodStateError, NotFoundError,
    PeriodClosedError, StockLedgerException
)
from stockledger.core.money import ZERO, round_money, to_decimal
from stockledger.models.period import Period, PeriodLocation
from stockledger.models.reconciliation import Reconciliation
from stockledger.models.stock import StockMovement
from stockledger.schemas.stock import (
    Adjustments, MovementKind, MovementStatus, PeriodStatus,
    ReconciliationMode, ReconciliationResult
)
from stockledger.services.authorization import Authorizer, RoleAuthorizer
from stockledger.services.periods.period_management import previous_period
from stockledger.services.pob import POBService
from stockledger.services.stock.ledger import StockLedger
from stockledger.services.stock.validator import get_period_location

logger = logging.getLogger(__name__)


def calculate_consumption(
    opening_stock,
    receipts,
    transfers_in,
    transfers_out,
    issues,
    closing_stock,
    total_adjustments=ZERO
) -> Decimal:
    """Consumption for the period; negative results are valid"""
    return (
        to_decimal(opening_stock)
        + to_decimal(receipts)
        + to_decimal(transfers_in)
        - to_decimal(transfers_out)
        - to_decimal(issues)
        - to_decimal(closing_stock)
        + to_decimal(total_adjustments)
    )


def calculate_manday_cost(consumption, total_mandays: int) -> Optional[Decimal]:
    if total_mandays is None or total_mandays <= 0:
        return None
    return to_decimal(consumption) / Decimal(total_mandays)


class ReconciliationCalculator:
    """
    Reconciliation Calculator

    Reads movement aggregates and the live stock value at call time.
    Only save_adjustments and freeze write.
    """

    def __init__(
        self,
        db: Session,
        current_user=None,
        ledger: Optional[StockLedger] = None,
        pob: Optional[POBService] = None,
        authorizer: Optional[Authorizer] = None
    ):
        self.db = db
        self.current_user = current_user
        self.ledger = ledger or StockLedger(db)
        self.pob = pob or POBService(db, current_user)
        self.authorizer = authorizer or RoleAuthorizer()

    def calculate(self, location_id: int, period_id: int) -> ReconciliationResult:
        """Current reconciliation for a location and period"""
        membership = self._membership(period_id, location_id)
        saved = self.get_saved(location_id, period_id)

        if saved is not None and saved.is_frozen:
            return self._frozen_result(saved)

        if membership.status == PeriodStatus.CLOSED.value:
            raise InvalidPeriodStateError(
                f"Period {period_id} is closed at location {location_id} without a frozen reconciliation",
                period_id=period_id,
                location_id=location_id,
            )

        if saved is None:
            return self._compute(membership, Adjustments(), ReconciliationMode.DERIVED)
        return self._compute(membership, self._stored_adjustments(saved), ReconciliationMode.SAVED)

    def save_adjustments(self, location_id: int, period_id: int, adjustments) -> ReconciliationResult:
        """
        Create or update the saved reconciliation

        Allowed while the location is OPEN or PENDING_CLOSE.
        """
        try:
            self.authorizer.require_save_adjustments(self.current_user, location_id)

            membership = self._membership(period_id, location_id, lock=True)
            if membership.status == PeriodStatus.CLOSED.value:
                raise PeriodClosedError(
                    period_id, location_id, membership.status,
                    message=f"Reconciliation for period {period_id} at location {location_id} is frozen"
                )

            values = self._parse_adjustments(adjustments)
            result = self._compute(membership, values, ReconciliationMode.SAVED)

            record = self.get_saved(location_id, period_id)
            old_values = None
            if record is None:
                record = Reconciliation(period_id=period_id, location_id=location_id)
                self.db.add(record)
            else:
                old_values = self._stored_adjustments(record).model_dump()

            record.back_charges = values.back_charges
            record.credits = values.credits
            record.condemnations = values.condemnations
            record.other_adjustments = values.other
            record.consumption = round_money(result.consumption)
            record.total_mandays = result.total_mandays
            record.manday_cost = result.manday_cost
            record.saved_by = self.current_user.username if self.current_user else None
            record.saved_at = result.calculated_at

            log_user_action(
                db=self.db,
                actor=self.current_user,
                action="ADJUSTMENTS_SAVED",
                table="reconciliations",
                key=f"{period_id}/{location_id}",
                old_values=old_values,
                new_values=dict(values.model_dump(), consumption=record.consumption),
                module="RECON"
            )

            self.db.commit()
            logger.info(
                f"Saved reconciliation for location {location_id}, period {period_id}: "
                f"consumption {record.consumption}"
            )
            if result.is_negative_consumption:
                logger.warning(
                    f"Negative consumption {record.consumption} at location {location_id}, period {period_id}"
                )
            return result

        except StockLedgerException as e:
            self.db.rollback()
            logger.warning(f"Adjustments not saved for location {location_id}: {e.message}")
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error saving adjustments for location {location_id}: {e}")
            raise

    def freeze(self, location_id: int, period_id: int, frozen_at: Optional[datetime] = None) -> ReconciliationResult:
        """
        Write every figure of the saved reconciliation and mark it frozen

        Runs inside the caller's transaction; the caller commits.
        """
        membership = self._membership(period_id, location_id, lock=True)
        record = self.get_saved(location_id, period_id)
        if record is None:
            raise InvalidPeriodStateError(
                f"No saved reconciliation for location {location_id}, period {period_id}",
                period_id=period_id,
                location_id=location_id,
            )
        if record.is_frozen:
            return self._frozen_result(record)

        result = self._compute(membership, self._stored_adjustments(record), ReconciliationMode.FROZEN)

        record.opening_stock = round_money(result.opening_stock)
        record.receipts = round_money(result.receipts)
        record.transfers_in = round_money(result.transfers_in)
        record.transfers_out = round_money(result.transfers_out)
        record.issues = round_money(result.issues)
        record.closing_stock = round_money(result.closing_stock)
        record.consumption = round_money(result.consumption)
        record.total_mandays = result.total_mandays
        record.manday_cost = result.manday_cost
        record.frozen_at = frozen_at or datetime.now(timezone.utc)
        self.db.flush()
        return result

    def get_saved(self, location_id: int, period_id: int) -> Optional[Reconciliation]:
        return self.db.query(Reconciliation).filter(
            Reconciliation.period_id == period_id,
            Reconciliation.location_id == location_id
        ).first()

    def opening_stock(self, membership: PeriodLocation) -> Decimal:
        """
        Carried value from the previous period

        Zero when there is no previous period or the location was not
        part of it.
        """
        if membership.opening_value is not None:
            return Decimal(membership.opening_value)

        period = self.db.get(Period, membership.period_id)
        before = previous_period(self.db, period)
        if before is None:
            return ZERO

        prior = self.get_saved(membership.location_id, before.id)
        if prior is not None and prior.is_frozen and prior.closing_stock is not None:
            return Decimal(prior.closing_stock)
        return ZERO

    def movement_totals(self, location_id: int, period_id: int) -> Dict[MovementKind, Decimal]:
        """Posted movement values per kind"""
        totals = {kind: ZERO for kind in MovementKind}
        rows = self.db.query(StockMovement.kind, StockMovement.value).filter(
            StockMovement.location_id == location_id,
            StockMovement.period_id == period_id,
            StockMovement.status == MovementStatus.POSTED.value
        ).all()
        for kind, value in rows:
            totals[MovementKind(kind)] += Decimal(value)
        return totals

    def closing_stock(self, membership: PeriodLocation) -> Decimal:
        """
        Stock value at the end of the period

        The live value with movements already posted to later periods at
        the location wound back out of it.
        """
        live = self.ledger.location_stock_value(membership.location_id)
        period = self.db.get(Period, membership.period_id)

        rows = self.db.query(StockMovement.kind, StockMovement.value).join(
            Period, StockMovement.period_id == Period.id
        ).filter(
            StockMovement.location_id == membership.location_id,
            StockMovement.status == MovementStatus.POSTED.value,
            Period.start_date > period.end_date
        ).all()

        later = ZERO
        for kind, value in rows:
            if MovementKind(kind) in (MovementKind.RECEIPT, MovementKind.TRANSFER_IN):
                later += Decimal(value)
            else:
                later -= Decimal(value)
        return round_money(live - later)

    def _compute(self, membership, adjustments: Adjustments, mode) -> ReconciliationResult:
        location_id = membership.location_id
        period_id = membership.period_id

        opening = self.opening_stock(membership)
        totals = self.movement_totals(location_id, period_id)
        closing = self.closing_stock(membership)
        mandays = self.pob.total_mandays(location_id, period_id)

        consumption = calculate_consumption(
            opening,
            totals[MovementKind.RECEIPT],
            totals[MovementKind.TRANSFER_IN],
            totals[MovementKind.TRANSFER_OUT],
            totals[MovementKind.ISSUE],
            closing,
            adjustments.total
        )

        return ReconciliationResult(
            location_id=location_id,
            period_id=period_id,
            mode=mode,
            opening_stock=opening,
            receipts=totals[MovementKind.RECEIPT],
            transfers_in=totals[MovementKind.TRANSFER_IN],
            transfers_out=totals[MovementKind.TRANSFER_OUT],
            issues=totals[MovementKind.ISSUE],
            closing_stock=closing,
            adjustments=adjustments,
            consumption=consumption,
            total_mandays=mandays,
            manday_cost=calculate_manday_cost(consumption, mandays),
            calculated_at=datetime.now(timezone.utc)
        )

    @staticmethod
    def _frozen_result(record: Reconciliation) -> ReconciliationResult:
        return ReconciliationResult(
            location_id=record.location_id,
            period_id=record.period_id,
            mode=ReconciliationMode.FROZEN,
            opening_stock=record.opening_stock,
            receipts=record.receipts,
            transfers_in=record.transfers_in,
            transfers_out=record.transfers_out,
            issues=record.issues,
            closing_stock=record.closing_stock,
            adjustments=ReconciliationCalculator._stored_adjustments(record),
            consumption=record.consumption,
            total_mandays=record.total_mandays,
            manday_cost=record.manday_cost,
            calculated_at=record.frozen_at
        )

    @staticmethod
    def _stored_adjustments(record: Reconciliation) -> Adjustments:
        return Adjustments(
            back_charges=record.back_charges,
            credits=record.credits,
            condemnations=record.condemnations,
            other=record.other_adjustments
        )

    @staticmethod
    def _parse_adjustments(adjustments) -> Adjustments:
        if adjustments is None:
            adjustments = Adjustments()
        if not isinstance(adjustments, Adjustments):
            try:
                adjustments = Adjustments.model_validate(adjustments)
            except (pydantic.ValidationError, TypeError, ValueError) as e:
                raise InvalidAdjustmentError(f"Invalid adjustments: {e}")
        return Adjustments(
            back_charges=round_money(adjustments.back_charges),
            credits=round_money(adjustments.credits),
            condemnations=round_money(adjustments.condemnations),
            other=round_money(adjustments.other)
        )

    def _membership(self, period_id: int, location_id: int, lock: bool = False) -> PeriodLocation:
        membership = get_period_location(self.db, period_id, location_id, lock=lock)
        if membership is None:
            if self.db.get(Period, period_id) is None:
                raise NotFoundError(f"Period {period_id} not found", period_id=period_id)
            raise NotFoundError(
                f"Location {location_id} is not part of period {period_id}",
                period_id=period_id,
                location_id=location_id,
            )
        return membership
