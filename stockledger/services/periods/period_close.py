"""
Period Close Service
Two-step close of a period across its locations

    request_close  OPEN -> PENDING_CLOSE for every location, or none
    execute_close  PENDING_CLOSE -> CLOSED one location at a time
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from stockledger.core.audit import log_user_action
from stockledger.core.exceptions import (
    ClosePreconditionError, InvalidPeriodStateError, NotFoundError, StockLedgerException
)
from stockledger.models.period import Period, PeriodLocation
from stockledger.schemas.stock import (
    CloseFailure, LocationCloseSummary, PeriodCloseResult, PeriodStatus
)
from stockledger.services.authorization import Authorizer, RoleAuthorizer
from stockledger.services.reconciliation.calculator import ReconciliationCalculator
from stockledger.services.stock.transfers import TransferService
from stockledger.services.stock.validator import get_period_location

logger = logging.getLogger(__name__)

PENDING_TRANSFERS = "PENDING_TRANSFERS"
RECONCILIATION_NOT_SAVED = "RECONCILIATION_NOT_SAVED"
CLOSE_FAILED = "CLOSE_FAILED"


class PeriodCloseService:
    """
    Period Close Service

    A location is ready to close when no transfer touching it in the
    period awaits approval and its reconciliation has been saved.
    request_close checks every location and reports all failures at once.
    execute_close checks each location again under lock before freezing
    it. Locations closed before a later failure stay closed.
    """

    def __init__(
        self,
        db: Session,
        current_user=None,
        calculator: Optional[ReconciliationCalculator] = None,
        authorizer: Optional[Authorizer] = None
    ):
        self.db = db
        self.current_user = current_user
        self.authorizer = authorizer or RoleAuthorizer()
        self.calculator = calculator or ReconciliationCalculator(db, current_user, authorizer=self.authorizer)
        self.transfers = TransferService(db, current_user, ledger=self.calculator.ledger, authorizer=self.authorizer)

    def check_preconditions(self, period_id: int) -> List[CloseFailure]:
        """Every reason any location of the period cannot close yet"""
        period = self._get_period(period_id)
        failures = []
        for membership in period.period_locations:
            if membership.status == PeriodStatus.CLOSED.value:
                continue
            failures.extend(self._location_failures(period_id, membership.location_id))
        return failures

    def request_close(self, period_id: int) -> Period:
        try:
            self.authorizer.require_close_period(self.current_user, period_id)

            period = self._get_period(period_id, lock=True)
            if period.status != PeriodStatus.OPEN.value:
                raise InvalidPeriodStateError(
                    f"Close already requested for period {period.name} (status {period.status})",
                    period_id=period_id,
                    status=period.status,
                )

            memberships = self._locked_memberships(period_id)
            failures = []
            for membership in memberships:
                failures.extend(self._location_failures(period_id, membership.location_id))
            if failures:
                raise ClosePreconditionError(period_id, [f.model_dump() for f in failures])

            now = datetime.now(timezone.utc)
            for membership in memberships:
                membership.status = PeriodStatus.PENDING_CLOSE.value
                membership.close_requested_at = now
            period.status = PeriodStatus.PENDING_CLOSE.value
            period.close_requested_at = now

            log_user_action(
                db=self.db,
                actor=self.current_user,
                action="CLOSE_REQUESTED",
                table="periods",
                key=period_id,
                old_values={'status': PeriodStatus.OPEN.value},
                new_values={
                    'status': PeriodStatus.PENDING_CLOSE.value,
                    'locations': [m.location_id for m in memberships]
                },
                module="PERIOD"
            )

            self.db.commit()
            logger.info(f"Close requested for period {period.name} ({len(memberships)} location(s))")
            return period

        except StockLedgerException as e:
            self.db.rollback()
            logger.warning(f"Close request for period {period_id} rejected: {e.message}")
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error requesting close of period {period_id}: {e}")
            raise

    def execute_close(self, period_id: int) -> PeriodCloseResult:
        """
        Freeze and close every pending location

        Each location commits on its own. If any location fails, the
        others are still attempted and a ClosePreconditionError listing
        the failures is raised at the end.
        """
        self.authorizer.require_close_period(self.current_user, period_id)

        period = self._get_period(period_id)
        if period.status != PeriodStatus.PENDING_CLOSE.value:
            raise InvalidPeriodStateError(
                f"Period {period.name} is not pending close (status {period.status})",
                period_id=period_id,
                status=period.status,
            )

        location_ids = [m.location_id for m in period.period_locations]
        summaries = []
        failures = []

        for location_id in location_ids:
            try:
                summary = self._close_location(period_id, location_id)
                self.db.commit()
                summaries.append(summary)
            except ClosePreconditionError as e:
                self.db.rollback()
                logger.warning(f"Location {location_id} not closed: {e.message}")
                failures.extend(e.failures)
            except StockLedgerException as e:
                self.db.rollback()
                logger.warning(f"Location {location_id} not closed: {e.message}")
                failures.append(CloseFailure(
                    location_id=location_id, reason=CLOSE_FAILED, detail=e.message
                ).model_dump())
            except Exception as e:
                self.db.rollback()
                logger.error(f"Error closing location {location_id} in period {period_id}: {e}")
                raise

        if failures:
            raise ClosePreconditionError(period_id, failures)

        try:
            period = self._get_period(period_id, lock=True)
            period.status = PeriodStatus.CLOSED.value
            period.closed_at = datetime.now(timezone.utc)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error marking period {period_id} closed: {e}")
            raise

        logger.info(f"Period {period.name} closed at {len(summaries)} location(s)")
        return PeriodCloseResult(
            period_id=period_id,
            period_status=PeriodStatus.CLOSED,
            locations=summaries
        )

    def _close_location(self, period_id: int, location_id: int) -> LocationCloseSummary:
        membership = get_period_location(self.db, period_id, location_id, lock=True)
        if membership.status == PeriodStatus.CLOSED.value:
            return LocationCloseSummary(
                location_id=location_id,
                status=PeriodStatus.CLOSED,
                closing_value=membership.closing_value
            )

        failures = self._location_failures(period_id, location_id)
        if failures:
            raise ClosePreconditionError(period_id, [f.model_dump() for f in failures])

        now = datetime.now(timezone.utc)
        result = self.calculator.freeze(location_id, period_id, frozen_at=now)
        stock = self.calculator.ledger.list_location_stock(location_id, include_zero=False)
        display = result.display()

        membership.closing_value = display["closing_stock"]
        membership.snapshot_data = {
            'items': [
                {
                    'item_id': line.item_id,
                    'on_hand': str(line.on_hand),
                    'wac': str(line.wac),
                    'value': str(line.value)
                }
                for line in stock
            ],
            'reconciliation': {
                key: (str(value) if value is not None and not isinstance(value, int) else value)
                for key, value in display.items()
            },
            'closed_at': now.isoformat()
        }
        membership.status = PeriodStatus.CLOSED.value
        membership.closed_at = now

        self._carry_forward(membership)

        log_user_action(
            db=self.db,
            actor=self.current_user,
            action="LOCATION_CLOSED",
            table="period_locations",
            key=f"{period_id}/{location_id}",
            old_values={'status': PeriodStatus.PENDING_CLOSE.value},
            new_values={
                'status': PeriodStatus.CLOSED.value,
                'closing_value': membership.closing_value,
                'consumption': display["consumption"]
            },
            module="PERIOD"
        )
        self.db.flush()

        logger.info(
            f"Closed location {location_id} for period {period_id}: closing value "
            f"{membership.closing_value}, consumption {display['consumption']}"
        )
        return LocationCloseSummary(
            location_id=location_id,
            status=PeriodStatus.CLOSED,
            closing_value=membership.closing_value,
            consumption=display["consumption"],
            item_count=len(stock)
        )

    def _carry_forward(self, membership: PeriodLocation):
        """Set the next period's opening value if it is already open"""
        period = self.db.get(Period, membership.period_id)
        following = self.db.query(Period).filter(
            Period.start_date > period.end_date
        ).order_by(Period.start_date).first()
        if following is None:
            return
        target = get_period_location(self.db, following.id, membership.location_id, lock=True)
        if target is not None and target.status != PeriodStatus.CLOSED.value:
            target.opening_value = membership.closing_value

    def _location_failures(self, period_id: int, location_id: int) -> List[CloseFailure]:
        failures = []
        pending = self.transfers.pending_transfers(period_id, location_id)
        if pending:
            failures.append(CloseFailure(
                location_id=location_id,
                reason=PENDING_TRANSFERS,
                detail=", ".join(t.transfer_no for t in pending)
            ))
        if self.calculator.get_saved(location_id, period_id) is None:
            failures.append(CloseFailure(
                location_id=location_id,
                reason=RECONCILIATION_NOT_SAVED,
                detail="Reconciliation has not been saved"
            ))
        return failures

    def _get_period(self, period_id: int, lock: bool = False) -> Period:
        query = self.db.query(Period).filter(Period.id == period_id)
        if lock:
            query = query.with_for_update()
        period = query.first()
        if period is None:
            raise NotFoundError(f"Period {period_id} not found", period_id=period_id)
        return period

    def _locked_memberships(self, period_id: int) -> List[PeriodLocation]:
        return self.db.query(PeriodLocation).filter(
            PeriodLocation.period_id == period_id
        ).order_by(PeriodLocation.location_id).with_for_update().all()
