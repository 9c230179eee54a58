"""
Stock Transfer Service
Moves stock between locations in two steps: request, then approval
"""
import logging
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from stockledger.core.audit import log_user_action
from stockledger.core.exceptions import (
    InvalidTransferStateError, NotFoundError, StockLedgerException, ValidationError
)
from stockledger.core.money import ZERO, line_value, round_money
from stockledger.models.documents import Transfer, TransferLine
from stockledger.schemas.stock import MovementKind, ReferenceType, TransferLineInput, TransferStatus
from stockledger.services.authorization import Authorizer, RoleAuthorizer
from stockledger.services.stock.deliveries import parse_lines
from stockledger.services.stock.ledger import StockLedger
from stockledger.services.stock.numbering import next_document_number

logger = logging.getLogger(__name__)


class TransferService:
    """
    Stock Transfer Service

    A request only records the intent; its validation is advisory and
    may be stale by the time the transfer is approved. Approval
    re-validates every line inside its own transaction and applies the
    TRANSFER_OUT and TRANSFER_IN pair for each line, or nothing.
    """

    def __init__(
        self,
        db: Session,
        current_user=None,
        ledger: Optional[StockLedger] = None,
        authorizer: Optional[Authorizer] = None
    ):
        self.db = db
        self.current_user = current_user
        self.ledger = ledger or StockLedger(db)
        self.authorizer = authorizer or RoleAuthorizer()

    def request_transfer(
        self,
        from_location_id: int,
        to_location_id: int,
        period_id: int,
        lines: Iterable,
        transfer_date: Optional[date] = None,
        notes: Optional[str] = None
    ) -> Transfer:
        """Create a transfer in PENDING_APPROVAL"""
        validator = self.ledger.validator
        try:
            parsed = parse_lines(lines, TransferLineInput)

            for line in parsed:
                validator.validate(
                    from_location_id, line.item_id, line.quantity, MovementKind.TRANSFER_OUT,
                    period_id, counterpart_location_id=to_location_id
                )
            validator.check_period_open(period_id, to_location_id)

            transfer_date = transfer_date or date.today()
            transfer = Transfer(
                transfer_no=next_document_number(self.db, Transfer.transfer_no, "TRF", transfer_date),
                from_location_id=from_location_id,
                to_location_id=to_location_id,
                period_id=period_id,
                status=TransferStatus.PENDING_APPROVAL.value,
                transfer_date=transfer_date,
                notes=notes,
                requested_by=self._username(),
                requested_at=datetime.now(timezone.utc)
            )
            self.db.add(transfer)
            self.db.flush()

            estimate = ZERO
            for line in parsed:
                wac = self.ledger.get_stock(from_location_id, line.item_id).wac
                self.db.add(TransferLine(
                    transfer_id=transfer.id,
                    item_id=line.item_id,
                    quantity=line.quantity,
                    wac_at_request=wac
                ))
                estimate += line_value(line.quantity, wac)
            transfer.total_value = round_money(estimate)

            log_user_action(
                db=self.db,
                actor=self.current_user,
                action="TRANSFER_REQUESTED",
                table="transfers",
                key=transfer.transfer_no,
                new_values={
                    'from_location_id': from_location_id,
                    'to_location_id': to_location_id,
                    'period_id': period_id,
                    'lines': len(parsed)
                },
                module="STOCK"
            )

            self.db.commit()
            logger.info(
                f"Transfer {transfer.transfer_no} requested from location {from_location_id} "
                f"to {to_location_id} ({len(parsed)} line(s))"
            )
            return transfer

        except StockLedgerException as e:
            self.db.rollback()
            logger.warning(f"Transfer request rejected: {e.message}")
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error requesting transfer: {e}")
            raise

    def approve_transfer(self, transfer_id: int) -> Transfer:
        """
        Approve a pending transfer and apply it to both ledgers

        Source WAC is read under the row lock at this point, not taken
        from the request.
        """
        try:
            transfer = self._locked_transfer(transfer_id)
            self.authorizer.require_approve(self.current_user, transfer.from_location_id)
            self._require_pending(transfer, "approve")

            self.ledger.validator.check_period_open(transfer.period_id, transfer.to_location_id)

            username = self._username()
            total = ZERO
            for line in transfer.lines:
                source = self.ledger.transfer_out(
                    transfer.from_location_id, line.item_id, line.quantity, transfer.period_id,
                    destination_location_id=transfer.to_location_id,
                    reference_type=ReferenceType.TRANSFER,
                    reference_id=transfer.id,
                    created_by=username
                )
                self.ledger.transfer_in(
                    transfer.to_location_id, line.item_id, line.quantity, source.wac,
                    transfer.period_id,
                    source_location_id=transfer.from_location_id,
                    reference_type=ReferenceType.TRANSFER,
                    reference_id=transfer.id,
                    created_by=username
                )
                line.transfer_wac = source.wac
                line.line_value = line_value(line.quantity, source.wac)
                total += line.line_value

            transfer.status = TransferStatus.COMPLETED.value
            transfer.approved_by = username
            transfer.approved_at = datetime.now(timezone.utc)
            transfer.total_value = round_money(total)

            log_user_action(
                db=self.db,
                actor=self.current_user,
                action="TRANSFER_APPROVED",
                table="transfers",
                key=transfer.transfer_no,
                old_values={'status': TransferStatus.PENDING_APPROVAL.value},
                new_values={
                    'status': TransferStatus.COMPLETED.value,
                    'total_value': transfer.total_value
                },
                module="STOCK"
            )

            self.db.commit()
            logger.info(f"Transfer {transfer.transfer_no} approved: {transfer.total_value}")
            return transfer

        except StockLedgerException as e:
            self.db.rollback()
            logger.warning(f"Transfer {transfer_id} not approved: {e.message}")
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error approving transfer {transfer_id}: {e}")
            raise

    def reject_transfer(self, transfer_id: int, reason: str) -> Transfer:
        try:
            if not reason or not reason.strip():
                raise ValidationError("A rejection reason is required")

            transfer = self._locked_transfer(transfer_id)
            self.authorizer.require_approve(self.current_user, transfer.from_location_id)
            self._require_pending(transfer, "reject")

            transfer.status = TransferStatus.REJECTED.value
            transfer.approved_by = self._username()
            transfer.approved_at = datetime.now(timezone.utc)
            transfer.rejection_reason = reason.strip()

            log_user_action(
                db=self.db,
                actor=self.current_user,
                action="TRANSFER_REJECTED",
                table="transfers",
                key=transfer.transfer_no,
                old_values={'status': TransferStatus.PENDING_APPROVAL.value},
                new_values={'status': TransferStatus.REJECTED.value, 'reason': transfer.rejection_reason},
                module="STOCK"
            )

            self.db.commit()
            logger.info(f"Transfer {transfer.transfer_no} rejected")
            return transfer

        except StockLedgerException as e:
            self.db.rollback()
            logger.warning(f"Transfer {transfer_id} not rejected: {e.message}")
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error rejecting transfer {transfer_id}: {e}")
            raise

    def pending_transfers(self, period_id: int, location_id: Optional[int] = None) -> List[Transfer]:
        """Transfers awaiting approval in a period, optionally touching one location"""
        query = self.db.query(Transfer).filter(
            Transfer.period_id == period_id,
            Transfer.status == TransferStatus.PENDING_APPROVAL.value
        )
        if location_id is not None:
            query = query.filter(or_(
                Transfer.from_location_id == location_id,
                Transfer.to_location_id == location_id
            ))
        return query.order_by(Transfer.id).all()

    def _locked_transfer(self, transfer_id: int) -> Transfer:
        transfer = self.db.query(Transfer).filter(Transfer.id == transfer_id).with_for_update().first()
        if transfer is None:
            raise NotFoundError(f"Transfer {transfer_id} not found", transfer_id=transfer_id)
        return transfer

    @staticmethod
    def _require_pending(transfer: Transfer, action: str):
        if transfer.status != TransferStatus.PENDING_APPROVAL.value:
            raise InvalidTransferStateError(
                f"Cannot {action} transfer {transfer.transfer_no} in status {transfer.status}",
                transfer_id=transfer.id,
                status=transfer.status,
            )

    def _username(self) -> Optional[str]:
        return self.current_user.username if self.current_user else None
