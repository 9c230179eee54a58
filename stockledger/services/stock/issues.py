"""
Issue Service
Stock consumed at a location, valued at the current WAC
"""
import logging
from datetime import date
from typing import Iterable, Optional, Union

from sqlalchemy.orm import Session

from stockledger.core.audit import log_user_action
from stockledger.core.exceptions import StockLedgerException, ValidationError
from stockledger.core.money import ZERO, line_value, round_money
from stockledger.models.documents import Issue, IssueLine
from stockledger.schemas.stock import CostCentre, IssueLineInput, MovementStatus, ReferenceType
from stockledger.services.stock.deliveries import parse_lines
from stockledger.services.stock.ledger import StockLedger
from stockledger.services.stock.numbering import next_document_number

logger = logging.getLogger(__name__)


class IssueService:

    def __init__(self, db: Session, current_user=None, ledger: Optional[StockLedger] = None):
        self.db = db
        self.current_user = current_user
        self.ledger = ledger or StockLedger(db)

    def post_issue(
        self,
        location_id: int,
        period_id: int,
        lines: Iterable,
        cost_centre: Union[CostCentre, str] = CostCentre.FOOD,
        issue_date: Optional[date] = None
    ) -> Issue:
        """
        Post an issue document

        All lines succeed or none do; a line that would take stock
        below zero rolls back the lines before it.
        """
        username = self.current_user.username if self.current_user else None

        try:
            parsed = parse_lines(lines, IssueLineInput)
            try:
                cost_centre = CostCentre(cost_centre)
            except ValueError:
                raise ValidationError(f"Unknown cost centre: {cost_centre}", cost_centre=cost_centre)
            self.ledger.validator.check_period_open(period_id, location_id)

            issue_date = issue_date or date.today()
            issue = Issue(
                issue_no=next_document_number(self.db, Issue.issue_no, "ISS", issue_date),
                location_id=location_id,
                period_id=period_id,
                cost_centre=cost_centre.value,
                issue_date=issue_date,
                status=MovementStatus.POSTED.value,
                created_by=username
            )
            self.db.add(issue)
            self.db.flush()

            total = ZERO
            for line in parsed:
                snapshot = self.ledger.issue(
                    location_id, line.item_id, line.quantity, period_id,
                    reference_type=ReferenceType.ISSUE,
                    reference_id=issue.id,
                    created_by=username
                )
                value = line_value(line.quantity, snapshot.wac)
                self.db.add(IssueLine(
                    issue_id=issue.id,
                    item_id=line.item_id,
                    quantity=line.quantity,
                    wac_at_issue=snapshot.wac,
                    line_value=value,
                    movement_id=snapshot.movement_id
                ))
                total += value

            issue.total_value = round_money(total)

            log_user_action(
                db=self.db,
                actor=self.current_user,
                action="ISSUE_POSTED",
                table="issues",
                key=issue.issue_no,
                new_values={
                    'location_id': location_id,
                    'period_id': period_id,
                    'cost_centre': cost_centre.value,
                    'lines': len(parsed),
                    'total_value': issue.total_value
                },
                module="STOCK"
            )

            self.db.commit()
            logger.info(f"Posted issue {issue.issue_no} at location {location_id}: {issue.total_value}")
            return issue

        except StockLedgerException as e:
            self.db.rollback()
            logger.warning(f"Issue rejected at location {location_id}: {e.message}")
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error posting issue at location {location_id}: {e}")
            raise
