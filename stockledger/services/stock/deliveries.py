"""
Delivery Service
Posts supplier deliveries into the ledger and flags price variances
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

import pydantic
from sqlalchemy.orm import Session

from stockledger.core.audit import log_user_action
from stockledger.core.config import settings
from stockledger.core.exceptions import (
    MissingPeriodPriceError, StockLedgerException, ValidationError
)
from stockledger.core.money import ZERO, line_value, round_money
from stockledger.models.documents import Delivery, DeliveryLine
from stockledger.models.period import ItemPrice
from stockledger.models.reconciliation import PriceVariance
from stockledger.schemas.stock import (
    DeliveryLineInput, MovementStatus, ReferenceType, VarianceRecord
)
from stockledger.services.ncr import LoggingNCRGateway, NCRGateway
from stockledger.services.stock.ledger import StockLedger
from stockledger.services.stock.numbering import next_document_number
from stockledger.services.stock.price_variance import PriceVarianceDetector

logger = logging.getLogger(__name__)


def parse_lines(lines: Iterable, model) -> list:
    """Coerce dict lines into input models, mapping pydantic errors"""
    parsed = []
    for number, line in enumerate(lines, start=1):
        if isinstance(line, model):
            parsed.append(line)
            continue
        try:
            parsed.append(model.model_validate(line))
        except pydantic.ValidationError as e:
            raise ValidationError(f"Line {number} is invalid: {e.errors()[0]['msg']}", line=number)
    if not parsed:
        raise ValidationError("At least one line is required")
    return parsed


class DeliveryService:
    """
    Delivery posting

    One transaction receives every line, stores the line's period price
    and per-unit variance, and persists a PriceVariance row for every
    line outside tolerance. Variance records go to the NCR gateway only
    after the commit.
    """

    def __init__(
        self,
        db: Session,
        current_user=None,
        ledger: Optional[StockLedger] = None,
        detector: Optional[PriceVarianceDetector] = None,
        ncr_gateway: Optional[NCRGateway] = None
    ):
        self.db = db
        self.current_user = current_user
        self.ledger = ledger or StockLedger(db)
        self.detector = detector or PriceVarianceDetector()
        self.ncr_gateway = ncr_gateway or LoggingNCRGateway()

    def post_delivery(
        self,
        location_id: int,
        period_id: int,
        lines: Iterable,
        supplier_ref: Optional[str] = None,
        invoice_no: Optional[str] = None,
        delivery_date: Optional[date] = None
    ) -> Delivery:
        """Post a delivery, returning the saved header"""
        username = self.current_user.username if self.current_user else None
        variances: List[VarianceRecord] = []

        try:
            parsed = parse_lines(lines, DeliveryLineInput)
            self.ledger.validator.check_period_open(period_id, location_id)

            if invoice_no and self._invoice_exists(supplier_ref, invoice_no):
                raise ValidationError(
                    f"Invoice {invoice_no} from {supplier_ref or 'unknown supplier'} is already recorded",
                    supplier_ref=supplier_ref,
                    invoice_no=invoice_no,
                )

            prices = self._period_prices(period_id, {line.item_id for line in parsed})
            missing = sorted({line.item_id for line in parsed} - set(prices))
            if missing and settings.REQUIRE_PERIOD_PRICES:
                raise MissingPeriodPriceError(period_id, missing)

            delivery_date = delivery_date or date.today()
            delivery = Delivery(
                delivery_no=next_document_number(self.db, Delivery.delivery_no, "DLV", delivery_date),
                location_id=location_id,
                period_id=period_id,
                supplier_ref=supplier_ref,
                invoice_no=invoice_no,
                delivery_date=delivery_date,
                status=MovementStatus.POSTED.value,
                created_by=username
            )
            self.db.add(delivery)
            self.db.flush()

            total = ZERO
            for line in parsed:
                snapshot = self.ledger.receive(
                    location_id, line.item_id, line.quantity, line.unit_price, period_id,
                    reference_type=ReferenceType.DELIVERY,
                    reference_id=delivery.id,
                    created_by=username
                )

                period_price = prices.get(line.item_id)
                value = line_value(line.quantity, line.unit_price)
                delivery_line = DeliveryLine(
                    delivery_id=delivery.id,
                    item_id=line.item_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    period_price=period_price,
                    price_variance=(line.unit_price - period_price) if period_price is not None else ZERO,
                    line_value=value,
                    movement_id=snapshot.movement_id
                )
                self.db.add(delivery_line)
                self.db.flush()
                total += value

                if period_price is not None:
                    record = self._record_variance(delivery, delivery_line, period_price)
                    if record:
                        variances.append(record)

            delivery.total_amount = round_money(total)
            delivery.has_variance = bool(variances)

            log_user_action(
                db=self.db,
                actor=self.current_user,
                action="DELIVERY_POSTED",
                table="deliveries",
                key=delivery.delivery_no,
                new_values={
                    'location_id': location_id,
                    'period_id': period_id,
                    'lines': len(parsed),
                    'total_amount': delivery.total_amount,
                    'variances': len(variances)
                },
                module="STOCK"
            )

            self.db.commit()
            logger.info(
                f"Posted delivery {delivery.delivery_no} at location {location_id}: "
                f"{len(parsed)} line(s), {delivery.total_amount} {settings.DEFAULT_CURRENCY}"
            )

        except StockLedgerException as e:
            self.db.rollback()
            logger.warning(f"Delivery rejected at location {location_id}: {e.message}")
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error posting delivery at location {location_id}: {e}")
            raise

        for record in variances:
            self.ncr_gateway.submit(record)

        return delivery

    def _record_variance(self, delivery, delivery_line, period_price) -> Optional[VarianceRecord]:
        record = self.detector.detect_variance(
            period_price,
            delivery_line.unit_price,
            delivery_line.quantity,
            location_id=delivery.location_id,
            item_id=delivery_line.item_id,
            period_id=delivery.period_id,
            delivery_id=delivery.id,
            delivery_line_id=delivery_line.id
        )
        if record is None:
            return None

        row = PriceVariance(
            delivery_id=delivery.id,
            delivery_line_id=delivery_line.id,
            location_id=delivery.location_id,
            item_id=delivery_line.item_id,
            period_id=delivery.period_id,
            expected_price=record.expected_price,
            actual_price=record.actual_price,
            quantity=record.quantity,
            variance_per_unit=record.variance_per_unit,
            variance_value=record.variance_value,
            direction=record.direction.value
        )
        self.db.add(row)
        self.db.flush()
        return record.model_copy(update={"variance_id": row.id})

    def _invoice_exists(self, supplier_ref, invoice_no) -> bool:
        query = self.db.query(Delivery.id).filter(Delivery.invoice_no == invoice_no)
        if supplier_ref is None:
            query = query.filter(Delivery.supplier_ref.is_(None))
        else:
            query = query.filter(Delivery.supplier_ref == supplier_ref)
        return query.first() is not None

    def _period_prices(self, period_id: int, item_ids) -> dict:
        rows = self.db.query(ItemPrice).filter(
            ItemPrice.period_id == period_id,
            ItemPrice.item_id.in_(item_ids)
        ).all()
        return {row.item_id: Decimal(row.price) for row in rows}
