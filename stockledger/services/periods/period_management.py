"""
Period Management Service
Opens periods, rolls them forward and maintains period-locked prices
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from stockledger.core.audit import log_user_action
from stockledger.core.exceptions import (
    InvalidPeriodStateError, NotFoundError, PeriodClosedError,
    StockLedgerException, ValidationError
)
from stockledger.core.money import quantize_price, to_decimal
from stockledger.models.location import Item, Location
from stockledger.models.period import ItemPrice, Period, PeriodLocation
from stockledger.schemas.stock import PeriodStatus
from stockledger.services.stock.validator import get_period_location

logger = logging.getLogger(__name__)


def previous_period(db: Session, period: Period) -> Optional[Period]:
    """Latest period ending before this one starts"""
    return db.query(Period).filter(
        Period.end_date < period.start_date
    ).order_by(Period.end_date.desc()).first()


class PeriodService:
    """
    Period lifecycle outside the close itself

    A period covers a set of locations, each with its own status row
    (PeriodLocation). Opening values are carried from the previous
    period's frozen closing values.
    """

    def __init__(self, db: Session, current_user=None):
        self.db = db
        self.current_user = current_user

    def get_period(self, period_id: int) -> Period:
        period = self.db.get(Period, period_id)
        if period is None:
            raise NotFoundError(f"Period {period_id} not found", period_id=period_id)
        return period

    def get_period_location_status(self, period_id: int, location_id: int) -> PeriodStatus:
        membership = get_period_location(self.db, period_id, location_id)
        if membership is None:
            self.get_period(period_id)
            raise NotFoundError(
                f"Location {location_id} is not part of period {period_id}",
                period_id=period_id,
                location_id=location_id,
            )
        return PeriodStatus(membership.status)

    def open_period(
        self,
        name: str,
        start_date: date,
        end_date: date,
        location_ids: List[int]
    ) -> Period:
        """Create a period, OPEN at every given location"""
        try:
            period = self._create_period(name, start_date, end_date, location_ids)

            log_user_action(
                db=self.db,
                actor=self.current_user,
                action="PERIOD_OPENED",
                table="periods",
                key=period.id,
                new_values={
                    'name': name,
                    'start_date': start_date,
                    'end_date': end_date,
                    'locations': list(location_ids)
                },
                module="PERIOD"
            )

            self.db.commit()
            logger.info(f"Opened period {name} ({start_date} - {end_date}) for {len(location_ids)} location(s)")
            return period

        except StockLedgerException as e:
            self.db.rollback()
            logger.warning(f"Cannot open period {name}: {e.message}")
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error opening period {name}: {e}")
            raise

    def roll_forward(
        self,
        period_id: int,
        name: str,
        start_date: date,
        end_date: date
    ) -> Period:
        """
        Open the period following a closed one

        Same locations, opening values equal to the closing values,
        item prices copied across.
        """
        try:
            source = self.get_period(period_id)
            if source.status != PeriodStatus.CLOSED.value:
                raise InvalidPeriodStateError(
                    f"Period {source.name} must be CLOSED before rolling forward (status {source.status})",
                    period_id=period_id,
                    status=source.status,
                )
            if start_date <= source.end_date:
                raise InvalidPeriodStateError(
                    f"Next period must start after {source.end_date}",
                    period_id=period_id,
                    start_date=start_date.isoformat(),
                )

            location_ids = [pl.location_id for pl in source.period_locations]
            period = self._create_period(name, start_date, end_date, location_ids)

            for price in source.prices:
                self.db.add(ItemPrice(
                    item_id=price.item_id,
                    period_id=period.id,
                    price=price.price,
                    currency=price.currency,
                    set_by=self._username()
                ))

            log_user_action(
                db=self.db,
                actor=self.current_user,
                action="PERIOD_ROLLED_FORWARD",
                table="periods",
                key=period.id,
                old_values={'period_id': period_id},
                new_values={
                    'name': name,
                    'start_date': start_date,
                    'end_date': end_date,
                    'prices_copied': len(source.prices)
                },
                module="PERIOD"
            )

            self.db.commit()
            logger.info(f"Rolled period {source.name} forward to {name}")
            return period

        except StockLedgerException as e:
            self.db.rollback()
            logger.warning(f"Cannot roll period {period_id} forward: {e.message}")
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error rolling period {period_id} forward: {e}")
            raise

    def set_item_price(self, period_id: int, item_id: int, price) -> ItemPrice:
        """Create or update the period-locked price of an item"""
        try:
            period = self.get_period(period_id)
            if period.status == PeriodStatus.CLOSED.value:
                raise PeriodClosedError(
                    period_id, None, period.status,
                    message=f"Prices of closed period {period.name} cannot change"
                )
            if self.db.get(Item, item_id) is None:
                raise NotFoundError(f"Item {item_id} not found", item_id=item_id)

            try:
                value = quantize_price(to_decimal(price))
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid price: {price!r}", price=price)
            if value < 0:
                raise ValidationError(f"Price cannot be negative, got {value}", price=value)

            record = self.db.query(ItemPrice).filter(
                ItemPrice.period_id == period_id,
                ItemPrice.item_id == item_id
            ).with_for_update().first()

            old_price = record.price if record else None
            if record is None:
                record = ItemPrice(period_id=period_id, item_id=item_id, price=value)
                self.db.add(record)
            else:
                record.price = value
            record.set_by = self._username()
            record.set_at = datetime.now(timezone.utc)

            log_user_action(
                db=self.db,
                actor=self.current_user,
                action="PERIOD_PRICE_SET",
                table="item_prices",
                key=f"{period_id}/{item_id}",
                old_values={'price': old_price} if old_price is not None else None,
                new_values={'price': value},
                module="PERIOD"
            )

            self.db.commit()
            return record

        except StockLedgerException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error setting price of item {item_id} in period {period_id}: {e}")
            raise

    def get_item_price(self, period_id: int, item_id: int) -> Optional[Decimal]:
        record = self.db.query(ItemPrice).filter(
            ItemPrice.period_id == period_id,
            ItemPrice.item_id == item_id
        ).first()
        return Decimal(record.price) if record else None

    def _create_period(self, name, start_date, end_date, location_ids) -> Period:
        if end_date < start_date:
            raise InvalidPeriodStateError(
                f"Period end {end_date} is before its start {start_date}",
                start_date=start_date.isoformat(),
                end_date=end_date.isoformat(),
            )
        if not location_ids:
            raise ValidationError("A period needs at least one location")

        overlap = self.db.query(Period).filter(
            Period.start_date <= end_date,
            Period.end_date >= start_date
        ).first()
        if overlap:
            raise InvalidPeriodStateError(
                f"Period overlaps {overlap.name} ({overlap.start_date} - {overlap.end_date})",
                overlapping_period_id=overlap.id,
            )

        for location_id in location_ids:
            if self.db.get(Location, location_id) is None:
                raise NotFoundError(f"Location {location_id} not found", location_id=location_id)

        period = Period(
            name=name,
            start_date=start_date,
            end_date=end_date,
            status=PeriodStatus.OPEN.value
        )
        self.db.add(period)
        self.db.flush()

        before = previous_period(self.db, period)
        for location_id in location_ids:
            opening_value = None
            if before is not None:
                prior = get_period_location(self.db, before.id, location_id)
                if prior is not None and prior.status == PeriodStatus.CLOSED.value:
                    opening_value = prior.closing_value

            self.db.add(PeriodLocation(
                period_id=period.id,
                location_id=location_id,
                status=PeriodStatus.OPEN.value,
                opening_value=opening_value
            ))

        self.db.flush()
        return period

    def _username(self) -> Optional[str]:
        return self.current_user.username if self.current_user else None
