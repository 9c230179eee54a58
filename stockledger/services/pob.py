"""
Personnel On Board Service
Daily crew and extra counts, summed into mandays for reconciliation
"""
import logging
from typing import Iterable, List

import pydantic
from sqlalchemy import func
from sqlalchemy.orm import Session

from stockledger.core.audit import log_user_action
from stockledger.core.exceptions import InvalidPOBEntryError, StockLedgerException
from stockledger.models.period import Period
from stockledger.models.reconciliation import POBEntry
from stockledger.schemas.stock import POBEntryInput
from stockledger.services.stock.validator import MovementValidator

logger = logging.getLogger(__name__)


class POBService:

    def __init__(self, db: Session, current_user=None):
        self.db = db
        self.current_user = current_user

    def record_entries(self, location_id: int, period_id: int, entries: Iterable) -> List[POBEntry]:
        """
        Create or update daily counts for a location

        Entries are keyed by date; saving the same date again replaces
        its counts.
        """
        try:
            MovementValidator(self.db).check_period_open(period_id, location_id)
            period = self.db.get(Period, period_id)
            parsed = self._parse(entries, period)

            saved = []
            for entry in parsed:
                row = self.db.query(POBEntry).filter(
                    POBEntry.period_id == period_id,
                    POBEntry.location_id == location_id,
                    POBEntry.entry_date == entry.entry_date
                ).first()
                if row is None:
                    row = POBEntry(period_id=period_id, location_id=location_id, entry_date=entry.entry_date)
                    self.db.add(row)
                row.crew_count = entry.crew_count
                row.extra_count = entry.extra_count
                row.entered_by = self.current_user.username if self.current_user else None
                saved.append(row)

            log_user_action(
                db=self.db,
                actor=self.current_user,
                action="POB_SAVED",
                table="pob_entries",
                key=f"{period_id}/{location_id}",
                new_values={
                    'entries': len(saved),
                    'mandays': sum(e.mandays for e in parsed)
                },
                module="POB"
            )

            self.db.commit()
            logger.info(f"Saved {len(saved)} POB entries for location {location_id}, period {period_id}")
            return saved

        except StockLedgerException as e:
            self.db.rollback()
            logger.warning(f"POB entries rejected for location {location_id}: {e.message}")
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error saving POB entries for location {location_id}: {e}")
            raise

    def total_mandays(self, location_id: int, period_id: int) -> int:
        """Sum of crew + extra over the period"""
        total = self.db.query(
            func.coalesce(func.sum(POBEntry.crew_count + POBEntry.extra_count), 0)
        ).filter(
            POBEntry.period_id == period_id,
            POBEntry.location_id == location_id
        ).scalar()
        return int(total or 0)

    def list_entries(self, location_id: int, period_id: int) -> List[POBEntry]:
        return self.db.query(POBEntry).filter(
            POBEntry.period_id == period_id,
            POBEntry.location_id == location_id
        ).order_by(POBEntry.entry_date).all()

    @staticmethod
    def _parse(entries: Iterable, period: Period) -> List[POBEntryInput]:
        parsed = []
        seen = set()
        for entry in entries:
            if not isinstance(entry, POBEntryInput):
                try:
                    entry = POBEntryInput.model_validate(entry)
                except pydantic.ValidationError as e:
                    raise InvalidPOBEntryError(f"Invalid POB entry: {e.errors()[0]['msg']}")
            if not (period.start_date <= entry.entry_date <= period.end_date):
                raise InvalidPOBEntryError(
                    f"{entry.entry_date} is outside period {period.name} "
                    f"({period.start_date} - {period.end_date})",
                    entry_date=entry.entry_date.isoformat(),
                )
            if entry.entry_date in seen:
                raise InvalidPOBEntryError(
                    f"Duplicate POB entry for {entry.entry_date}",
                    entry_date=entry.entry_date.isoformat(),
                )
            seen.add(entry.entry_date)
            parsed.append(entry)
        if not parsed:
            raise InvalidPOBEntryError("At least one POB entry is required")
        return parsed
