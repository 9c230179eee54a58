"""
NCR handoff
Price variance records leave the ledger here; the NCR workflow owns
everything that happens to them afterwards.
"""
import logging
from abc import ABC, abstractmethod
from typing import List

from stockledger.schemas.stock import VarianceRecord

logger = logging.getLogger(__name__)


class NCRGateway(ABC):

    @abstractmethod
    def submit(self, record: VarianceRecord) -> None:
        """Hand a variance record to the NCR workflow"""


class LoggingNCRGateway(NCRGateway):
    """Default gateway that only records the handoff in the log"""

    def submit(self, record: VarianceRecord) -> None:
        logger.info(
            f"Price variance {record.direction.value} for item {record.item_id} at location "
            f"{record.location_id}: expected {record.expected_price}, actual {record.actual_price}, "
            f"value {record.display_value}"
        )


class CollectingNCRGateway(NCRGateway):
    """Keeps submitted records in memory"""

    def __init__(self):
        self.records: List[VarianceRecord] = []

    def submit(self, record: VarianceRecord) -> None:
        self.records.append(record)
