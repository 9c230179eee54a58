"""Period lifecycle services"""

from .period_management import PeriodService, previous_period
from .period_close import PeriodCloseService

__all__ = ["PeriodService", "PeriodCloseService", "previous_period"]
