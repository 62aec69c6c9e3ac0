"""
Age-based purge of captured webhook requests.
"""

import calendar
from datetime import datetime, timezone
from typing import Optional, Tuple

import structlog

from .interfaces import RecordStore
from .retention_models import RetentionPolicy

logger = structlog.get_logger(__name__)


def subtract_months(moment: datetime, months: int) -> datetime:
    """Step back whole calendar months, clamping the day to the target month's length."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


class AgeBasedPurger:
    """Deletes every record older than the retention window, across all accounts."""

    def __init__(self, store: RecordStore, policy: RetentionPolicy):
        self.store = store
        self.policy = policy

    def calculate_cutoff(self, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        return subtract_months(now, self.policy.max_age_months)

    async def purge(self, now: Optional[datetime] = None) -> Tuple[int, datetime]:
        """
        Delete all records that arrived before now minus the retention window.

        Returns:
            Tuple of (deleted record count, cutoff used).
        """
        cutoff = self.calculate_cutoff(now)
        logger.info("Starting cleanup of data older than cutoff", cutoff=cutoff.isoformat())

        deleted_count = await self.store.delete_older_than(cutoff)

        logger.info("Age-based cleanup completed",
                    deleted_count=deleted_count,
                    cutoff=cutoff.isoformat())
        return deleted_count, cutoff
