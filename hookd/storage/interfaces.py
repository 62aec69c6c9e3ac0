"""
Storage and notification interfaces consumed by the retention engine.

Any backend that can sum record sizes per account, delete the oldest N records
of an account and delete everything older than a timestamp can implement
RecordStore.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List

from .retention_models import Account, DeletionResult, StorageTotals


class RecordStore(ABC):
    """Abstract interface for captured webhook request storage."""

    @abstractmethod
    async def list_accounts(self) -> List[Account]:
        """Get every account known to the system."""
        pass

    @abstractmethod
    async def count_endpoints(self, account_id: str) -> int:
        """Count the webhook endpoints owned by an account."""
        pass

    @abstractmethod
    async def count_and_sum_by_account(self, account_id: str) -> StorageTotals:
        """Count an account's records and sum their sizes."""
        pass

    @abstractmethod
    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete every record that arrived before cutoff, across all accounts."""
        pass

    @abstractmethod
    async def delete_oldest_n(self, account_id: str, n: int) -> DeletionResult:
        """
        Delete an account's n oldest records.

        Records are removed in ascending arrival order. The result reports how
        many records were actually deleted and how many bytes they occupied.
        """
        pass


class NotificationSink(ABC):
    """Abstract interface for delivering the daily report."""

    @abstractmethod
    async def send(self, subject: str, html: str, text: str, recipient: str) -> bool:
        """Deliver a message. Returns True on success."""
        pass
