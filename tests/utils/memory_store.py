"""
In-memory record store for exercising the retention engine without SQLite.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Dict, List, Optional, Set

from hookd.exceptions import StoreError
from hookd.storage.interfaces import RecordStore
from hookd.storage.retention_models import Account, DeletionResult, StorageTotals


@dataclass
class StoredRecord:
    record_id: int
    account_id: str
    endpoint_id: str
    size_bytes: int
    received_at: datetime


class InMemoryRecordStore(RecordStore):
    """Keeps records in a list; eviction order is arrival time, then insertion order."""

    def __init__(self):
        self.accounts: List[Account] = []
        self.endpoints: Dict[str, List[str]] = {}
        self.records: List[StoredRecord] = []
        self.failing_accounts: Set[str] = set()
        self.delete_requests: List[int] = []
        self.fail_delete_older_than = False
        self._ids = count(1)

    def add_account(self, account_id: str, identifier: Optional[str] = None, endpoints: int = 1) -> Account:
        account = Account(account_id=account_id, identifier=identifier or f"{account_id}@example.com")
        self.accounts.append(account)
        self.endpoints[account_id] = [f"{account_id}-hook-{i}" for i in range(endpoints)]
        return account

    def add_record(self, account_id: str, size_bytes: int, received_at: datetime) -> StoredRecord:
        record = StoredRecord(
            record_id=next(self._ids),
            account_id=account_id,
            endpoint_id=self.endpoints[account_id][0],
            size_bytes=size_bytes,
            received_at=received_at,
        )
        self.records.append(record)
        return record

    def add_records(self, account_id: str, sizes: List[int], start: Optional[datetime] = None,
                    step: timedelta = timedelta(seconds=1)) -> None:
        """Add records in arrival order, one step apart."""
        moment = start or datetime(2024, 6, 1, tzinfo=timezone.utc)
        for size in sizes:
            self.add_record(account_id, size, moment)
            moment += step

    def records_for(self, account_id: str) -> List[StoredRecord]:
        return [record for record in self.records if record.account_id == account_id]

    def bytes_for(self, account_id: str) -> int:
        return sum(record.size_bytes for record in self.records_for(account_id))

    async def list_accounts(self) -> List[Account]:
        return list(self.accounts)

    async def count_endpoints(self, account_id: str) -> int:
        return len(self.endpoints.get(account_id, []))

    async def count_and_sum_by_account(self, account_id: str) -> StorageTotals:
        if account_id in self.failing_accounts:
            raise StoreError(f"simulated failure for {account_id}")
        records = self.records_for(account_id)
        return StorageTotals(record_count=len(records),
                             total_bytes=sum(record.size_bytes for record in records))

    async def delete_older_than(self, cutoff: datetime) -> int:
        if self.fail_delete_older_than:
            raise StoreError("simulated store outage")
        before = len(self.records)
        self.records = [record for record in self.records if record.received_at >= cutoff]
        return before - len(self.records)

    async def delete_oldest_n(self, account_id: str, n: int) -> DeletionResult:
        self.delete_requests.append(n)
        if n <= 0:
            return DeletionResult(deleted_count=0, freed_bytes=0)
        oldest = sorted(self.records_for(account_id),
                        key=lambda record: (record.received_at, record.record_id))[:n]
        doomed = {record.record_id for record in oldest}
        self.records = [record for record in self.records if record.record_id not in doomed]
        return DeletionResult(deleted_count=len(oldest),
                              freed_bytes=sum(record.size_bytes for record in oldest))
