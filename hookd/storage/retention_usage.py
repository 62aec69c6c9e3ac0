"""
Per-account usage statistics.
"""

from typing import List, Optional

import structlog

from .interfaces import RecordStore
from .retention_models import Account, AccountUsage, UsageTotals

logger = structlog.get_logger(__name__)


class UsageAggregator:
    """Reads endpoint count, record count and byte total for every account."""

    def __init__(self, store: RecordStore):
        self.store = store

    async def snapshot(self, accounts: Optional[List[Account]] = None) -> List[AccountUsage]:
        """
        Take a fresh usage reading for each account.

        Args:
            accounts: Accounts to measure. If None, every account in the store.
        """
        if accounts is None:
            accounts = await self.store.list_accounts()

        usages = []
        for account in accounts:
            endpoint_count = await self.store.count_endpoints(account.account_id)
            totals = await self.store.count_and_sum_by_account(account.account_id)
            usages.append(AccountUsage(
                account_id=account.account_id,
                identifier=account.identifier,
                endpoint_count=endpoint_count,
                record_count=totals.record_count,
                total_bytes=totals.total_bytes,
            ))

        logger.debug("Usage snapshot taken", account_count=len(usages))
        return usages

    @staticmethod
    def totals(snapshot: List[AccountUsage]) -> UsageTotals:
        return UsageTotals(
            account_count=len(snapshot),
            endpoint_count=sum(usage.endpoint_count for usage in snapshot),
            record_count=sum(usage.record_count for usage in snapshot),
            total_bytes=sum(usage.total_bytes for usage in snapshot),
        )
