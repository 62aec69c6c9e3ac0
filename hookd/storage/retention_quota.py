"""
Per-account storage quota enforcement.

Accounts over their byte budget lose their oldest records in two phases:

1. A bulk phase deletes an estimated number of records in a single request,
   sized from the account's mean record size.
2. A fine-tune phase deletes small fixed batches until the running byte total
   is within budget, correcting for record sizes that are not uniform.

The fine-tune phase is bounded by a maximum number of deleted records per
account, so a pathological account cannot keep the job running indefinitely.
Whatever is left over is picked up by the next run, since eviction is always
oldest-first.
"""

from typing import List

import structlog

from .interfaces import RecordStore
from .retention_models import Account, QuotaOutcome, RetentionPolicy

logger = structlog.get_logger(__name__)


def estimate_records_to_delete(total_bytes: int, record_count: int, max_bytes: int) -> int:
    """
    Estimate how many records must go to bring total_bytes down to max_bytes.

    Uses the mean record size, i.e. ceil(excess / (total_bytes / record_count)),
    computed in integer arithmetic so uniform sizes give an exact answer.
    """
    if record_count <= 0 or total_bytes <= max_bytes:
        return 0
    excess = total_bytes - max_bytes
    return -(-excess * record_count // total_bytes)


class QuotaEnforcer:
    """Evicts oldest records until each account is within its byte budget."""

    def __init__(self, store: RecordStore, policy: RetentionPolicy):
        self.store = store
        self.policy = policy

    async def enforce(self, account: Account) -> QuotaOutcome:
        """Bring one account within budget. Store errors propagate to the caller."""
        max_bytes = self.policy.max_account_bytes
        max_deletions = self.policy.max_quota_deletions
        outcome = QuotaOutcome(account_id=account.account_id, identifier=account.identifier)

        totals = await self.store.count_and_sum_by_account(account.account_id)
        outcome.bytes_before = outcome.bytes_after = totals.total_bytes

        if totals.total_bytes <= max_bytes or totals.record_count == 0:
            return outcome

        approx = estimate_records_to_delete(totals.total_bytes, totals.record_count, max_bytes)
        logger.info("Account exceeds storage limit, cleaning up oldest requests",
                    account_id=account.account_id,
                    identifier=account.identifier,
                    current_mb=round(totals.total_bytes / 1024 / 1024, 2),
                    avg_record_kb=round(totals.total_bytes / totals.record_count / 1024, 2),
                    approx_records_to_delete=approx)

        remaining_bytes = totals.total_bytes

        # Bulk phase
        bulk_n = min(approx, max_deletions)
        if bulk_n > 0:
            result = await self.store.delete_oldest_n(account.account_id, bulk_n)
            remaining_bytes -= result.freed_bytes
            outcome.records_deleted += result.deleted_count
            outcome.bulk_deleted = result.deleted_count
            logger.info("Bulk deleted requests",
                        account_id=account.account_id,
                        deleted_count=result.deleted_count,
                        remaining_mb=round(remaining_bytes / 1024 / 1024, 2))

        # Fine-tune phase, bounded by the deletions still allowed for this account
        batch_size = self.policy.fine_tune_batch_size
        allowance = max_deletions - outcome.records_deleted
        max_batches = -(-allowance // batch_size) if allowance > 0 else 0
        exhausted = False

        for _ in range(max_batches):
            if remaining_bytes <= max_bytes:
                break
            n = min(batch_size, max_deletions - outcome.records_deleted)
            result = await self.store.delete_oldest_n(account.account_id, n)
            if result.deleted_count == 0:
                exhausted = True
                break
            remaining_bytes -= result.freed_bytes
            outcome.records_deleted += result.deleted_count
            outcome.fine_tune_batches += 1
            logger.debug("Fine-tuned account storage",
                         account_id=account.account_id,
                         deleted_count=result.deleted_count,
                         remaining_mb=round(remaining_bytes / 1024 / 1024, 2))

        outcome.bytes_after = max(remaining_bytes, 0)

        if remaining_bytes > max_bytes and not exhausted:
            outcome.hit_safety_bound = True
            logger.warning("Hit quota deletion safety limit, account left over budget until next run",
                           account_id=account.account_id,
                           identifier=account.identifier,
                           max_quota_deletions=max_deletions,
                           remaining_bytes=remaining_bytes)

        logger.info("Account cleanup complete",
                    account_id=account.account_id,
                    records_deleted=outcome.records_deleted,
                    fine_tune_batches=outcome.fine_tune_batches)
        return outcome

    async def enforce_all(self, accounts: List[Account]) -> List[QuotaOutcome]:
        """
        Enforce the budget on each account in turn.

        A failure on one account is logged and recorded on its outcome; the
        remaining accounts are still processed.
        """
        outcomes = []
        for account in accounts:
            try:
                outcome = await self.enforce(account)
            except Exception as e:
                logger.error("Quota enforcement failed for account",
                             account_id=account.account_id,
                             identifier=account.identifier,
                             error=str(e))
                outcome = QuotaOutcome(account_id=account.account_id,
                                       identifier=account.identifier,
                                       error=str(e))
            outcomes.append(outcome)

        total = sum(outcome.records_deleted for outcome in outcomes)
        if total > 0:
            logger.info("Size enforcement completed",
                        records_deleted=total,
                        max_account_bytes=self.policy.max_account_bytes)
        return outcomes
