"""
Data models for the retention system.

This module contains the data classes and enums shared by the purger, the quota
enforcer, the usage aggregator, the report and the job orchestrator.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

MIB = 1024 * 1024


class JobState(Enum):
    """Lifecycle states of a single retention run."""
    IDLE = "idle"
    SNAPSHOTTING = "snapshotting"
    PURGING_BY_AGE = "purging_by_age"
    ENFORCING_QUOTA = "enforcing_quota"
    REPORTING = "reporting"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class RetentionPolicy:
    """Process-wide retention configuration."""
    max_age_months: int = 1
    max_account_bytes: int = 100 * MIB
    fine_tune_batch_size: int = 100
    max_quota_deletions: int = 200_000


@dataclass(frozen=True)
class Account:
    """A tenant owning zero or more webhook endpoints."""
    account_id: str
    identifier: str


@dataclass
class StorageTotals:
    """Record count and byte total for one account."""
    record_count: int
    total_bytes: int


@dataclass
class DeletionResult:
    """What a single batch deletion removed from the store."""
    deleted_count: int
    freed_bytes: int


@dataclass
class AccountUsage:
    """Per-account statistics captured at the start of a run."""
    account_id: str
    identifier: str
    endpoint_count: int
    record_count: int
    total_bytes: int


@dataclass
class UsageTotals:
    """Totals across every account in a snapshot."""
    account_count: int
    endpoint_count: int
    record_count: int
    total_bytes: int


@dataclass
class QuotaOutcome:
    """Result of enforcing the storage ceiling on one account."""
    account_id: str
    identifier: str
    bytes_before: int = 0
    bytes_after: int = 0
    records_deleted: int = 0
    bulk_deleted: int = 0
    fine_tune_batches: int = 0
    hit_safety_bound: bool = False
    error: Optional[str] = None

    @property
    def was_over_budget(self) -> bool:
        return self.records_deleted > 0 or self.hit_safety_bound


@dataclass
class ReportContent:
    """Rendered daily report ready to hand to a notification channel."""
    subject: str
    html: str
    text: str


@dataclass
class RunResult:
    """Machine-readable summary of one retention run."""
    cutoff: datetime
    started_at: datetime
    records_deleted_by_age: int = 0
    records_deleted_by_quota: int = 0
    per_account_stats: List[AccountUsage] = field(default_factory=list)
    quota_outcomes: List[QuotaOutcome] = field(default_factory=list)
    completed_at: Optional[datetime] = None
    report_sent: bool = False

    @property
    def total_deleted(self) -> int:
        return self.records_deleted_by_age + self.records_deleted_by_quota

    @property
    def failed_accounts(self) -> List[str]:
        return [outcome.account_id for outcome in self.quota_outcomes if outcome.error]

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serialisable dictionary."""
        return {
            'records_deleted_by_age': self.records_deleted_by_age,
            'records_deleted_by_quota': self.records_deleted_by_quota,
            'cutoff_timestamp': self.cutoff.isoformat(),
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_seconds': self.duration_seconds,
            'report_sent': self.report_sent,
            'failed_accounts': self.failed_accounts,
            'per_account_stats': [asdict(usage) for usage in self.per_account_stats],
            'quota_outcomes': [asdict(outcome) for outcome in self.quota_outcomes],
        }
