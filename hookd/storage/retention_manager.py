"""
Main retention job - orchestrates the retention system.

One run takes a usage snapshot, purges records past the retention window,
enforces the per-account storage ceiling and sends the daily stats report:

    IDLE -> SNAPSHOTTING -> PURGING_BY_AGE -> ENFORCING_QUOTA -> REPORTING -> DONE

Any infrastructure error moves the job to FAILED and is re-raised. There are
no retries within a run; the next scheduled run picks up whatever is left,
and rerunning with an unchanged policy only deletes records that still
violate it.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from prometheus_client import CollectorRegistry

from ..config.retention_config import RetentionSettings
from ..monitoring.retention_metrics import RetentionMetrics
from ..monitoring.notifications.email_notification import EmailNotificationChannel
from .interfaces import NotificationSink, RecordStore
from .retention_logging import RetentionLogger
from .retention_models import JobState, RetentionPolicy, RunResult
from .retention_purger import AgeBasedPurger
from .retention_quota import QuotaEnforcer
from .retention_report import RetentionReport
from .retention_usage import UsageAggregator
from .sqlite_store import SQLiteRecordStore

logger = structlog.get_logger(__name__)


class RetentionJob:
    """
    Runs the daily retention cycle against a record store.

    The job holds no lock of its own; callers that can trigger overlapping
    runs (the scheduler) serialize them.
    """

    def __init__(self,
                 store: RecordStore,
                 policy: RetentionPolicy,
                 sink: Optional[NotificationSink] = None,
                 recipient: Optional[str] = None,
                 metrics: Optional[RetentionMetrics] = None,
                 history: Optional[RetentionLogger] = None):
        self.store = store
        self.policy = policy
        self.sink = sink
        self.recipient = recipient
        self.metrics = metrics
        self.history = history

        self.aggregator = UsageAggregator(store)
        self.purger = AgeBasedPurger(store, policy)
        self.enforcer = QuotaEnforcer(store, policy)
        self.report = RetentionReport(policy)

        self.state = JobState.IDLE
        self.last_result: Optional[RunResult] = None

    def _transition(self, state: JobState) -> None:
        logger.debug("Retention job state change", previous=self.state.value, state=state.value)
        self.state = state

    async def run(self, now: Optional[datetime] = None) -> RunResult:
        """
        Execute one retention cycle.

        Args:
            now: Reference time for the age cutoff, defaults to the current UTC time.

        Returns:
            Summary of the run.
        """
        started_at = datetime.now(timezone.utc)
        now = now or started_at
        self.state = JobState.IDLE
        logger.info("Starting retention run",
                    max_age_months=self.policy.max_age_months,
                    max_account_bytes=self.policy.max_account_bytes)

        try:
            self._transition(JobState.SNAPSHOTTING)
            accounts = await self.store.list_accounts()
            snapshot = await self.aggregator.snapshot(accounts)

            self._transition(JobState.PURGING_BY_AGE)
            deleted_by_age, cutoff = await self.purger.purge(now)
            result = RunResult(cutoff=cutoff,
                               started_at=started_at,
                               records_deleted_by_age=deleted_by_age,
                               per_account_stats=snapshot)

            self._transition(JobState.ENFORCING_QUOTA)
            result.quota_outcomes = await self.enforcer.enforce_all(accounts)
            result.records_deleted_by_quota = sum(outcome.records_deleted for outcome in result.quota_outcomes)

            self._transition(JobState.REPORTING)
            content = self.report.build(snapshot,
                                        result.records_deleted_by_age,
                                        result.records_deleted_by_quota,
                                        cutoff,
                                        now=now)
            result.report_sent = await self.report.dispatch(content, self.sink, self.recipient)
        except Exception as e:
            failed_in = self.state
            self._transition(JobState.FAILED)
            logger.error("Retention run failed", state=failed_in.value, error=str(e))
            if self.metrics is not None:
                self.metrics.record_failure(type(e).__name__)
            if self.history is not None:
                self.history.log_failure(e, started_at, self.policy)
            raise

        result.completed_at = datetime.now(timezone.utc)
        self._transition(JobState.DONE)
        self.last_result = result

        logger.info("Retention run completed",
                    records_deleted_by_age=result.records_deleted_by_age,
                    records_deleted_by_quota=result.records_deleted_by_quota,
                    failed_accounts=len(result.failed_accounts),
                    report_sent=result.report_sent,
                    duration_seconds=round(result.duration_seconds, 3))

        if self.metrics is not None:
            self.metrics.record_run(result)
        if self.history is not None:
            self.history.log_run(result, self.policy)
        return result


def create_notification_sink(settings: RetentionSettings) -> Optional[NotificationSink]:
    """Build the email channel, or None when no Resend API key is configured."""
    if not settings.resend_api_key:
        logger.warning("RESEND_API_KEY not configured, daily stats email disabled")
        return None
    return EmailNotificationChannel(api_key=settings.resend_api_key, from_email=settings.from_email)


def create_retention_job(settings: RetentionSettings,
                         registry: Optional[CollectorRegistry] = None) -> RetentionJob:
    """
    Factory function to create a retention job backed by SQLite.

    Args:
        settings: Loaded retention settings
        registry: Optional Prometheus registry for the job's metrics

    Returns:
        Configured RetentionJob instance
    """
    store = SQLiteRecordStore(settings.db_path)
    store.initialize_schema()

    return RetentionJob(
        store=store,
        policy=settings.to_policy(),
        sink=create_notification_sink(settings),
        recipient=settings.admin_email,
        metrics=RetentionMetrics(registry),
        history=RetentionLogger(settings.history_dir),
    )
