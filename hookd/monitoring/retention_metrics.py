"""
Prometheus metrics for the retention job.

Tracks records deleted per reason, accounts found over quota, safety-bound
hits, per-account failures, aborted runs by error type, run duration and the
time of the last successful run.
"""

import logging
import time
from typing import List, Optional

from prometheus_client import (
    Counter, Histogram, Gauge,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

from ..storage.retention_models import RunResult

RUN_DURATION_BUCKETS = [0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 3600.0]


class RetentionMetrics:
    """
    Metrics for retention runs.

    Every instance owns its registry unless one is passed in, so several
    jobs (or tests) never collide on metric names.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        self._initialize_metrics()

    def _initialize_metrics(self) -> None:
        self.runs_total = self.create_counter(
            'hookd_retention_runs_total',
            'Total retention runs',
            ['status']
        )

        self.records_deleted_total = self.create_counter(
            'hookd_retention_records_deleted_total',
            'Total records deleted by the retention job',
            ['reason']
        )

        self.accounts_over_quota = self.create_gauge(
            'hookd_retention_accounts_over_quota',
            'Accounts found over their storage ceiling in the last run'
        )

        self.safety_bound_hits_total = self.create_counter(
            'hookd_retention_safety_bound_hits_total',
            'Accounts left over budget because the deletion safety limit was reached'
        )

        self.account_failures_total = self.create_counter(
            'hookd_retention_account_failures_total',
            'Accounts whose quota enforcement failed'
        )

        self.run_failures_total = self.create_counter(
            'hookd_retention_run_failures_total',
            'Retention runs aborted by an infrastructure error',
            ['error_type']
        )

        self.stored_bytes = self.create_gauge(
            'hookd_retention_stored_bytes',
            'Total stored bytes across all accounts before the last run'
        )

        self.run_duration = self.create_histogram(
            'hookd_retention_run_duration_seconds',
            'Retention run duration',
            buckets=RUN_DURATION_BUCKETS
        )

        self.last_success_timestamp = self.create_gauge(
            'hookd_retention_last_success_timestamp_seconds',
            'Unix time of the last successful retention run'
        )

    def create_counter(self, name: str, description: str,
                       labelnames: Optional[List[str]] = None) -> Counter:
        return Counter(name, description, labelnames or [], registry=self.registry)

    def create_gauge(self, name: str, description: str,
                     labelnames: Optional[List[str]] = None) -> Gauge:
        return Gauge(name, description, labelnames or [], registry=self.registry)

    def create_histogram(self, name: str, description: str,
                         labelnames: Optional[List[str]] = None,
                         buckets: Optional[List[float]] = None) -> Histogram:
        return Histogram(name, description, labelnames or [],
                         buckets=buckets or RUN_DURATION_BUCKETS,
                         registry=self.registry)

    def record_run(self, result: RunResult) -> None:
        """Record a completed run."""
        self.runs_total.labels(status='success').inc()
        self.records_deleted_total.labels(reason='age').inc(result.records_deleted_by_age)
        self.records_deleted_total.labels(reason='quota').inc(result.records_deleted_by_quota)

        over_quota = [outcome for outcome in result.quota_outcomes if outcome.was_over_budget]
        self.accounts_over_quota.set(len(over_quota))
        self.safety_bound_hits_total.inc(sum(1 for outcome in result.quota_outcomes if outcome.hit_safety_bound))
        self.account_failures_total.inc(len(result.failed_accounts))
        self.stored_bytes.set(sum(usage.total_bytes for usage in result.per_account_stats))

        self.run_duration.observe(result.duration_seconds)
        if result.completed_at is not None:
            self.last_success_timestamp.set(result.completed_at.timestamp())
        else:
            self.last_success_timestamp.set(time.time())

        self.logger.debug(f"Recorded retention run metrics: {result.total_deleted} records deleted")

    def record_failure(self, error_type: str) -> None:
        """Record a run that aborted on an infrastructure error."""
        self.runs_total.labels(status='failed').inc()
        self.run_failures_total.labels(error_type=error_type).inc()
        self.logger.debug(f"Recorded failed retention run ({error_type})")

    def export(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST
