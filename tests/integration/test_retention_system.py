"""
Integration tests for the retention system.

Runs the full retention job against a temporary SQLite database: age purge,
quota enforcement, reporting, metrics and run history together.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from prometheus_client import CollectorRegistry

from hookd.config.retention_config import RetentionSettings
from hookd.storage.interfaces import NotificationSink
from hookd.storage.retention_logging import RetentionLogger
from hookd.storage.retention_manager import RetentionJob, create_retention_job
from hookd.storage.retention_models import MIB, JobState, RetentionPolicy
from hookd.storage.retention_usage import UsageAggregator
from hookd.monitoring.retention_metrics import RetentionMetrics
from tests.utils.sqlite_seed import remaining_ids, seed_data, seed_user

NOW = datetime(2024, 7, 15, 12, 0, tzinfo=timezone.utc)


def epoch(dt):
    return int(dt.timestamp())


def fill(db_path, webhook_id, prefix, sizes, start):
    """Insert records one second apart starting at start."""
    seed_data(db_path, webhook_id, [
        (f"{prefix}-{i}", size, epoch(start) + i) for i, size in enumerate(sizes)
    ])


@pytest.fixture
def sink():
    sink = AsyncMock(spec=NotificationSink)
    sink.send.return_value = True
    return sink


@pytest.fixture
def job_factory(sqlite_store, sink, temp_dir):
    def make(policy=None):
        return RetentionJob(store=sqlite_store,
                            policy=policy or RetentionPolicy(),
                            sink=sink,
                            recipient="admin@example.com",
                            metrics=RetentionMetrics(CollectorRegistry()),
                            history=RetentionLogger(str(temp_dir / "history")))
    return make


@pytest.mark.integration
class TestRetentionSystemIntegration:
    """End-to-end retention runs on SQLite."""

    @pytest.mark.asyncio
    async def test_age_purge_keeps_recent_records(self, sqlite_store, job_factory):
        db_path = sqlite_store.db_path
        seed_user(db_path, "u1", "alice@example.com")
        ages = [timedelta(days=60), timedelta(days=40), timedelta(days=10),
                timedelta(days=2), timedelta(hours=1)]
        seed_data(db_path, "u1-wh0", [
            (f"r{i}", 100, epoch(NOW - age)) for i, age in enumerate(ages)
        ])

        result = await job_factory().run(now=NOW)

        assert result.cutoff == datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
        assert result.records_deleted_by_age == 2
        assert result.records_deleted_by_quota == 0
        assert remaining_ids(db_path) == ["r2", "r3", "r4"]

    @pytest.mark.asyncio
    async def test_second_run_deletes_nothing(self, sqlite_store, job_factory):
        db_path = sqlite_store.db_path
        seed_user(db_path, "u1", "alice@example.com")
        fill(db_path, "u1-wh0", "old", [MIB] * 5, NOW - timedelta(days=90))
        fill(db_path, "u1-wh0", "new", [MIB] * 120, NOW - timedelta(days=1))

        first = await job_factory().run(now=NOW)
        second = await job_factory().run(now=NOW)

        assert first.records_deleted_by_age == 5
        assert first.records_deleted_by_quota == 20
        assert second.records_deleted_by_age == 0
        assert second.records_deleted_by_quota == 0

    @pytest.mark.asyncio
    async def test_every_account_ends_within_quota(self, sqlite_store, job_factory):
        db_path = sqlite_store.db_path
        start = NOW - timedelta(days=3)
        seed_user(db_path, "uniform", "uniform@example.com", webhooks=2)
        fill(db_path, "uniform-wh0", "a", [200 * 1024] * 400, start)
        fill(db_path, "uniform-wh1", "b", [200 * 1024] * 400, start + timedelta(hours=1))
        seed_user(db_path, "skewed", "skewed@example.com")
        fill(db_path, "skewed-wh0", "big", [5 * MIB] * 20, start)
        fill(db_path, "skewed-wh0", "small", [10 * 1024] * 3000, start + timedelta(hours=1))
        seed_user(db_path, "small", "small@example.com")
        fill(db_path, "small-wh0", "s", [MIB] * 10, start)

        result = await job_factory().run(now=NOW)

        assert result.failed_accounts == []
        for account_id in ("uniform", "skewed", "small"):
            totals = await sqlite_store.count_and_sum_by_account(account_id)
            assert totals.total_bytes <= 100 * MIB
        small = await sqlite_store.count_and_sum_by_account("small")
        assert small.record_count == 10

        outcomes = {outcome.account_id: outcome for outcome in result.quota_outcomes}
        # Mean-size estimate overshoots when the oldest records are the largest
        assert outcomes["skewed"].records_deleted == 685
        assert outcomes["skewed"].fine_tune_batches == 0
        assert outcomes["uniform"].records_deleted == 288
        assert outcomes["small"].records_deleted == 0

    @pytest.mark.asyncio
    async def test_oldest_records_are_evicted_first(self, sqlite_store, job_factory):
        db_path = sqlite_store.db_path
        seed_user(db_path, "u1", "alice@example.com", webhooks=2)
        start = NOW - timedelta(days=5)
        fill(db_path, "u1-wh0", "old", [MIB] * 30, start)
        fill(db_path, "u1-wh1", "new", [MIB] * 100, start + timedelta(days=1))

        await job_factory().run(now=NOW)

        remaining = remaining_ids(db_path)
        assert not any(record_id.startswith("old") for record_id in remaining)
        assert len(remaining) == 100

    @pytest.mark.asyncio
    async def test_safety_bound_converges_over_runs(self, sqlite_store, job_factory):
        db_path = sqlite_store.db_path
        seed_user(db_path, "u1", "alice@example.com")
        fill(db_path, "u1-wh0", "r", [MIB] * 100, NOW - timedelta(days=2))
        policy = RetentionPolicy(max_account_bytes=10 * MIB, fine_tune_batch_size=5,
                                 max_quota_deletions=40)

        totals = []
        for _ in range(3):
            result = await job_factory(policy).run(now=NOW)
            outcome = result.quota_outcomes[0]
            totals.append(outcome.bytes_after)

        assert totals[0] == 60 * MIB
        assert totals[1] == 20 * MIB
        assert totals[2] == 10 * MIB
        assert totals == sorted(totals, reverse=True)

    @pytest.mark.asyncio
    async def test_report_and_bookkeeping(self, sqlite_store, job_factory, sink, temp_dir):
        db_path = sqlite_store.db_path
        seed_user(db_path, "u1", "alice@example.com")
        fill(db_path, "u1-wh0", "stale", [MIB] * 3, NOW - timedelta(days=45))
        fill(db_path, "u1-wh0", "fresh", [MIB] * 110, NOW - timedelta(days=1))

        job = job_factory()
        result = await job.run(now=NOW)

        assert job.state == JobState.DONE
        assert result.report_sent is True
        subject, html, text, recipient = sink.send.await_args.args
        assert subject == "📊 Daily Webhook Stats | 1 users | 113 records | 13 deleted"
        assert recipient == "admin@example.com"
        assert "Deleted 3 records older than 2024-06-15" in html
        assert "Total Deleted: 13 records" in text

        registry = job.metrics.registry
        assert registry.get_sample_value('hookd_retention_records_deleted_total', {'reason': 'age'}) == 3
        assert registry.get_sample_value('hookd_retention_records_deleted_total', {'reason': 'quota'}) == 10

        history_files = list((temp_dir / "history").glob("retention_runs_*.jsonl"))
        assert len(history_files) == 1
        entry = json.loads(history_files[0].read_text().splitlines()[0])
        assert entry['status'] == 'success'
        assert entry['total_deleted'] == 13

    @pytest.mark.asyncio
    async def test_usage_snapshot_matches_store(self, sqlite_store):
        db_path = sqlite_store.db_path
        seed_user(db_path, "u1", "alice@example.com", created_at=1, webhooks=3)
        seed_user(db_path, "u2", "bob@example.com", created_at=2, webhooks=0)
        fill(db_path, "u1-wh2", "r", [10, 20, 30], NOW)

        aggregator = UsageAggregator(sqlite_store)
        snapshot = await aggregator.snapshot()
        totals = aggregator.totals(snapshot)

        assert [usage.account_id for usage in snapshot] == ["u1", "u2"]
        assert snapshot[0].endpoint_count == 3
        assert snapshot[0].total_bytes == 60
        assert (totals.account_count, totals.endpoint_count, totals.record_count) == (2, 3, 3)

    @pytest.mark.asyncio
    async def test_factory_builds_sqlite_job(self, temp_dir):
        settings = RetentionSettings(db_path=str(temp_dir / "db" / "hookd.db"),
                                     history_dir=str(temp_dir / "history"))

        job = create_retention_job(settings, registry=CollectorRegistry())
        result = await job.run(now=NOW)

        assert (temp_dir / "db" / "hookd.db").exists()
        assert job.sink is None
        assert result.report_sent is False
        assert result.records_deleted_by_age == 0
