"""
Retention CLI for hookd.

This module provides the command-line interface for running and inspecting
the webhook data retention job.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from ..config.retention_config import RetentionSettings, load_retention_settings
from ..logging_config import configure_logging
from ..monitoring.notifications.email_notification import EmailNotificationChannel
from .retention_logging import RetentionLogger
from .retention_manager import create_retention_job
from .retention_report import format_bytes
from .retention_scheduler import RetentionScheduler
from .retention_usage import UsageAggregator
from .sqlite_store import SQLiteRecordStore

logger = logging.getLogger(__name__)


def load_settings(args) -> RetentionSettings:
    """Load settings and apply command-line overrides."""
    settings = load_retention_settings(Path(args.config))
    if args.db:
        settings = settings.model_copy(update={'db_path': args.db})
    return settings


async def run_cleanup(args, settings: RetentionSettings) -> int:
    """Run one retention cycle now."""
    job = create_retention_job(settings)

    print("Starting retention run...")
    result = await job.run()

    print(f"\nRetention run completed in {result.duration_seconds:.2f}s")
    print(f"Cutoff: {result.cutoff.isoformat()}")
    print(f"Records deleted by age: {result.records_deleted_by_age}")
    print(f"Records deleted by quota: {result.records_deleted_by_quota}")
    print(f"Report sent: {'yes' if result.report_sent else 'no'}")

    for outcome in result.quota_outcomes:
        if outcome.error:
            print(f"✗ {outcome.identifier}: {outcome.error}")
        elif outcome.was_over_budget:
            note = " (safety limit reached)" if outcome.hit_safety_bound else ""
            print(f"✓ {outcome.identifier}: {outcome.records_deleted} records, "
                  f"{format_bytes(outcome.bytes_before)} -> {format_bytes(outcome.bytes_after)}{note}")

    if args.print_metrics:
        print()
        print(job.metrics.export().decode('utf-8'))

    return 1 if result.failed_accounts else 0


async def show_stats(args, settings: RetentionSettings) -> int:
    """Show per-account storage usage."""
    store = SQLiteRecordStore(settings.db_path)
    store.initialize_schema()
    aggregator = UsageAggregator(store)

    snapshot = await aggregator.snapshot()
    totals = aggregator.totals(snapshot)

    print("Storage Usage")
    print("=" * 40)
    print(f"Users: {totals.account_count}")
    print(f"Webhooks: {totals.endpoint_count}")
    print(f"Records: {totals.record_count:,}")
    print(f"Total size: {format_bytes(totals.total_bytes)}")

    print("\nUsers by record count:")
    for usage in sorted(snapshot, key=lambda usage: usage.record_count, reverse=True):
        flag = " OVER LIMIT" if usage.total_bytes > settings.max_account_bytes else ""
        print(f"  {usage.identifier}: {usage.endpoint_count} webhooks, "
              f"{usage.record_count:,} records, {format_bytes(usage.total_bytes)}{flag}")
    return 0


async def show_policy(args, settings: RetentionSettings) -> int:
    """Show the effective retention policy."""
    policy = settings.to_policy()

    print("Retention Policy")
    print("=" * 40)
    print(f"Max age: {policy.max_age_months} month(s)")
    print(f"Max storage per user: {format_bytes(policy.max_account_bytes)}")
    print(f"Fine-tune batch size: {policy.fine_tune_batch_size}")
    print(f"Max quota deletions per user: {policy.max_quota_deletions:,}")

    print("\nConfiguration:")
    print(f"  Database: {settings.db_path}")
    print(f"  Cleanup schedule: {settings.cleanup_schedule} UTC")
    print(f"  Admin email: {settings.admin_email or 'not configured'}")
    print(f"  Email API key: {'configured' if settings.resend_api_key else 'not configured'}")
    print(f"  History: {settings.history_dir}")
    return 0


async def show_history(args, settings: RetentionSettings) -> int:
    """Show recent retention runs."""
    entries = RetentionLogger(settings.history_dir).load_history(limit=args.limit)

    if not entries:
        print("No retention runs recorded")
        return 0

    print("Recent Retention Runs")
    print("=" * 40)
    for entry in entries:
        status_icon = "✗" if entry.get('status') == 'failed' else "✓"
        if entry.get('status') == 'failed':
            print(f"{status_icon} {entry['started_at']}: {entry.get('error_type')}: {entry.get('error_message')}")
        else:
            print(f"{status_icon} {entry['started_at']}: {entry['records_deleted_by_age']} by age, "
                  f"{entry['records_deleted_by_quota']} by quota, {entry.get('duration_formatted', '')}")
    return 0


async def run_daemon(args, settings: RetentionSettings) -> int:
    """Run the daily scheduler until interrupted."""
    scheduler = RetentionScheduler(
        create_retention_job(settings),
        cleanup_schedule=settings.cleanup_schedule,
        check_interval_minutes=settings.check_interval_minutes,
    )

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, shutdown.set)

    await scheduler.start()
    print(f"Retention scheduler running (daily at {settings.cleanup_schedule} UTC), press Ctrl+C to stop")
    try:
        await shutdown.wait()
    finally:
        await scheduler.stop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)
    print("Retention scheduler stopped")
    return 0


async def send_test_email(args, settings: RetentionSettings) -> int:
    """Send a test email through the configured channel."""
    recipient: Optional[str] = args.to or settings.admin_email
    if not recipient:
        print("No recipient: pass --to or set ADMIN_EMAIL")
        return 1

    channel = EmailNotificationChannel(api_key=settings.resend_api_key, from_email=settings.from_email)
    if await channel.send_test_email(recipient):
        print(f"Test email sent to {recipient}")
        return 0
    print(f"Failed to send test email to {recipient}")
    return 1


COMMANDS = {
    'run': run_cleanup,
    'stats': show_stats,
    'policy': show_policy,
    'history': show_history,
    'daemon': run_daemon,
    'test-email': send_test_email,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hookd-retention",
        description="Webhook data retention management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Purge old requests and enforce per-user storage limits now
  hookd-retention run --db data/hookd.db

  # Show storage usage per user
  hookd-retention stats

  # Run the daily scheduler
  hookd-retention daemon --config configs/retention.yaml
        """
    )

    # Global arguments
    parser.add_argument('--config', default='configs/retention.yaml',
                        help='Path to retention configuration file')
    parser.add_argument('--db', default=None,
                        help='Path to SQLite database file (overrides config)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    parser.add_argument('--json-logs', action='store_true',
                        help='Emit logs as JSON lines')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    run_parser = subparsers.add_parser('run', help='Run the retention job once')
    run_parser.add_argument('--print-metrics', action='store_true',
                            help='Print Prometheus metrics after the run')

    subparsers.add_parser('stats', help='Show per-user storage usage')
    subparsers.add_parser('policy', help='Show the effective retention policy')

    history_parser = subparsers.add_parser('history', help='Show recent retention runs')
    history_parser.add_argument('--limit', type=int, default=10,
                                help='Number of runs to show')

    subparsers.add_parser('daemon', help='Run the daily retention scheduler')

    email_parser = subparsers.add_parser('test-email', help='Send a test email')
    email_parser.add_argument('--to', default=None,
                              help='Recipient (defaults to ADMIN_EMAIL)')

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = load_settings(args)
    except Exception as e:
        print(f"Invalid configuration: {e}")
        return 1

    level = "DEBUG" if args.verbose else settings.log_level
    configure_logging(level, json_format=args.json_logs or settings.log_json)

    try:
        return asyncio.run(COMMANDS[args.command](args, settings))
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except Exception as e:
        logger.error(f"Command {args.command} failed: {e}")
        print(f"Error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
