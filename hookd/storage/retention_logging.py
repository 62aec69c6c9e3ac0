"""
Run history for the retention system.

Each run appends one JSON line to logs/retention/retention_runs_YYYY-MM-DD.jsonl,
giving an audit trail of what was deleted and why.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional

from .retention_models import RetentionPolicy, RunResult

logger = logging.getLogger(__name__)

HISTORY_FILE_PREFIX = "retention_runs_"


class RetentionLogger:
    """Handles the audit trail for retention runs."""

    def __init__(self, logs_dir: str = "logs/retention"):
        self.logs_dir = Path(logs_dir)

    def log_run(self, result: RunResult, policy: RetentionPolicy) -> Dict[str, Any]:
        """Append a completed run to the history."""
        log_entry = result.to_dict()
        log_entry.update({
            "status": "partial" if result.failed_accounts else "success",
            "total_deleted": result.total_deleted,
            "duration_formatted": self._format_duration(result.duration_seconds),
            "policy": self._get_policy_summary(policy),
        })

        if result.failed_accounts:
            logger.warning(f"⚠️ Retention run finished with {len(result.failed_accounts)} failed accounts: "
                           f"{result.total_deleted} records deleted in {log_entry['duration_formatted']}")
        else:
            logger.info(f"✅ Retention run completed: {result.records_deleted_by_age} by age, "
                        f"{result.records_deleted_by_quota} by quota in {log_entry['duration_formatted']}")

        self._store_entry(log_entry, result.started_at)
        return log_entry

    def log_failure(self, error: BaseException, started_at: datetime, policy: RetentionPolicy) -> Dict[str, Any]:
        """Append an aborted run to the history."""
        log_entry = {
            "status": "failed",
            "started_at": started_at.isoformat(),
            "failed_at": datetime.now(timezone.utc).isoformat(),
            "error_type": type(error).__name__,
            "error_message": str(error),
            "policy": self._get_policy_summary(policy),
        }
        logger.error(f"❌ Retention run failed: {error}")
        self._store_entry(log_entry, started_at)
        return log_entry

    def _format_duration(self, duration_seconds: float) -> str:
        """Format duration in a human-readable format."""
        if duration_seconds < 60:
            return f"{duration_seconds:.2f}s"
        elif duration_seconds < 3600:
            return f"{duration_seconds / 60:.1f}m"
        else:
            return f"{duration_seconds / 3600:.1f}h"

    def _get_policy_summary(self, policy: RetentionPolicy) -> Dict[str, Any]:
        return {
            "max_age_months": policy.max_age_months,
            "max_account_bytes": policy.max_account_bytes,
            "fine_tune_batch_size": policy.fine_tune_batch_size,
            "max_quota_deletions": policy.max_quota_deletions,
        }

    def _history_file(self, moment: datetime) -> Path:
        return self.logs_dir / f"{HISTORY_FILE_PREFIX}{moment.strftime('%Y-%m-%d')}.jsonl"

    def _store_entry(self, log_entry: Dict[str, Any], moment: datetime):
        """Append one entry as a JSON line. Write failures are logged, not raised."""
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            with open(self._history_file(moment), 'a') as f:
                f.write(json.dumps(log_entry) + '\n')
        except OSError as e:
            logger.error(f"Failed to store retention run log: {e}")

    def load_history(self, limit: Optional[int] = 10) -> List[Dict[str, Any]]:
        """
        Read past runs, newest first.

        Args:
            limit: Maximum number of entries to return. None returns everything.
        """
        if not self.logs_dir.exists():
            return []

        entries = []
        for log_file in sorted(self.logs_dir.glob(f"{HISTORY_FILE_PREFIX}*.jsonl")):
            with open(log_file, 'r') as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(json.loads(line))
                    except json.JSONDecodeError:
                        logger.warning(f"Skipping malformed history line in {log_file.name}")

        entries.reverse()
        return entries if limit is None else entries[:limit]
