"""
SQLite implementation of the record store.

Uses the webhook admin panel schema: users own webhooks, webhooks accumulate
webhook_data rows. Arrival times are stored as epoch seconds.
"""

import math
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Iterator

import structlog

from ..exceptions import StoreError
from .interfaces import RecordStore
from .retention_models import Account, DeletionResult, StorageTotals

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS webhooks (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    uuid TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    tags TEXT,
    created_at INTEGER NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS webhook_user_id_idx ON webhooks(user_id);

CREATE TABLE IF NOT EXISTS webhook_data (
    id TEXT PRIMARY KEY,
    webhook_id TEXT NOT NULL,
    method TEXT NOT NULL,
    headers TEXT NOT NULL,
    data TEXT NOT NULL,
    size_bytes INTEGER NOT NULL,
    received_at INTEGER NOT NULL,
    FOREIGN KEY (webhook_id) REFERENCES webhooks(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS webhook_data_webhook_id_idx ON webhook_data(webhook_id);
CREATE INDEX IF NOT EXISTS webhook_data_received_at_idx ON webhook_data(received_at);
"""

# Oldest-first selection of one account's records. rowid breaks arrival ties so
# the size query and the delete below always pick the same rows.
_OLDEST_FOR_ACCOUNT = """
    SELECT wd.rowid AS row_id, wd.size_bytes AS size_bytes
    FROM webhook_data wd
    INNER JOIN webhooks w ON wd.webhook_id = w.id
    WHERE w.user_id = ?
    ORDER BY wd.received_at ASC, wd.rowid ASC
    LIMIT ?
"""


def to_epoch_cutoff(cutoff: datetime) -> int:
    """Convert a cutoff to the smallest epoch second that is not before it. Naive times are UTC."""
    if cutoff.tzinfo is None:
        cutoff = cutoff.replace(tzinfo=timezone.utc)
    return math.ceil(cutoff.timestamp())


class SQLiteRecordStore(RecordStore):
    """Record store backed by a single SQLite database file."""

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        except sqlite3.Error as e:
            raise StoreError(f"Could not open {self.db_path}: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreError(f"SQLite operation failed on {self.db_path}: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def initialize_schema(self) -> None:
        """Create the tables and indexes if they do not exist yet."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)
        logger.debug("Record store schema ready", db_path=str(self.db_path))

    async def list_accounts(self) -> List[Account]:
        with self._connect() as conn:
            rows = conn.execute("SELECT id, email FROM users ORDER BY created_at ASC, id ASC").fetchall()
        return [Account(account_id=row[0], identifier=row[1]) for row in rows]

    async def count_endpoints(self, account_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM webhooks WHERE user_id = ?", (account_id,)).fetchone()
        return row[0]

    async def count_and_sum_by_account(self, account_id: str) -> StorageTotals:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*), COALESCE(SUM(wd.size_bytes), 0)
                FROM webhook_data wd
                INNER JOIN webhooks w ON wd.webhook_id = w.id
                WHERE w.user_id = ?
                """,
                (account_id,),
            ).fetchone()
        return StorageTotals(record_count=row[0], total_bytes=row[1])

    async def delete_older_than(self, cutoff: datetime) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM webhook_data WHERE received_at < ?",
                (to_epoch_cutoff(cutoff),),
            )
            deleted_count = cursor.rowcount
        logger.debug("Deleted records older than cutoff",
                     cutoff=cutoff.isoformat(), deleted_count=deleted_count)
        return deleted_count

    async def delete_oldest_n(self, account_id: str, n: int) -> DeletionResult:
        if n <= 0:
            return DeletionResult(deleted_count=0, freed_bytes=0)

        with self._transaction() as conn:
            count, freed = conn.execute(
                f"SELECT COUNT(*), COALESCE(SUM(size_bytes), 0) FROM ({_OLDEST_FOR_ACCOUNT})",
                (account_id, n),
            ).fetchone()
            if count:
                conn.execute(
                    f"DELETE FROM webhook_data WHERE rowid IN (SELECT row_id FROM ({_OLDEST_FOR_ACCOUNT}))",
                    (account_id, n),
                )
        return DeletionResult(deleted_count=count, freed_bytes=freed)
