"""SQLite implementation of the local durable queue."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

from transaction_capture.domain.transactions import NewTransaction, TransactionRecord
from transaction_capture.domain.value_objects import Amount, ServiceType, SyncStatus
from transaction_capture.exceptions import (
    DuplicateExternalId,
    IllegalTransition,
    RecordNotFound,
)
from transaction_capture.logging_config import get_logger
from transaction_capture.repositories.interfaces import TransactionQueue

logger = get_logger(__name__)


class SQLiteDatabase:
    """SQLite database connection manager.

    The connection is shared between the caller's thread and the sync
    manager's background drains, so every statement runs under ``lock``.
    """

    def __init__(
        self, path: str | Path = ":memory:", check_same_thread: bool = False
    ) -> None:
        self._path = str(path)
        self._check_same_thread = check_same_thread
        self._connection: sqlite3.Connection | None = None
        self.lock = threading.RLock()

    @property
    def path(self) -> str:
        return self._path

    def get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        with self.lock:
            if self._connection is None:
                self._connection = sqlite3.connect(
                    self._path, check_same_thread=self._check_same_thread
                )
                self._connection.row_factory = sqlite3.Row
                if self._path != ":memory:":
                    self._connection.execute("PRAGMA journal_mode = WAL")
                # Commit is the durability boundary: fsync on every commit
                self._connection.execute("PRAGMA synchronous = FULL")
            return self._connection

    def initialize(self) -> None:
        """Create all database tables."""
        with self.lock:
            conn = self.get_connection()
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS transaction_queue (
                    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    external_id TEXT UNIQUE,
                    organization_id TEXT NOT NULL,
                    service_type TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    timezone TEXT NOT NULL,
                    synced_at TEXT,
                    CHECK (status IN ('pending', 'synced', 'error'))
                );
                CREATE INDEX IF NOT EXISTS idx_transaction_queue_status
                    ON transaction_queue(status, local_id);
                """
            )
            conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        with self.lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


class SQLiteTransactionQueue(TransactionQueue):
    """Queue backed by a single SQLite table; each mutation commits before returning."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def insert(self, txn: NewTransaction) -> int:
        with self._db.lock:
            conn = self._db.get_connection()
            cursor = conn.execute(
                """
                INSERT INTO transaction_queue
                    (organization_id, service_type, amount, status, created_at, timezone)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    txn.organization_id,
                    txn.service_type.value,
                    txn.amount.to_fixed4(),
                    SyncStatus.PENDING.value,
                    txn.created_at.isoformat(),
                    txn.timezone,
                ),
            )
            conn.commit()
            local_id = cursor.lastrowid
        assert local_id is not None
        logger.debug("queue_record_inserted", local_id=local_id)
        return local_id

    def get(self, local_id: int) -> TransactionRecord | None:
        with self._db.lock:
            row = (
                self._db.get_connection()
                .execute("SELECT * FROM transaction_queue WHERE local_id = ?", (local_id,))
                .fetchone()
            )
        return self._row_to_record(row) if row else None

    def get_by_external_id(self, external_id: str) -> TransactionRecord | None:
        with self._db.lock:
            row = (
                self._db.get_connection()
                .execute(
                    "SELECT * FROM transaction_queue WHERE external_id = ?",
                    (external_id,),
                )
                .fetchone()
            )
        return self._row_to_record(row) if row else None

    def list_by_status(self, *statuses: SyncStatus) -> list[TransactionRecord]:
        if not statuses:
            return []
        placeholders = ", ".join("?" for _ in statuses)
        with self._db.lock:
            rows = (
                self._db.get_connection()
                .execute(
                    f"SELECT * FROM transaction_queue WHERE status IN ({placeholders}) "
                    "ORDER BY local_id",
                    tuple(SyncStatus(s).value for s in statuses),
                )
                .fetchall()
            )
        return [self._row_to_record(row) for row in rows]

    def list_all(self) -> Iterable[TransactionRecord]:
        with self._db.lock:
            rows = (
                self._db.get_connection()
                .execute("SELECT * FROM transaction_queue ORDER BY local_id")
                .fetchall()
            )
        return [self._row_to_record(row) for row in rows]

    def count_by_status(self) -> dict[SyncStatus, int]:
        counts = {status: 0 for status in SyncStatus}
        with self._db.lock:
            rows = (
                self._db.get_connection()
                .execute(
                    "SELECT status, COUNT(*) AS n FROM transaction_queue GROUP BY status"
                )
                .fetchall()
            )
        for row in rows:
            counts[SyncStatus(row["status"])] = row["n"]
        return counts

    def update_status(
        self,
        local_id: int,
        new_status: SyncStatus,
        external_id: str | None = None,
        synced_at: datetime | None = None,
    ) -> None:
        new_status = SyncStatus(new_status)
        with self._db.lock:
            conn = self._db.get_connection()
            row = conn.execute(
                "SELECT status FROM transaction_queue WHERE local_id = ?", (local_id,)
            ).fetchone()
            if row is None:
                raise RecordNotFound(local_id)

            current = SyncStatus(row["status"])
            if not current.can_transition_to(new_status):
                raise IllegalTransition(local_id, current.value, new_status.value)

            if new_status == SyncStatus.SYNCED:
                if not external_id:
                    raise IllegalTransition(
                        local_id,
                        current.value,
                        new_status.value,
                        "external_id is required",
                    )
                synced_at = synced_at or datetime.now(UTC)
            elif external_id is not None or synced_at is not None:
                raise IllegalTransition(
                    local_id,
                    current.value,
                    new_status.value,
                    "external_id and synced_at only accompany synced",
                )

            try:
                conn.execute(
                    """
                    UPDATE transaction_queue
                    SET status = ?, external_id = ?, synced_at = ?
                    WHERE local_id = ?
                    """,
                    (
                        new_status.value,
                        external_id,
                        synced_at.isoformat() if synced_at else None,
                        local_id,
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError:
                conn.rollback()
                raise DuplicateExternalId(local_id, current.value, external_id) from None

        logger.debug(
            "queue_status_updated",
            local_id=local_id,
            from_status=current.value,
            to_status=new_status.value,
        )

    def _row_to_record(self, row: sqlite3.Row) -> TransactionRecord:
        return TransactionRecord(
            local_id=row["local_id"],
            organization_id=row["organization_id"],
            service_type=ServiceType(row["service_type"]),
            amount=Amount(Decimal(row["amount"])),
            created_at=datetime.fromisoformat(row["created_at"]),
            timezone=row["timezone"],
            status=SyncStatus(row["status"]),
            external_id=row["external_id"],
            synced_at=(
                datetime.fromisoformat(row["synced_at"]) if row["synced_at"] else None
            ),
        )
