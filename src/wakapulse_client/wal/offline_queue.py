"""Durable offline queue for heartbeats using SQLite.

Heartbeats are written here before anything tries to deliver them, so an
append that returned is on disk even if the process dies right after. The
dispatcher reads the oldest deliverable records, moves them through their
delivery states and compaction purges what no longer needs to be kept.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from loguru import logger

from ..core.errors import CorruptRecordError, StorageFullError
from ..core.events import DeliveryState, Heartbeat, QueueRecord

_DELIVERABLE = (DeliveryState.PENDING.value, DeliveryState.FAILED.value)


@dataclass
class OfflineQueueConfig:
    """Configuration for the offline queue."""

    db_path: Path = Path("offline_queue.db")
    max_queue_bytes: int = 5 * 1024 * 1024  # Cap on bytes held by undelivered records
    max_batch_size: int = 50  # Default peek size
    vacuum_threshold: int = 10000  # VACUUM database after N deleted records
    enable_wal_mode: bool = True  # Use SQLite WAL mode for better concurrency


class OfflineQueue:
    """SQLite-backed write-ahead queue of heartbeats pending delivery."""

    def __init__(self, config: Optional[OfflineQueueConfig] = None):
        """Initialize the queue.

        Args:
            config: Queue configuration
        """
        self.config = config or OfflineQueueConfig()
        self._lock = threading.RLock()
        self._deleted_count = 0
        self._total_appended = 0
        self._total_evicted = 0
        self._total_corrupt = 0

        # Create database directory if needed
        self.config.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.config.db_path, timeout=30.0)
        try:
            conn.execute("PRAGMA synchronous=FULL")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_database(self) -> None:
        """Initialize the SQLite database with the required schema."""
        with self._connect() as conn:
            if self.config.enable_wal_mode:
                conn.execute("PRAGMA journal_mode=WAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS heartbeats (
                    sequence_id INTEGER PRIMARY KEY,
                    is_write BOOLEAN NOT NULL,
                    payload TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    state TEXT NOT NULL DEFAULT 'pending',
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    batch_id TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_heartbeats_state_sequence
                ON heartbeats(state, sequence_id)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS queue_metadata (
                    key TEXT PRIMARY KEY,
                    value INTEGER
                )
            """)

            conn.execute("""
                INSERT OR IGNORE INTO queue_metadata (key, value)
                VALUES ('last_sequence_id', 0)
            """)

        logger.info(f"Initialized offline queue at {self.config.db_path}")

    def append(self, heartbeat: Heartbeat, force: bool = False) -> None:
        """Durably append a heartbeat.

        Args:
            heartbeat: Heartbeat to store
            force: Store even when the size cap is exceeded

        Raises:
            StorageFullError: if the record does not fit and force is False
        """
        payload = json.dumps(heartbeat.to_dict(), separators=(",", ":"))
        size_bytes = len(payload.encode("utf-8"))

        with self._lock:
            with self._connect() as conn:
                used = self._used_bytes(conn)
                if not force and used + size_bytes > self.config.max_queue_bytes:
                    raise StorageFullError(used, size_bytes, self.config.max_queue_bytes)

                conn.execute(
                    "INSERT INTO heartbeats (sequence_id, is_write, payload, size_bytes) VALUES (?, ?, ?, ?)",
                    (heartbeat.sequence_id, heartbeat.is_write, payload, size_bytes),
                )
                conn.execute(
                    "UPDATE queue_metadata SET value = MAX(value, ?) WHERE key = 'last_sequence_id'",
                    (heartbeat.sequence_id,),
                )

            self._total_appended += 1
            if force and used + size_bytes > self.config.max_queue_bytes:
                logger.warning(f"Stored write heartbeat {heartbeat.sequence_id} past the queue cap ({used + size_bytes}/{self.config.max_queue_bytes} bytes)")
            else:
                logger.debug(f"Appended heartbeat {heartbeat.sequence_id} to offline queue")

    def peek_batch(self, max_size: Optional[int] = None) -> List[QueueRecord]:
        """Read the oldest deliverable records without changing their state.

        Corrupt rows are logged, quarantined as rejected and skipped.

        Args:
            max_size: Maximum number of records to return

        Returns:
            Records ordered by sequence id
        """
        max_size = max_size or self.config.max_batch_size

        with self._lock:
            with self._connect() as conn:
                conn.row_factory = sqlite3.Row
                rows = conn.execute(
                    """
                    SELECT sequence_id, payload, state, retry_count, batch_id
                    FROM heartbeats
                    WHERE state IN (?, ?)
                    ORDER BY sequence_id
                    LIMIT ?
                """,
                    (*_DELIVERABLE, max_size),
                ).fetchall()

                records = []
                corrupt_ids = []
                for row in rows:
                    try:
                        records.append(self._row_to_record(row))
                    except CorruptRecordError as e:
                        logger.error(f"Skipping {e}")
                        corrupt_ids.append(row["sequence_id"])

                if corrupt_ids:
                    self._set_state(conn, corrupt_ids, DeliveryState.REJECTED)
                    self._total_corrupt += len(corrupt_ids)

        return records

    def mark_in_flight(self, sequence_ids: Sequence[int], batch_id: str) -> None:
        """Claim records for an HTTP call, remembering the batch they went out in."""
        if not sequence_ids:
            return
        with self._lock:
            with self._connect() as conn:
                placeholders = ",".join("?" * len(sequence_ids))
                conn.execute(
                    f"UPDATE heartbeats SET state = ?, batch_id = ?, updated_at = CURRENT_TIMESTAMP WHERE sequence_id IN ({placeholders})",
                    (DeliveryState.IN_FLIGHT.value, batch_id, *sequence_ids),
                )

    def mark_delivered(self, sequence_ids: Sequence[int]) -> None:
        """Mark records as accepted by the API."""
        self._update_state(sequence_ids, DeliveryState.DELIVERED)
        logger.debug(f"Marked {len(sequence_ids)} heartbeats as delivered")

    def mark_failed(self, sequence_ids: Sequence[int]) -> None:
        """Record a transient failure. Records stay deliverable."""
        if not sequence_ids:
            return
        with self._lock:
            with self._connect() as conn:
                placeholders = ",".join("?" * len(sequence_ids))
                conn.execute(
                    f"UPDATE heartbeats SET state = ?, retry_count = retry_count + 1, updated_at = CURRENT_TIMESTAMP WHERE sequence_id IN ({placeholders})",
                    (DeliveryState.FAILED.value, *sequence_ids),
                )
        logger.debug(f"Incremented retry count for {len(sequence_ids)} heartbeats")

    def mark_rejected(self, sequence_ids: Sequence[int]) -> None:
        """Record a permanent failure. Records are never delivered again."""
        self._update_state(sequence_ids, DeliveryState.REJECTED)
        logger.debug(f"Marked {len(sequence_ids)} heartbeats as rejected")

    def release(self, sequence_ids: Sequence[int]) -> None:
        """Return in-flight records to the deliverable pool without counting a retry."""
        if not sequence_ids:
            return
        with self._lock:
            with self._connect() as conn:
                placeholders = ",".join("?" * len(sequence_ids))
                conn.execute(
                    f"""
                    UPDATE heartbeats
                    SET state = CASE WHEN retry_count > 0 THEN ? ELSE ? END, updated_at = CURRENT_TIMESTAMP
                    WHERE state = ? AND sequence_id IN ({placeholders})
                """,
                    (DeliveryState.FAILED.value, DeliveryState.PENDING.value, DeliveryState.IN_FLIGHT.value, *sequence_ids),
                )

    def recover_in_flight(self) -> int:
        """Return records left in flight by a previous run to the deliverable pool.

        Returns:
            Number of records recovered
        """
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE heartbeats
                    SET state = CASE WHEN retry_count > 0 THEN ? ELSE ? END, updated_at = CURRENT_TIMESTAMP
                    WHERE state = ?
                """,
                    (DeliveryState.FAILED.value, DeliveryState.PENDING.value, DeliveryState.IN_FLIGHT.value),
                )
                recovered = cursor.rowcount

        if recovered > 0:
            logger.info(f"Recovered {recovered} in-flight heartbeats from previous session")
        return recovered

    def evict_oldest_non_write(self, bytes_needed: int) -> int:
        """Delete the oldest deliverable non-write records until enough bytes are free.

        Records that already went out under a batch id are kept so a retry
        rebuilds the same range and reuses the same idempotency key.

        Args:
            bytes_needed: Bytes to free; at least one record is evicted if any exist

        Returns:
            Number of records evicted
        """
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT sequence_id, size_bytes FROM heartbeats
                    WHERE is_write = 0 AND batch_id IS NULL AND state IN (?, ?)
                    ORDER BY sequence_id
                """,
                    _DELIVERABLE,
                ).fetchall()

                victims = []
                freed = 0
                for sequence_id, size_bytes in rows:
                    victims.append(sequence_id)
                    freed += size_bytes
                    if freed >= bytes_needed:
                        break

                if victims:
                    placeholders = ",".join("?" * len(victims))
                    conn.execute(f"DELETE FROM heartbeats WHERE sequence_id IN ({placeholders})", victims)

            self._total_evicted += len(victims)
            self._deleted_count += len(victims)

        if victims:
            logger.warning(f"Evicted {len(victims)} non-write heartbeats ({freed} bytes) to make room in the offline queue")
        return len(victims)

    def compact(self) -> int:
        """Delete delivered and rejected records.

        Returns:
            Number of records deleted
        """
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM heartbeats WHERE state IN (?, ?)",
                    (DeliveryState.DELIVERED.value, DeliveryState.REJECTED.value),
                )
                deleted = cursor.rowcount

            self._deleted_count += deleted
            if deleted > 0:
                logger.info(f"Compacted {deleted} finished heartbeats from offline queue")

            self._maybe_vacuum()
        return deleted

    def get_record(self, sequence_id: int) -> Optional[QueueRecord]:
        """Fetch a single record regardless of state."""
        with self._connect() as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT sequence_id, payload, state, retry_count, batch_id FROM heartbeats WHERE sequence_id = ?",
                (sequence_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def load_last_sequence_id(self) -> int:
        """Highest sequence id ever handed out or stored."""
        with self._connect() as conn:
            stored = conn.execute("SELECT value FROM queue_metadata WHERE key = 'last_sequence_id'").fetchone()[0]
            highest = conn.execute("SELECT MAX(sequence_id) FROM heartbeats").fetchone()[0]
        return max(stored or 0, highest or 0)

    def store_last_sequence_id(self, sequence_id: int) -> None:
        """Durably record that a sequence id has been handed out."""
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    "UPDATE queue_metadata SET value = MAX(value, ?) WHERE key = 'last_sequence_id'",
                    (sequence_id,),
                )

    def used_bytes(self) -> int:
        with self._connect() as conn:
            return self._used_bytes(conn)

    def pending_count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM heartbeats WHERE state IN (?, ?)", _DELIVERABLE).fetchone()[0]

    def get_stats(self) -> Dict[str, Any]:
        """Get queue statistics.

        Returns:
            Dictionary with queue statistics
        """
        try:
            with self._connect() as conn:
                states = dict(conn.execute("SELECT state, COUNT(*) FROM heartbeats GROUP BY state").fetchall())
                used = self._used_bytes(conn)

            return {
                "pending": states.get(DeliveryState.PENDING.value, 0),
                "failed": states.get(DeliveryState.FAILED.value, 0),
                "in_flight": states.get(DeliveryState.IN_FLIGHT.value, 0),
                "delivered": states.get(DeliveryState.DELIVERED.value, 0),
                "rejected": states.get(DeliveryState.REJECTED.value, 0),
                "pending_count": states.get(DeliveryState.PENDING.value, 0) + states.get(DeliveryState.FAILED.value, 0),
                "used_bytes": used,
                "max_queue_bytes": self.config.max_queue_bytes,
                "utilization": used / self.config.max_queue_bytes if self.config.max_queue_bytes else 0.0,
                "total_appended": self._total_appended,
                "total_evicted": self._total_evicted,
                "total_corrupt": self._total_corrupt,
                "last_sequence_id": self.load_last_sequence_id(),
            }

        except sqlite3.Error as e:
            logger.error(f"Failed to get offline queue stats: {e}")
            return {}

    def close(self) -> None:
        """Checkpoint the SQLite WAL so the database file is self-contained."""
        try:
            with self._lock:
                with self._connect() as conn:
                    if self.config.enable_wal_mode:
                        conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            logger.info("Closed offline queue")
        except sqlite3.Error as e:
            logger.error(f"Error closing offline queue: {e}")

    def _update_state(self, sequence_ids: Sequence[int], state: DeliveryState) -> None:
        if not sequence_ids:
            return
        with self._lock:
            with self._connect() as conn:
                self._set_state(conn, sequence_ids, state)

    @staticmethod
    def _set_state(conn: sqlite3.Connection, sequence_ids: Sequence[int], state: DeliveryState) -> None:
        placeholders = ",".join("?" * len(sequence_ids))
        conn.execute(
            f"UPDATE heartbeats SET state = ?, updated_at = CURRENT_TIMESTAMP WHERE sequence_id IN ({placeholders})",
            (state.value, *sequence_ids),
        )

    @staticmethod
    def _used_bytes(conn: sqlite3.Connection) -> int:
        return conn.execute("SELECT COALESCE(SUM(size_bytes), 0) FROM heartbeats WHERE state != ?", (DeliveryState.DELIVERED.value,)).fetchone()[0]

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> QueueRecord:
        sequence_id = row["sequence_id"]
        try:
            heartbeat = Heartbeat.from_dict(json.loads(row["payload"]))
            state = DeliveryState(row["state"])
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            raise CorruptRecordError(sequence_id, str(e)) from e

        if heartbeat.sequence_id != sequence_id:
            raise CorruptRecordError(sequence_id, f"payload carries sequence id {heartbeat.sequence_id}")

        return QueueRecord(heartbeat=heartbeat, state=state, retry_count=row["retry_count"], batch_id=row["batch_id"])

    def _maybe_vacuum(self) -> None:
        """Vacuum database if delete threshold is reached."""
        if self._deleted_count >= self.config.vacuum_threshold:
            try:
                conn = sqlite3.connect(self.config.db_path)
                try:
                    conn.execute("VACUUM")
                finally:
                    conn.close()
                self._deleted_count = 0
                logger.info("Vacuumed offline queue database")
            except sqlite3.Error as e:
                logger.error(f"Failed to vacuum offline queue database: {e}")
