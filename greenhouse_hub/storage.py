#!/usr/bin/env python3
"""
Telemetry History for the Greenhouse Hub

Simple SQLite-based storage of node telemetry snapshots.
Rows carry the wall-clock time the hub recorded them for date-based queries.
"""

import math
import sqlite3
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .models import SensorSnapshot


# =============================================================================
# Constants
# =============================================================================

# Default database file
DEFAULT_DB_PATH = "hub_history.db"

# Maximum rows to return in a single query (NASA Rule 2)
MAX_QUERY_RESULTS = 10000


def _finite(value: float) -> Optional[float]:
    """Sensor read failures arrive as NaN, store them as NULL."""
    return value if math.isfinite(value) else None


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class HistoryEntry:
    """A single stored telemetry snapshot."""
    id: int
    node_id: int
    recorded_at: int  # Unix timestamp
    temperature: float
    humidity: float
    pressure: float
    vent_state: int
    node_timestamp: int


# =============================================================================
# History Storage
# =============================================================================

class TelemetryHistory:
    """SQLite-based storage for node telemetry snapshots."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """
        Initialize storage.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS telemetry (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    node_id INTEGER NOT NULL,
                    recorded_at INTEGER NOT NULL,
                    temperature REAL,
                    humidity REAL,
                    pressure REAL,
                    vent_state INTEGER NOT NULL,
                    node_timestamp INTEGER NOT NULL
                )
            """)

            # Index for efficient date queries
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_node_recorded
                ON telemetry(node_id, recorded_at)
            """)

            conn.commit()

    def record(self, snapshot: SensorSnapshot, recorded_at: int = None) -> int:
        """
        Store one snapshot.

        Args:
            snapshot: Snapshot to store.
            recorded_at: Unix timestamp (defaults to now).

        Returns:
            Row id of the stored entry.
        """
        if recorded_at is None:
            recorded_at = int(time.time())

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO telemetry
                    (node_id, recorded_at, temperature, humidity, pressure,
                     vent_state, node_timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    snapshot.node_id,
                    recorded_at,
                    _finite(snapshot.temperature),
                    _finite(snapshot.humidity),
                    _finite(snapshot.pressure),
                    int(snapshot.vent_state),
                    snapshot.timestamp,
                ),
            )
            conn.commit()
            return cursor.lastrowid

    def _select(self, where: str, params: tuple, order: str, limit: int) -> List[HistoryEntry]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(
                f"""
                SELECT id, node_id, recorded_at, temperature, humidity, pressure,
                       vent_state, node_timestamp
                FROM telemetry
                WHERE {where}
                ORDER BY recorded_at {order}, id {order}
                LIMIT ?
                """,
                params + (min(limit, MAX_QUERY_RESULTS),)
            )

            return [
                HistoryEntry(
                    id=row["id"],
                    node_id=row["node_id"],
                    recorded_at=row["recorded_at"],
                    temperature=row["temperature"],
                    humidity=row["humidity"],
                    pressure=row["pressure"],
                    vent_state=row["vent_state"],
                    node_timestamp=row["node_timestamp"],
                )
                for row in cursor
            ]

    def get_range(
        self,
        node_id: int,
        start_timestamp: int,
        end_timestamp: int,
        limit: int = MAX_QUERY_RESULTS,
    ) -> List[HistoryEntry]:
        """
        Get entries for a node within a time range.

        Args:
            node_id: Node ID.
            start_timestamp: Start Unix timestamp (inclusive).
            end_timestamp: End Unix timestamp (exclusive).
            limit: Maximum entries to return.

        Returns:
            List of entries ordered by time.
        """
        return self._select(
            "node_id = ? AND recorded_at >= ? AND recorded_at < ?",
            (node_id, start_timestamp, end_timestamp),
            "ASC",
            limit,
        )

    def get_latest(self, node_id: int, limit: int = 100) -> List[HistoryEntry]:
        """
        Get the most recent entries for a node.

        Returns:
            List of entries ordered by time (newest first).
        """
        return self._select("node_id = ?", (node_id,), "DESC", limit)

    def get_count(self, node_id: int = None) -> int:
        """Get total entry count, optionally for one node."""
        with sqlite3.connect(self.db_path) as conn:
            if node_id is not None:
                cursor = conn.execute(
                    "SELECT COUNT(*) FROM telemetry WHERE node_id = ?",
                    (node_id,)
                )
            else:
                cursor = conn.execute("SELECT COUNT(*) FROM telemetry")
            return cursor.fetchone()[0]

    def get_date_range(self, node_id: int) -> Optional[Tuple[int, int]]:
        """
        Get the time range of a node's history.

        Returns:
            Tuple of (min_timestamp, max_timestamp) or None if no data.
        """
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                SELECT MIN(recorded_at), MAX(recorded_at)
                FROM telemetry
                WHERE node_id = ?
                """,
                (node_id,)
            )
            row = cursor.fetchone()
            if row[0] is None:
                return None
            return (row[0], row[1])

    def delete_older_than(self, before_timestamp: int) -> int:
        """
        Delete entries recorded before a timestamp.

        Returns:
            Number of entries deleted.
        """
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM telemetry WHERE recorded_at < ?",
                (before_timestamp,)
            )
            conn.commit()
            return cursor.rowcount
