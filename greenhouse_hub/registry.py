#!/usr/bin/env python3
"""
Node Registry

In-memory table of per-node state, the single source of truth for "is this
node reachable". The transport's receive thread, the reconciliation loop and
the API all go through this object, every access is serialized by one
re-entrant lock and no caller ever holds a reference to a live record.
"""

import copy
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, TypeVar

from .models import (
    DEFAULT_NODE_CAPACITY,
    DEFAULT_STALE_TIMEOUT,
    MAX_NODES,
    NodeRecord,
    NodeSettings,
    SensorSnapshot,
)
from .protocol import TelemetryMessage

T = TypeVar("T")


class NodeRegistry:
    """Bounded registry of node records keyed by node id (1..capacity)."""

    def __init__(
        self,
        capacity: int = DEFAULT_NODE_CAPACITY,
        stale_timeout: float = DEFAULT_STALE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the registry.

        Args:
            capacity: Number of node slots (N), ids are 1..N.
            stale_timeout: Seconds after which a silent node is no longer live.
            clock: Monotonic time source, injectable for tests.
        """
        if not 1 <= capacity <= MAX_NODES:
            raise ValueError(f"capacity must be within 1..{MAX_NODES}")

        self.capacity = capacity
        self.stale_timeout = stale_timeout
        self.clock = clock
        self.logger = logging.getLogger("NodeRegistry")
        self._lock = threading.RLock()
        self._records: Dict[int, NodeRecord] = {
            node_id: NodeRecord(sensor=SensorSnapshot(node_id=node_id))
            for node_id in self.node_ids()
        }

    def node_ids(self) -> range:
        """All valid node ids."""
        return range(1, self.capacity + 1)

    def is_valid_node_id(self, node_id) -> bool:
        """Check that an id addresses a slot of this registry."""
        return isinstance(node_id, int) and 1 <= node_id <= self.capacity

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    def ingest_telemetry(self, msg: TelemetryMessage, now: float = None) -> bool:
        """
        Record a decoded telemetry message.

        Out-of-range node ids are routine on a shared medium and are dropped
        without raising.

        Returns:
            True if a record was updated.
        """
        if not self.is_valid_node_id(msg.node_id):
            self.logger.debug(f"Dropping telemetry for unknown node id {msg.node_id}")
            return False

        if now is None:
            now = self.clock()

        with self._lock:
            record = self._records[msg.node_id]
            record.sensor = msg.to_snapshot(observed_at=now)
            record.is_online = True
            record.last_seen = now

        self.logger.debug(
            f"[TELEMETRY] node {msg.node_id}: temp={msg.temperature:.1f}C, "
            f"humidity={msg.humidity:.1f}%, pressure={msg.pressure:.1f}hPa, "
            f"vent={msg.vent_state}"
        )
        return True

    # -------------------------------------------------------------------------
    # Liveness
    # -------------------------------------------------------------------------

    def is_live(self, node_id: int, now: float = None) -> bool:
        """A node is live if it has been seen and not within the stale window."""
        if not self.is_valid_node_id(node_id):
            return False

        if now is None:
            now = self.clock()

        with self._lock:
            record = self._records[node_id]
            return record.is_online and (now - record.last_seen) < self.stale_timeout

    def live_node_ids(self, now: float = None) -> List[int]:
        """Ids of all currently live nodes, re-checked at call time."""
        if now is None:
            now = self.clock()
        return [node_id for node_id in self.node_ids() if self.is_live(node_id, now)]

    # -------------------------------------------------------------------------
    # Controlled access
    # -------------------------------------------------------------------------

    def get_record(self, node_id: int) -> Optional[NodeRecord]:
        """Get a copy of a node record, None for an invalid id."""
        if not self.is_valid_node_id(node_id):
            return None
        with self._lock:
            return copy.deepcopy(self._records[node_id])

    def get_records(self) -> Dict[int, NodeRecord]:
        """Copies of all records keyed by node id."""
        with self._lock:
            return copy.deepcopy(self._records)

    def mutate_settings(self, node_id: int, fn: Callable[[NodeSettings], T]) -> T:
        """
        Run ``fn`` against a node's settings under the registry lock.

        Raises:
            ValueError: If node_id is not a valid slot.
        """
        if not self.is_valid_node_id(node_id):
            raise ValueError(f"Invalid node id: {node_id}")
        with self._lock:
            return fn(self._records[node_id].settings)

    def consume_control(self, node_id: int) -> Optional[NodeRecord]:
        """
        Copy a record for a control send and clear its one-shot command.

        Returns:
            The record as it was (command included), None for an invalid id.
        """
        if not self.is_valid_node_id(node_id):
            return None
        with self._lock:
            record = self._records[node_id]
            snapshot = copy.deepcopy(record)
            record.settings.manual_command = None
            return snapshot

    # -------------------------------------------------------------------------
    # Settings persistence support
    # -------------------------------------------------------------------------

    def settings_snapshot(self) -> Dict[int, NodeSettings]:
        """Copies of every node's settings, for the settings store."""
        with self._lock:
            return {
                node_id: copy.deepcopy(record.settings)
                for node_id, record in self._records.items()
            }

    def load_settings(self, settings: Dict[int, NodeSettings]):
        """Replace settings of the given nodes, unknown ids are ignored."""
        with self._lock:
            for node_id, node_settings in settings.items():
                if self.is_valid_node_id(node_id):
                    self._records[node_id].settings = copy.deepcopy(node_settings)
