#!/usr/bin/env python3
"""
Reconciliation Engine

Keeps the remote store eventually consistent with the hub and applies remote
edits to the nodes. One cycle is a push phase followed by a pull phase:

Push (local -> remote), for every live node:
    greenhouses/{id}/currentData   overwritten with the latest telemetry
    greenhouses/{id}/settings      merged with the local settings, when they
                                   changed since the last push or the pull
                                   found the remote copy missing or edited

Pull (remote -> local), for every node:
    greenhouses/{id}/settings      temperatureThreshold, hysteresis, mode and
                                   manualControl are diffed against the local
                                   settings; any applied change sends a control
                                   message and persists the settings. A consumed
                                   manualControl is cleared in the remote store.

Manual commands are one-shot: the local copy is cleared by every control send
and the remote copy is cleared by the pull that consumed it. A control message
lost on the air is never replayed.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .exceptions import RemoteStoreError
from .models import (
    HYSTERESIS_RANGE,
    TEMPERATURE_THRESHOLD_RANGE,
    ManualCommand,
    NodeRecord,
    NodeSettings,
    in_range,
    vent_state_name,
)
from .protocol import encode_control, to_float32
from .registry import NodeRegistry
from .settings_store import SettingsStore
from .transport import BroadcastTransport


# =============================================================================
# Remote store layout
# =============================================================================

LAST_CONTROL_ALL_PATH = "system/lastControlAll"


def current_data_path(node_id: int) -> str:
    return f"greenhouses/{node_id}/currentData"


def settings_path(node_id: int) -> str:
    return f"greenhouses/{node_id}/settings"


def _json_float(value: float) -> Optional[float]:
    """JSON has no NaN/Infinity, send null instead."""
    return value if math.isfinite(value) else None


def telemetry_document(node_id: int, record: NodeRecord) -> Dict[str, Any]:
    """Remote currentData document for a node."""
    sensor = record.sensor
    return {
        "nodeId": node_id,
        "temperature": _json_float(sensor.temperature),
        "humidity": _json_float(sensor.humidity),
        "pressure": _json_float(sensor.pressure),
        "ventStatus": vent_state_name(sensor.vent_state),
        "timestamp": sensor.timestamp,
    }


def settings_document(record: NodeRecord) -> Dict[str, Any]:
    """Remote settings mirror for a node (manualControl is never pushed)."""
    settings = record.settings
    schedule = settings.schedule
    return {
        "temperatureThreshold": _json_float(settings.temperature_threshold),
        "hysteresis": _json_float(settings.hysteresis),
        "mode": "auto" if settings.auto_mode else "manual",
        "ventStatus": vent_state_name(record.sensor.vent_state),
        "scheduleOpenHour": schedule.open_hour,
        "scheduleOpenMinute": schedule.open_minute,
        "scheduleCloseHour": schedule.close_hour,
        "scheduleCloseMinute": schedule.close_minute,
        "scheduleEnabled": schedule.enabled,
    }


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class SyncReport:
    """Outcome of one reconciliation cycle."""
    started_at: float = 0.0
    finished_at: float = 0.0
    skipped: bool = False
    pushed: List[int] = field(default_factory=list)
    pulled: List[int] = field(default_factory=list)
    dirty: List[int] = field(default_factory=list)
    commands: Dict[int, str] = field(default_factory=dict)
    failures: List[str] = field(default_factory=list)


# =============================================================================
# Reconciliation Engine
# =============================================================================

class ReconciliationEngine:
    """
    Push/pull synchronization between the node registry and the remote store.

    Also owns control sends, since every path that changes node settings
    (pull, bulk command, API) must end in one.
    """

    def __init__(
        self,
        registry: NodeRegistry,
        transport: BroadcastTransport,
        store,
        settings_store: SettingsStore,
        wall_clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the engine.

        Args:
            registry: Node registry.
            transport: Broadcast transport for control messages.
            store: Remote store client (get/set/update, is_configured).
            settings_store: Durable settings store.
            wall_clock: Epoch time source for remote timestamps.
        """
        self.registry = registry
        self.transport = transport
        self.store = store
        self.settings_store = settings_store
        self.wall_clock = wall_clock
        self.logger = logging.getLogger("Reconciliation")

        self.cycle_count = 0
        self.last_report: Optional[SyncReport] = None

        self._cycle_lock = threading.Lock()
        self._send_lock = threading.Lock()
        # Settings mirror last written per node, and nodes whose remote
        # settings have been read at least once
        self._last_pushed_settings: Dict[int, Dict[str, Any]] = {}
        self._pulled_once: Set[int] = set()

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    def run_cycle(self, now: float = None) -> SyncReport:
        """
        Run one push+pull cycle.

        A cycle requested while another is running is skipped, not queued.
        """
        report = SyncReport(started_at=self.wall_clock())

        if not self.store.is_configured:
            self.logger.debug("Remote store not configured, skipping cycle")
            report.skipped = True
            return report

        if not self._cycle_lock.acquire(blocking=False):
            self.logger.warning("Previous cycle still running, skipping")
            report.skipped = True
            return report

        try:
            if now is None:
                now = self.registry.clock()
            self.push_phase(now, report)
            self.pull_phase(report)
        finally:
            self._cycle_lock.release()

        report.finished_at = self.wall_clock()
        self.cycle_count += 1
        self.last_report = report

        if report.dirty or report.failures:
            self.logger.info(
                f"Cycle {self.cycle_count}: pushed={report.pushed}, "
                f"dirty={report.dirty}, commands={report.commands}, "
                f"failures={len(report.failures)}"
            )
        return report

    def push_phase(self, now: float, report: SyncReport):
        """Upload telemetry and settings of every live node."""
        for node_id in self.registry.live_node_ids(now):
            record = self.registry.get_record(node_id)

            try:
                self.store.set(current_data_path(node_id), telemetry_document(node_id, record))
            except RemoteStoreError as e:
                self.logger.warning(f"Failed to upload data for node {node_id}: {e}")
                report.failures.append(f"push {node_id}: {e}")
                continue

            report.pushed.append(node_id)

            # Remote edits win until they have been read once
            if node_id not in self._pulled_once:
                continue

            mirror = settings_document(record)
            if mirror == self._last_pushed_settings.get(node_id):
                continue

            try:
                self.store.update(settings_path(node_id), mirror)
            except RemoteStoreError as e:
                self.logger.warning(f"Failed to upload settings for node {node_id}: {e}")
                report.failures.append(f"push settings {node_id}: {e}")
                continue

            self._last_pushed_settings[node_id] = mirror

    def pull_phase(self, report: SyncReport):
        """Download settings of every node and apply the differences."""
        for node_id in self.registry.node_ids():
            try:
                document = self.store.get(settings_path(node_id))
            except RemoteStoreError as e:
                self.logger.warning(f"Failed to fetch settings for node {node_id}: {e}")
                report.failures.append(f"pull {node_id}: {e}")
                continue

            self._pulled_once.add(node_id)
            report.pulled.append(node_id)

            if not isinstance(document, dict):
                self._last_pushed_settings.pop(node_id, None)
                continue

            dirty, command = self.apply_remote_settings(node_id, document)
            if dirty:
                report.dirty.append(node_id)
            if command is not None:
                report.commands[node_id] = command.remote_name

            # Remote mirror deleted or edited: rewrite it on the next push
            if not self._mirror_matches(node_id, document):
                self._last_pushed_settings.pop(node_id, None)

    def _mirror_matches(self, node_id: int, document: Dict[str, Any]) -> bool:
        """True if the remote document holds every mirrored field unchanged."""
        mirror = settings_document(self.registry.get_record(node_id))
        return all(
            key in document and document[key] == value
            for key, value in mirror.items()
        )

    def apply_remote_settings(
        self,
        node_id: int,
        document: Dict[str, Any],
    ) -> Tuple[bool, Optional[ManualCommand]]:
        """
        Diff one remote settings document against the local settings.

        Returns:
            (dirty, consumed manual command or None)
        """
        record = self.registry.get_record(node_id)
        changes = self._diff_settings(node_id, record.settings, document)
        command = ManualCommand.from_remote(document.get("manualControl"))

        if not changes and command is None:
            return False, None

        def apply(settings: NodeSettings):
            for name, value in changes.items():
                setattr(settings, name, value)
            if command is not None:
                settings.manual_command = command

        self.registry.mutate_settings(node_id, apply)

        for name, value in changes.items():
            self.logger.info(f"Node {node_id}: {name} -> {value} (remote)")
        if command is not None:
            self.logger.info(f"Node {node_id}: manual command {command.remote_name} (remote)")

        self.send_control(node_id)
        self.persist()

        if command is not None:
            try:
                self.store.update(settings_path(node_id), {"manualControl": None})
            except RemoteStoreError as e:
                self.logger.warning(f"Failed to clear manualControl for node {node_id}: {e}")

        return True, command

    def _diff_settings(
        self,
        node_id: int,
        local: NodeSettings,
        document: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Collect recognized remote fields that differ from local values."""
        changes = {}

        threshold = self._remote_float(
            node_id, document, "temperatureThreshold", TEMPERATURE_THRESHOLD_RANGE
        )
        if threshold is not None and threshold != local.temperature_threshold:
            changes["temperature_threshold"] = threshold

        hysteresis = self._remote_float(node_id, document, "hysteresis", HYSTERESIS_RANGE)
        if hysteresis is not None and hysteresis != local.hysteresis:
            changes["hysteresis"] = hysteresis

        mode = document.get("mode")
        if isinstance(mode, str):
            auto_mode = mode == "auto"
            if auto_mode != local.auto_mode:
                changes["auto_mode"] = auto_mode

        return changes

    def _remote_float(self, node_id: int, document: Dict[str, Any], key: str, bounds) -> Optional[float]:
        value = document.get(key)
        if value is None:
            return None

        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self.logger.warning(f"Node {node_id}: ignoring non-numeric {key}={value!r}")
            return None

        if not in_range(float(value), bounds):
            self.logger.warning(f"Node {node_id}: ignoring out-of-range {key}={value}")
            return None

        return to_float32(float(value))

    # -------------------------------------------------------------------------
    # Control Send
    # -------------------------------------------------------------------------

    def send_control(self, node_id: int, now: float = None) -> bool:
        """
        Broadcast the control message for one node.

        Nodes that were never seen or have gone stale are not transmitted to.
        The local manual command is cleared in every case, so a command can
        never be replayed later.

        Returns:
            True if the transport accepted the message.
        """
        if not self.registry.is_live(node_id, now):
            self.registry.consume_control(node_id)
            self.logger.debug(f"Node {node_id} not live, control not sent")
            return False

        with self._send_lock:
            record = self.registry.consume_control(node_id)
            payload = encode_control(node_id, record)
            sent = self.transport.send(payload)

        if sent:
            self.logger.info(f"Control message sent to node {node_id}")
        else:
            self.logger.error(f"Error sending control message to node {node_id}")
        return sent

    def broadcast_to_all(self, command: ManualCommand, now: float = None) -> List[int]:
        """
        Apply a manual command to every live node.

        Open and close also switch the node to manual mode and are recorded
        as the last bulk action in the remote store.

        Returns:
            Ids of the nodes that were addressed.
        """
        if now is None:
            now = self.registry.clock()

        self.logger.info(f"Sending command to all nodes: {command.remote_name}")

        def apply(settings: NodeSettings):
            settings.manual_command = command
            if command in (ManualCommand.OPEN, ManualCommand.CLOSE):
                settings.auto_mode = False

        addressed = []
        for node_id in self.registry.live_node_ids(now):
            self.registry.mutate_settings(node_id, apply)
            self.send_control(node_id, now)
            addressed.append(node_id)

        if addressed:
            self.persist()

        # The bulk action record only tracks open and close
        if self.store.is_configured and command is not ManualCommand.STOP:
            try:
                self.store.set(
                    LAST_CONTROL_ALL_PATH,
                    {"action": command.remote_name, "timestamp": int(self.wall_clock())},
                )
            except RemoteStoreError as e:
                self.logger.warning(f"Failed to record bulk action: {e}")

        return addressed

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def persist(self) -> bool:
        """Save all node settings to the durable store."""
        return self.settings_store.save_all(self.registry.settings_snapshot())
