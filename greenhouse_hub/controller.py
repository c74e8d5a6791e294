#!/usr/bin/env python3
"""
Greenhouse Hub Controller

This module wires the hub together and runs it. The hub is the only component
that sees both sides: greenhouse nodes on the broadcast radio link and the
remote document store.

Architecture:
    Remote store (Firebase Realtime Database)
        │
        ├── HTTPS (push telemetry, pull settings/commands)
        ▼
    Hub (this Python app)
        │
        ├── USB/Serial connection
        ▼
    Radio (connected to PC)
        │
        ├── Private Channel (RF broadcast)
        ▼
    Greenhouse Nodes
        - Broadcast telemetry (temperature, humidity, pressure, vent state)
        - Receive control messages, filtered by target node id

Cadences:
- Telemetry ingestion runs on the radio's receive thread and only decodes
  and updates the registry
- The reconciliation cycle runs every ``sync_interval`` seconds
- Control sends are triggered by the cycle, by bulk commands and by the API
"""

import logging
import sys
import time
from typing import Any, Callable, Dict, List, Optional

from .models import (
    HubConfig,
    HubState,
    ManualCommand,
    NodeRecord,
    NodeSettings,
    MAX_EVENT_HANDLERS,
)
from .protocol import TelemetryMessage, decode_telemetry, to_float32
from .registry import NodeRegistry
from .remote import FirebaseStore
from .settings_store import SettingsStore
from .storage import TelemetryHistory
from .sync import ReconciliationEngine, SyncReport
from .transport import BroadcastTransport, MeshtasticTransport

# Seconds between history purges
HISTORY_PURGE_INTERVAL = 86400


class HubController:
    """
    Controller for the greenhouse hub.

    Owns the node registry, the transport, the remote store client, the
    settings store and the reconciliation engine, and runs the main loop.
    """

    def __init__(
        self,
        config: HubConfig,
        transport: BroadcastTransport = None,
        store=None,
        history: Optional[TelemetryHistory] = None,
        clock: Callable[[], float] = time.monotonic,
        setup_logging: bool = True,
    ):
        """
        Initialize the hub controller.

        Args:
            config: Hub configuration object.
            transport: Broadcast transport (Meshtastic radio if None).
            store: Remote store client (Firebase REST if None).
            history: Telemetry history storage (SQLite at config path if None).
            clock: Monotonic time source for liveness.
            setup_logging: Configure root logging from the config.
        """
        self.config = config
        if setup_logging:
            self._setup_logging()

        self.logger = logging.getLogger("HubController")
        self.state = HubState.DISCONNECTED
        self.running = False

        self.registry = NodeRegistry(
            capacity=config.node_capacity,
            stale_timeout=config.stale_timeout,
            clock=clock,
        )

        # Restore persisted settings before anything can send
        self.settings_store = SettingsStore(config.settings_path, config.node_capacity)
        self.registry.load_settings(self.settings_store.load_all())

        self.transport = transport or MeshtasticTransport(config, logging.getLogger("Transport"))
        self.transport.on_receive(self._on_payload)

        self.store = store or FirebaseStore(
            config.remote.database_url,
            config.remote.auth_token,
            timeout=config.remote.timeout_seconds,
        )

        self.engine = ReconciliationEngine(
            self.registry,
            self.transport,
            self.store,
            self.settings_store,
        )

        self.history = history if history is not None else TelemetryHistory(config.history_db)
        self._last_recorded: Dict[int, float] = {}

        # Statistics
        self.telemetry_count = 0
        self.invalid_count = 0

        # Event handlers
        self._telemetry_handlers: List[Callable] = []
        self._state_handlers: List[Callable] = []

    def _setup_logging(self):
        """Configure logging."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        handlers = [logging.StreamHandler(sys.stdout)]
        if self.config.log_file:
            handlers.insert(0, logging.FileHandler(self.config.log_file))

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            handlers=handlers,
        )

    def _set_state(self, state: HubState):
        """Update controller state and notify handlers."""
        old_state = self.state
        self.state = state
        self.logger.info(f"State: {old_state.value} -> {state.value}")

        for handler in self._state_handlers:
            try:
                handler(old_state, state)
            except Exception as e:
                self.logger.error(f"State handler error: {e}")

    # -------------------------------------------------------------------------
    # Event Handlers
    # -------------------------------------------------------------------------

    def _on_connection(self):
        """Handle radio connection established."""
        self.logger.info("Connected to radio")

    def _on_disconnect(self):
        """Handle radio connection lost."""
        self._set_state(HubState.DISCONNECTED)

    def _on_payload(self, payload: bytes):
        """
        Handle an inbound broadcast payload.

        Runs on the transport's receive thread, so it only decodes and
        updates the registry.
        """
        msg = decode_telemetry(payload)
        if not msg:
            self.invalid_count += 1
            self.logger.debug(f"Ignoring payload of {len(payload)} bytes")
            return

        if not self.registry.ingest_telemetry(msg):
            self.invalid_count += 1
            return

        self.telemetry_count += 1

        for handler in self._telemetry_handlers:
            try:
                handler(msg)
            except Exception as e:
                self.logger.error(f"Telemetry handler error: {e}")

    # -------------------------------------------------------------------------
    # Public API - Initialization
    # -------------------------------------------------------------------------

    def _connect(self) -> bool:
        """Connect the broadcast transport."""
        self._set_state(HubState.CONNECTING)
        if isinstance(self.transport, MeshtasticTransport):
            return self.transport.connect(
                on_connection=self._on_connection,
                on_disconnect=self._on_disconnect,
            )
        return self.transport.connect()

    def initialize(self) -> bool:
        """
        Initialize the hub.

        Returns:
            True if initialization successful.
        """
        self.logger.info("=" * 60)
        self.logger.info("GREENHOUSE HUB INITIALIZING")
        self.logger.info(f"Nodes: 1..{self.config.node_capacity}")
        self.logger.info(f"Private Channel: {self.config.private_channel_index}")
        self.logger.info(f"Private Port: {self.config.private_port_num}")
        if self.store.is_configured:
            self.logger.info(f"Remote store: {self.config.remote.database_url}")
        else:
            self.logger.warning("Remote store not configured, running offline")
        self.logger.info("=" * 60)

        if not self._connect():
            self._set_state(HubState.ERROR)
            return False

        self._set_state(HubState.READY)
        self.logger.info("Hub ready - listening for nodes")
        return True

    # -------------------------------------------------------------------------
    # Public API - Node Control
    # -------------------------------------------------------------------------

    def update_settings(self, node_id: int, fn: Callable[[NodeSettings], Any]) -> bool:
        """
        Change a node's settings locally (UI path), persist and send them.

        Threshold and hysteresis are stored at the node's float32 precision,
        the same as values pulled from the remote store.

        Returns:
            True if a control message was sent to the node.
        """
        def apply(settings: NodeSettings):
            fn(settings)
            settings.temperature_threshold = to_float32(settings.temperature_threshold)
            settings.hysteresis = to_float32(settings.hysteresis)

        self.registry.mutate_settings(node_id, apply)
        self.engine.persist()
        return self.engine.send_control(node_id)

    def send_command(self, node_id: int, command: ManualCommand) -> bool:
        """Send a one-shot manual command to one node."""
        def apply(settings: NodeSettings):
            settings.manual_command = command

        self.registry.mutate_settings(node_id, apply)
        self.logger.info(f"Command {command.remote_name} for node {node_id}")
        return self.engine.send_control(node_id)

    def broadcast_command(self, command: ManualCommand) -> List[int]:
        """Send a manual command to every live node."""
        return self.engine.broadcast_to_all(command)

    def sync_now(self) -> SyncReport:
        """Run one reconciliation cycle immediately."""
        return self.engine.run_cycle()

    # -------------------------------------------------------------------------
    # Public API - Event Handlers
    # -------------------------------------------------------------------------

    def on_telemetry(self, handler: Callable[[TelemetryMessage], None]) -> bool:
        """Register a handler for accepted telemetry."""
        if len(self._telemetry_handlers) >= MAX_EVENT_HANDLERS:
            self.logger.warning("Max telemetry handlers reached")
            return False
        self._telemetry_handlers.append(handler)
        return True

    def on_state_change(self, handler: Callable[[HubState, HubState], None]) -> bool:
        """Register a state change handler."""
        if len(self._state_handlers) >= MAX_EVENT_HANDLERS:
            self.logger.warning("Max state handlers reached")
            return False
        self._state_handlers.append(handler)
        return True

    # -------------------------------------------------------------------------
    # Public API - Node Management
    # -------------------------------------------------------------------------

    def get_nodes(self) -> Dict[int, NodeRecord]:
        """Copies of all node records."""
        return self.registry.get_records()

    def get_node(self, node_id: int) -> Optional[NodeRecord]:
        """Copy of one node record."""
        return self.registry.get_record(node_id)

    def record_history(self, now: float = None) -> int:
        """
        Store the snapshot of every live node not recorded yet.

        Returns:
            Number of snapshots stored.
        """
        stored = 0
        for node_id in self.registry.live_node_ids(now):
            record = self.registry.get_record(node_id)
            if record.sensor.observed_at <= self._last_recorded.get(node_id, float("-inf")):
                continue
            try:
                self.history.record(record.sensor)
            except Exception as e:
                self.logger.error(f"History write failed for node {node_id}: {e}")
                continue
            self._last_recorded[node_id] = record.sensor.observed_at
            stored += 1
        return stored

    def purge_history(self) -> int:
        """Delete history beyond the retention window."""
        cutoff = int(time.time()) - self.config.history_retention_days * 86400
        deleted = self.history.delete_older_than(cutoff)
        if deleted:
            self.logger.info(f"Purged {deleted} history entries")
        return deleted

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the hub and all nodes."""
        records = self.registry.get_records()
        live = self.registry.live_node_ids()
        report = self.engine.last_report

        return {
            "state": self.state.value,
            "node_capacity": self.config.node_capacity,
            "seen_nodes": sum(1 for r in records.values() if r.is_online),
            "live_nodes": len(live),
            "telemetry_received": self.telemetry_count,
            "invalid_payloads": self.invalid_count,
            "control_sent": self.transport.sent_count,
            "control_failures": self.transport.send_failures,
            "sync_cycles": self.engine.cycle_count,
            "remote_configured": self.store.is_configured,
            "last_sync": report.finished_at if report else None,
        }

    # -------------------------------------------------------------------------
    # Public API - Run Loop
    # -------------------------------------------------------------------------

    def run(self, auto_reconnect: bool = True, max_reconnect_attempts: int = 5):
        """
        Run the hub main loop.

        Args:
            auto_reconnect: Enable automatic reconnection on disconnect.
            max_reconnect_attempts: Maximum consecutive reconnect attempts.
        """
        if not self.initialize():
            self.logger.error("Initialization failed")
            return False

        self.running = True

        try:
            self._run_loop(auto_reconnect, max_reconnect_attempts)
        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.shutdown()

        return True

    def _run_loop(self, auto_reconnect: bool, max_reconnect_attempts: int):
        """Internal run loop."""
        last_sync = 0.0
        last_purge = 0.0
        reconnect_attempts = 0
        RECONNECT_DELAY = 5

        while self.running:
            if self.state == HubState.DISCONNECTED:
                if auto_reconnect and reconnect_attempts < max_reconnect_attempts:
                    reconnect_attempts += 1
                    self.logger.info(
                        f"Attempting reconnect ({reconnect_attempts}/{max_reconnect_attempts})..."
                    )
                    time.sleep(RECONNECT_DELAY)

                    if self._connect():
                        self._set_state(HubState.READY)
                        reconnect_attempts = 0
                        self.logger.info("Reconnected successfully")
                    else:
                        self.logger.warning("Reconnect failed")
                else:
                    if reconnect_attempts >= max_reconnect_attempts:
                        self.logger.error("Max reconnect attempts reached")
                    break

            # Remote sync keeps running while the radio is down
            now = time.monotonic()
            if (now - last_sync) >= self.config.sync_interval:
                self.engine.run_cycle()
                self.record_history()
                last_sync = now

            if (now - last_purge) >= HISTORY_PURGE_INTERVAL:
                self.purge_history()
                last_purge = now

            time.sleep(0.5)

    def run_with_api(
        self,
        api_host: str = None,
        api_port: int = None,
        auto_reconnect: bool = True,
        max_reconnect_attempts: int = 5,
    ):
        """
        Run the hub with the REST API server.

        Args:
            api_host: Host to bind API server to (uses config if None).
            api_port: Port for API server (uses config if None).
            auto_reconnect: Enable automatic reconnection.
            max_reconnect_attempts: Maximum reconnect attempts.
        """
        try:
            from .api import create_api, run_api_server
        except ImportError:
            self.logger.error("API module requires fastapi and uvicorn")
            self.logger.error("Install with: pip3 install fastapi uvicorn")
            return False

        import threading

        host = api_host or self.config.api.host
        port = api_port or self.config.api.port

        if not self.initialize():
            self.logger.error("Initialization failed")
            return False

        app = create_api(self)

        def hub_loop():
            self._run_loop(auto_reconnect, max_reconnect_attempts)

        self.running = True
        hub_thread = threading.Thread(target=hub_loop, daemon=True, name="hub-loop")
        hub_thread.start()

        self.logger.info(f"API server starting on http://{host}:{port}")
        self.logger.info(f"API docs available at http://{host}:{port}/api/docs")

        try:
            run_api_server(app, host=host, port=port, log_level="info")
        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.shutdown()

        return True

    def shutdown(self):
        """Shutdown the hub."""
        self.logger.info("Shutting down hub...")
        self.running = False
        self.engine.persist()
        self.transport.close()
        self.store.close()
        self._set_state(HubState.DISCONNECTED)
        self.logger.info("Hub stopped")
