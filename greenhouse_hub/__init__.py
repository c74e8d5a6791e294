"""
Greenhouse Hub

Bridge between greenhouse nodes on a broadcast radio link and a remote
document store. The hub collects node telemetry, mirrors it to the store,
pulls settings and manual commands edited remotely and sends them back to the
nodes as control messages.

Architecture:
    Remote store (Firebase Realtime Database)
        │
        ├── HTTPS
        ▼
    Hub (this module)
        │
        ├── USB/Serial
        ▼
    Meshtastic radio (connected to PC)
        │
        ├── Private Channel (RF broadcast, port 485)
        ▼
    Greenhouse Nodes
        - Broadcast telemetry (24 bytes): temperature, humidity, pressure, vent state
        - Receive control messages (16 bytes): threshold, hysteresis, mode, command

Data Flow:
    Nodes → Hub:          Telemetry, kept as the latest snapshot per node
    Hub → Remote store:   currentData and the settings mirror of live nodes
    Remote store → Hub:   temperatureThreshold, hysteresis, mode, manualControl
    Hub → Nodes:          Control message whenever settings change

Usage:
    from greenhouse_hub import HubController, HubConfig, ManualCommand

    config = HubConfig.from_yaml("config.yaml")
    hub = HubController(config)

    hub.on_telemetry(lambda msg: print(f"{msg.node_id}: {msg.temperature:.1f}C"))

    hub.initialize()
    hub.broadcast_command(ManualCommand.OPEN)

    # Run main loop (reconciliation every sync interval)
    hub.run()
"""

from .controller import HubController
from .exceptions import ConfigurationError, GreenhouseHubError, RemoteStoreError
from .models import (
    PRIVATE_PORT_NUM,
    HubConfig,
    HubState,
    ManualCommand,
    NodeRecord,
    NodeSettings,
    ScheduleSettings,
    SensorSnapshot,
    VentState,
)
from .protocol import ControlMessage, TelemetryMessage, decode_telemetry, encode_control
from .registry import NodeRegistry
from .sync import ReconciliationEngine, SyncReport

__version__ = "1.0.0"
__all__ = [
    # Hub
    "HubController",
    "HubConfig",
    "HubState",
    "NodeRegistry",
    "ReconciliationEngine",
    "SyncReport",
    # Records
    "NodeRecord",
    "NodeSettings",
    "ScheduleSettings",
    "SensorSnapshot",
    "VentState",
    "ManualCommand",
    # Protocol
    "PRIVATE_PORT_NUM",
    "TelemetryMessage",
    "ControlMessage",
    "decode_telemetry",
    "encode_control",
    # Errors
    "GreenhouseHubError",
    "ConfigurationError",
    "RemoteStoreError",
]
