#!/usr/bin/env python3
"""
Data Models for the Greenhouse Hub

This module contains the data classes, enums and configuration used by the
hub, the node registry and the reconciliation engine.
"""

import math
import yaml
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, Optional

from .exceptions import ConfigurationError


# =============================================================================
# Constants (NASA Rule 2: Fixed bounds for all limits)
# =============================================================================

# Private application port number used by the node firmware
PRIVATE_PORT_NUM = 485

# Default number of greenhouse node slots
DEFAULT_NODE_CAPACITY = 6

# Node ids are a single byte on the wire, 0 and 255 are reserved
MAX_NODES = 254

# A node is stale when not heard from for this long (seconds)
DEFAULT_STALE_TIMEOUT = 300.0

# Reconciliation cycle period (seconds)
DEFAULT_SYNC_INTERVAL = 5.0

# Remote store request timeout (seconds)
DEFAULT_REMOTE_TIMEOUT = 5.0

# Maximum handlers per event type (NASA Rule 2: bounded collections)
MAX_EVENT_HANDLERS = 32

# Settings ranges and the defaults used when stored values fall outside them
TEMPERATURE_THRESHOLD_RANGE = (0.0, 50.0)
HYSTERESIS_RANGE = (0.0, 5.0)
DEFAULT_TEMPERATURE_THRESHOLD = 25.0
DEFAULT_HYSTERESIS = 0.5


# =============================================================================
# Enums
# =============================================================================

class HubState(Enum):
    """Hub controller states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    ERROR = "error"


class VentState(IntEnum):
    """Vent actuator state reported by a node."""
    CLOSED = 0
    OPENING = 1
    OPEN = 2
    CLOSING = 3


class ManualCommand(Enum):
    """One-shot vent command. The value is the byte the node firmware expects."""
    OPEN = "O"
    CLOSE = "C"
    STOP = "S"

    @property
    def remote_name(self) -> str:
        """Name used in the remote store ("open", "close", "stop")."""
        return self.name.lower()

    @classmethod
    def from_remote(cls, value) -> Optional["ManualCommand"]:
        """Map a remote store string to a command, None if unrecognized."""
        if not isinstance(value, str):
            return None
        for command in cls:
            if command.remote_name == value:
                return command
        return None


def in_range(value: float, bounds) -> bool:
    """True if value is finite and within the inclusive bounds."""
    low, high = bounds
    return math.isfinite(value) and low <= value <= high


def vent_state_name(value: int) -> str:
    """Remote store name for a raw vent state value."""
    try:
        return VentState(value).name.lower()
    except ValueError:
        return "unknown"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class SensorSnapshot:
    """Latest telemetry of a node, replaced wholesale on every valid message."""
    node_id: int = 0
    temperature: float = 0.0  # Celsius
    humidity: float = 0.0  # Percentage
    pressure: float = 0.0  # hPa
    vent_state: int = VentState.CLOSED
    timestamp: int = 0  # Node supplied (uint32)
    observed_at: float = 0.0  # Hub monotonic time of reception


@dataclass
class ScheduleSettings:
    """Daily vent schedule."""
    open_hour: int = 8
    open_minute: int = 0
    close_hour: int = 18
    close_minute: int = 0
    enabled: bool = False


@dataclass
class NodeSettings:
    """Operational settings of one greenhouse node."""
    temperature_threshold: float = DEFAULT_TEMPERATURE_THRESHOLD
    hysteresis: float = DEFAULT_HYSTERESIS
    auto_mode: bool = True
    # One-shot: reset to None as soon as a control message carried it
    manual_command: Optional[ManualCommand] = None
    schedule: ScheduleSettings = field(default_factory=ScheduleSettings)


@dataclass
class NodeRecord:
    """
    Registry entry for one node slot.

    ``is_online`` is sticky: it only means the node has been seen at least
    once. Liveness additionally requires ``last_seen`` to be recent, see
    ``NodeRegistry.is_live``.
    """
    sensor: SensorSnapshot
    settings: NodeSettings = field(default_factory=NodeSettings)
    is_online: bool = False
    last_seen: float = 0.0


@dataclass
class RemoteConfig:
    """Remote store (Firebase Realtime Database) configuration."""
    database_url: str = ""
    auth_token: str = ""
    timeout_seconds: float = DEFAULT_REMOTE_TIMEOUT


@dataclass
class ApiConfig:
    """API server configuration."""
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class HubConfig:
    """Configuration for the greenhouse hub."""
    # Radio device settings
    device_port: str = ""
    device_timeout: int = 30

    # Channel settings
    private_channel_index: int = 1

    # Protocol settings
    private_port_num: int = PRIVATE_PORT_NUM

    # Node management
    node_capacity: int = DEFAULT_NODE_CAPACITY
    stale_timeout: float = DEFAULT_STALE_TIMEOUT

    # Reconciliation
    sync_interval: float = DEFAULT_SYNC_INTERVAL
    remote: RemoteConfig = field(default_factory=RemoteConfig)

    # Local storage
    settings_path: str = "hub_settings.bin"
    history_db: str = "hub_history.db"
    history_retention_days: int = 7

    # API settings
    api: ApiConfig = field(default_factory=ApiConfig)

    # Logging
    log_level: str = "INFO"
    log_file: str = "hub.log"

    def __post_init__(self):
        if not 1 <= self.node_capacity <= MAX_NODES:
            raise ConfigurationError(
                f"nodes.capacity must be within 1..{MAX_NODES}, got {self.node_capacity}"
            )
        if self.stale_timeout <= 0:
            raise ConfigurationError("nodes.stale_timeout must be positive")
        if self.sync_interval <= 0:
            raise ConfigurationError("sync.interval_seconds must be positive")

    @classmethod
    def from_yaml(cls, path: str) -> "HubConfig":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"{path}: top level must be a mapping")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict) -> "HubConfig":
        """Build configuration from a nested dictionary (YAML layout)."""
        remote = data.get("remote", {})
        storage = data.get("storage", {})
        api_data = data.get("api", {})

        return cls(
            device_port=data.get("device", {}).get("port", ""),
            device_timeout=data.get("device", {}).get("timeout", 30),
            private_channel_index=data.get("channel", {}).get("private_channel_index", 1),
            private_port_num=data.get("protocol", {}).get("port_num", PRIVATE_PORT_NUM),
            node_capacity=data.get("nodes", {}).get("capacity", DEFAULT_NODE_CAPACITY),
            stale_timeout=data.get("nodes", {}).get("stale_timeout", DEFAULT_STALE_TIMEOUT),
            sync_interval=data.get("sync", {}).get("interval_seconds", DEFAULT_SYNC_INTERVAL),
            remote=RemoteConfig(
                database_url=remote.get("database_url", ""),
                auth_token=remote.get("auth_token", ""),
                timeout_seconds=remote.get("timeout_seconds", DEFAULT_REMOTE_TIMEOUT),
            ),
            settings_path=storage.get("settings_path", "hub_settings.bin"),
            history_db=storage.get("history_db", "hub_history.db"),
            history_retention_days=storage.get("history_retention_days", 7),
            api=ApiConfig(
                enabled=api_data.get("enabled", False),
                host=api_data.get("host", "0.0.0.0"),
                port=api_data.get("port", 8080),
            ),
            log_level=data.get("logging", {}).get("level", "INFO"),
            log_file=data.get("logging", {}).get("file", "hub.log"),
        )

    def to_dict(self) -> Dict:
        """Convert config to dictionary."""
        return {
            "device": {
                "port": self.device_port,
                "timeout": self.device_timeout,
            },
            "channel": {
                "private_channel_index": self.private_channel_index,
            },
            "protocol": {
                "port_num": self.private_port_num,
            },
            "nodes": {
                "capacity": self.node_capacity,
                "stale_timeout": self.stale_timeout,
            },
            "sync": {
                "interval_seconds": self.sync_interval,
            },
            "remote": {
                "database_url": self.remote.database_url,
                "auth_token": self.remote.auth_token,
                "timeout_seconds": self.remote.timeout_seconds,
            },
            "storage": {
                "settings_path": self.settings_path,
                "history_db": self.history_db,
                "history_retention_days": self.history_retention_days,
            },
            "api": {
                "enabled": self.api.enabled,
                "host": self.api.host,
                "port": self.api.port,
            },
            "logging": {
                "level": self.log_level,
                "file": self.log_file,
            },
        }
