#!/usr/bin/env python3
"""
Hub-Node Broadcast Protocol

This module defines the two fixed-layout binary messages exchanged between
the hub and the greenhouse nodes over the broadcast link.

Protocol Overview:
- Every payload is sent to the broadcast address, there is no unicast
- There are no acknowledgments, a lost message is simply lost
- Receivers filter by node id: nodes drop control messages for other
  targets, the hub drops telemetry with out-of-range ids
- Layouts match the node firmware's naturally aligned C structs,
  little-endian, padding bytes are zero on encode and ignored on decode

Telemetry (node -> hub, 24 bytes):
    Byte 0:      Node ID (uint8)
    Bytes 1-3:   Padding
    Bytes 4-7:   Temperature (float32, Celsius)
    Bytes 8-11:  Humidity (float32, percentage)
    Bytes 12-15: Pressure (float32, hPa)
    Byte 16:     Vent status (uint8, 0:closed 1:opening 2:open 3:closing)
    Bytes 17-19: Padding
    Bytes 20-23: Timestamp (uint32, node uptime or epoch)

Control (hub -> node, 16 bytes):
    Byte 0:      Target node ID (uint8)
    Bytes 1-3:   Padding
    Bytes 4-7:   Temperature threshold (float32)
    Bytes 8-11:  Hysteresis (float32)
    Byte 12:     Auto mode (bool)
    Byte 13:     Manual command (char: 'O' open, 'C' close, 'S' stop, 0 none)
    Bytes 14-15: Padding

A payload whose length is not exactly the expected size is invalid and is
never partially decoded.
"""

import struct
from dataclasses import dataclass
from typing import Optional

from .models import ManualCommand, NodeRecord, SensorSnapshot


# =============================================================================
# Constants
# =============================================================================

# No manual command on the wire
NO_COMMAND = b"\x00"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class TelemetryMessage:
    """Telemetry broadcast by a node."""
    node_id: int = 0
    temperature: float = 0.0
    humidity: float = 0.0
    pressure: float = 0.0
    vent_state: int = 0
    timestamp: int = 0

    STRUCT_FORMAT = "<B3xfffB3xI"
    STRUCT_SIZE = 24

    def encode(self) -> bytes:
        """Encode telemetry to binary."""
        return struct.pack(
            self.STRUCT_FORMAT,
            self.node_id,
            self.temperature,
            self.humidity,
            self.pressure,
            self.vent_state,
            self.timestamp,
        )

    @classmethod
    def decode(cls, data: bytes) -> Optional["TelemetryMessage"]:
        """Decode binary to telemetry, None unless the size matches exactly."""
        if len(data) != cls.STRUCT_SIZE:
            return None

        try:
            (
                node_id,
                temperature,
                humidity,
                pressure,
                vent_state,
                timestamp,
            ) = struct.unpack(cls.STRUCT_FORMAT, data)
        except struct.error:
            return None

        return cls(
            node_id=node_id,
            temperature=temperature,
            humidity=humidity,
            pressure=pressure,
            vent_state=vent_state,
            timestamp=timestamp,
        )

    def to_snapshot(self, observed_at: float) -> SensorSnapshot:
        """Convert to the registry's snapshot type."""
        return SensorSnapshot(
            node_id=self.node_id,
            temperature=self.temperature,
            humidity=self.humidity,
            pressure=self.pressure,
            vent_state=self.vent_state,
            timestamp=self.timestamp,
            observed_at=observed_at,
        )


@dataclass
class ControlMessage:
    """Settings and one-shot command broadcast to a node."""
    target_node_id: int = 0
    temperature_threshold: float = 0.0
    hysteresis: float = 0.0
    auto_mode: bool = True
    manual_command: Optional[ManualCommand] = None

    STRUCT_FORMAT = "<B3xff?c2x"
    STRUCT_SIZE = 16

    def encode(self) -> bytes:
        """Encode control message to binary."""
        command = self.manual_command.value.encode("ascii") if self.manual_command else NO_COMMAND
        return struct.pack(
            self.STRUCT_FORMAT,
            self.target_node_id,
            self.temperature_threshold,
            self.hysteresis,
            self.auto_mode,
            command,
        )

    @classmethod
    def decode(cls, data: bytes) -> Optional["ControlMessage"]:
        """Decode binary to control message (node side, used by simulators)."""
        if len(data) != cls.STRUCT_SIZE:
            return None

        try:
            target, threshold, hysteresis, auto_mode, command = struct.unpack(
                cls.STRUCT_FORMAT, data
            )
            manual = None if command == NO_COMMAND else ManualCommand(command.decode("ascii"))
        except (struct.error, UnicodeDecodeError, ValueError):
            return None

        return cls(
            target_node_id=target,
            temperature_threshold=threshold,
            hysteresis=hysteresis,
            auto_mode=auto_mode,
            manual_command=manual,
        )


# =============================================================================
# Helper Functions
# =============================================================================

def encode_control(node_id: int, record: NodeRecord) -> bytes:
    """Build the control message for a node from its registry record."""
    settings = record.settings
    msg = ControlMessage(
        target_node_id=node_id,
        temperature_threshold=settings.temperature_threshold,
        hysteresis=settings.hysteresis,
        auto_mode=settings.auto_mode,
        manual_command=settings.manual_command,
    )
    return msg.encode()


def decode_telemetry(data: bytes) -> Optional[TelemetryMessage]:
    """Decode an inbound payload, None if it is not a telemetry message."""
    if not data:
        return None
    return TelemetryMessage.decode(bytes(data))


def to_float32(value: float) -> float:
    """Round a value to the float32 the node stores."""
    return struct.unpack("<f", struct.pack("<f", value))[0]
