#!/usr/bin/env python3
"""
Wire format tests

Telemetry (24 bytes) and control (16 bytes) layouts must match the node
firmware byte for byte, including padding.
"""

import math
import struct

from greenhouse_hub.models import ManualCommand, NodeRecord, NodeSettings, SensorSnapshot
from greenhouse_hub.protocol import (
    ControlMessage,
    TelemetryMessage,
    decode_telemetry,
    encode_control,
    to_float32,
)


# =============================================================================
# Telemetry
# =============================================================================

def test_telemetry_layout():
    data = TelemetryMessage(
        node_id=3, temperature=21.5, humidity=40.0, pressure=1000.0,
        vent_state=2, timestamp=0x01020304,
    ).encode()

    assert len(data) == 24
    assert data[0] == 3
    assert data[1:4] == b"\x00\x00\x00"
    assert struct.unpack("<f", data[4:8])[0] == 21.5
    assert struct.unpack("<f", data[8:12])[0] == 40.0
    assert struct.unpack("<f", data[12:16])[0] == 1000.0
    assert data[16] == 2
    assert data[17:20] == b"\x00\x00\x00"
    assert data[20:24] == b"\x04\x03\x02\x01"


def test_decode_telemetry_from_raw_bytes():
    raw = struct.pack("<B3xfffB3xI", 5, 30.25, 61.5, 990.0, 1, 4242)
    msg = decode_telemetry(raw)

    assert msg.node_id == 5
    assert msg.temperature == 30.25
    assert msg.humidity == 61.5
    assert msg.pressure == 990.0
    assert msg.vent_state == 1
    assert msg.timestamp == 4242


def test_decode_telemetry_rejects_wrong_length():
    raw = TelemetryMessage(node_id=1).encode()

    assert decode_telemetry(b"") is None
    assert decode_telemetry(raw[:-1]) is None
    assert decode_telemetry(raw + b"\x00") is None
    assert decode_telemetry(b"\x00" * 16) is None


def test_decode_telemetry_keeps_nan():
    raw = struct.pack("<B3xfffB3xI", 1, float("nan"), 50.0, 1000.0, 0, 1)
    msg = decode_telemetry(raw)

    assert math.isnan(msg.temperature)


def test_to_snapshot_carries_observed_at():
    snapshot = TelemetryMessage(node_id=2, temperature=18.0, timestamp=9).to_snapshot(observed_at=12.5)

    assert snapshot.node_id == 2
    assert snapshot.temperature == 18.0
    assert snapshot.timestamp == 9
    assert snapshot.observed_at == 12.5


# =============================================================================
# Control
# =============================================================================

def test_control_layout_with_command():
    data = ControlMessage(
        target_node_id=4,
        temperature_threshold=27.5,
        hysteresis=1.0,
        auto_mode=False,
        manual_command=ManualCommand.OPEN,
    ).encode()

    assert len(data) == 16
    assert data[0] == 4
    assert data[1:4] == b"\x00\x00\x00"
    assert struct.unpack("<f", data[4:8])[0] == 27.5
    assert struct.unpack("<f", data[8:12])[0] == 1.0
    assert data[12] == 0
    assert data[13:14] == b"O"
    assert data[14:16] == b"\x00\x00"


def test_control_without_command_sends_nul():
    data = ControlMessage(target_node_id=1, auto_mode=True).encode()

    assert data[12] == 1
    assert data[13] == 0


def test_command_bytes():
    assert ManualCommand.OPEN.value == "O"
    assert ManualCommand.CLOSE.value == "C"
    assert ManualCommand.STOP.value == "S"


def test_control_decode():
    data = ControlMessage(
        target_node_id=6, temperature_threshold=20.0, hysteresis=0.5,
        auto_mode=True, manual_command=ManualCommand.STOP,
    ).encode()
    msg = ControlMessage.decode(data)

    assert msg.target_node_id == 6
    assert msg.manual_command is ManualCommand.STOP
    assert ControlMessage.decode(data[:15]) is None
    assert ControlMessage.decode(data[:13] + b"X" + data[14:]) is None


def test_encode_control_from_record():
    settings = NodeSettings(
        temperature_threshold=26.0, hysteresis=0.75, auto_mode=False,
        manual_command=ManualCommand.CLOSE,
    )
    record = NodeRecord(sensor=SensorSnapshot(node_id=2), settings=settings)
    msg = ControlMessage.decode(encode_control(2, record))

    assert msg.target_node_id == 2
    assert msg.temperature_threshold == 26.0
    assert msg.hysteresis == 0.75
    assert msg.auto_mode is False
    assert msg.manual_command is ManualCommand.CLOSE


def test_to_float32():
    assert to_float32(25.0) == 25.0
    assert to_float32(0.1) != 0.1
    assert to_float32(0.1) == struct.unpack("<f", struct.pack("<f", 0.1))[0]
