#!/usr/bin/env python3
"""
Durable Settings Store

Persists one NodeSettings record per node slot in a fixed-size binary image,
the same layout the hub firmware kept in EEPROM, so settings survive power
loss. Slot index = node_id - 1.

Slot Format (16 bytes, little-endian):
    Bytes 0-3:   Temperature threshold (float32)
    Bytes 4-7:   Hysteresis (float32)
    Byte 8:      Auto mode (bool)
    Byte 9:      Manual command (char, never restored)
    Byte 10:     Schedule open hour (uint8)
    Byte 11:     Schedule open minute (uint8)
    Byte 12:     Schedule close hour (uint8)
    Byte 13:     Schedule close minute (uint8)
    Byte 14:     Schedule enabled (bool)
    Byte 15:     Padding

A fresh or damaged image holds arbitrary bytes, so every slot is validated on
load and out-of-range values are replaced with defaults.
"""

import logging
import os
import struct
import tempfile
from typing import Dict

from .models import (
    DEFAULT_HYSTERESIS,
    DEFAULT_NODE_CAPACITY,
    DEFAULT_TEMPERATURE_THRESHOLD,
    HYSTERESIS_RANGE,
    TEMPERATURE_THRESHOLD_RANGE,
    NodeSettings,
    ScheduleSettings,
    in_range,
)


# =============================================================================
# Constants
# =============================================================================

SLOT_FORMAT = "<ff?c4B?x"
SLOT_SIZE = struct.calcsize(SLOT_FORMAT)

# Value of an erased flash/EEPROM byte
ERASED_BYTE = b"\xff"


# =============================================================================
# Settings Store
# =============================================================================

class SettingsStore:
    """Fixed-slot binary settings image on disk."""

    def __init__(self, path: str, capacity: int = DEFAULT_NODE_CAPACITY):
        """
        Initialize the store.

        Args:
            path: Image file path.
            capacity: Number of slots (N).
        """
        self.path = path
        self.capacity = capacity
        self.logger = logging.getLogger("SettingsStore")

    @property
    def image_size(self) -> int:
        return self.capacity * SLOT_SIZE

    # -------------------------------------------------------------------------
    # Slot codec
    # -------------------------------------------------------------------------

    @staticmethod
    def encode_slot(settings: NodeSettings) -> bytes:
        """Serialize one settings record."""
        schedule = settings.schedule
        command = settings.manual_command.value.encode("ascii") if settings.manual_command else b"\x00"
        return struct.pack(
            SLOT_FORMAT,
            settings.temperature_threshold,
            settings.hysteresis,
            settings.auto_mode,
            command,
            schedule.open_hour,
            schedule.open_minute,
            schedule.close_hour,
            schedule.close_minute,
            schedule.enabled,
        )

    @staticmethod
    def decode_slot(data: bytes) -> NodeSettings:
        """Deserialize and validate one slot."""
        (
            threshold,
            hysteresis,
            auto_mode,
            _command,
            open_hour,
            open_minute,
            close_hour,
            close_minute,
            schedule_enabled,
        ) = struct.unpack(SLOT_FORMAT, data)

        if not in_range(threshold, TEMPERATURE_THRESHOLD_RANGE):
            threshold = DEFAULT_TEMPERATURE_THRESHOLD

        if not in_range(hysteresis, HYSTERESIS_RANGE):
            hysteresis = DEFAULT_HYSTERESIS

        if open_hour <= 23 and close_hour <= 23 and open_minute <= 59 and close_minute <= 59:
            schedule = ScheduleSettings(
                open_hour=open_hour,
                open_minute=open_minute,
                close_hour=close_hour,
                close_minute=close_minute,
                enabled=schedule_enabled,
            )
        else:
            schedule = ScheduleSettings()

        # The one-shot command is never restored
        return NodeSettings(
            temperature_threshold=threshold,
            hysteresis=hysteresis,
            auto_mode=auto_mode,
            manual_command=None,
            schedule=schedule,
        )

    # -------------------------------------------------------------------------
    # Load / Save
    # -------------------------------------------------------------------------

    def load_all(self) -> Dict[int, NodeSettings]:
        """
        Load every slot.

        A missing or truncated image is padded with erased bytes, which then
        fail validation and come back as defaults.

        Returns:
            Settings keyed by node id (1..capacity).
        """
        try:
            with open(self.path, "rb") as f:
                image = f.read(self.image_size)
        except FileNotFoundError:
            self.logger.info(f"No settings image at {self.path}, using defaults")
            image = b""
        except OSError as e:
            self.logger.error(f"Cannot read settings image {self.path}: {e}")
            image = b""

        if len(image) < self.image_size:
            image += ERASED_BYTE * (self.image_size - len(image))

        settings = {}
        for slot in range(self.capacity):
            offset = slot * SLOT_SIZE
            settings[slot + 1] = self.decode_slot(image[offset : offset + SLOT_SIZE])

        return settings

    def save_all(self, settings: Dict[int, NodeSettings]) -> bool:
        """
        Write every slot and commit the image in a single atomic replace.

        Slots without an entry in ``settings`` are written with defaults.

        Returns:
            True if the image was committed.
        """
        image = b"".join(
            self.encode_slot(settings.get(slot + 1) or NodeSettings())
            for slot in range(self.capacity)
        )

        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".settings-", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(image)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                os.unlink(tmp_path)
                raise
        except OSError as e:
            self.logger.error(f"Failed to save settings to {self.path}: {e}")
            return False

        self.logger.debug(f"Settings saved ({self.capacity} slots)")
        return True
