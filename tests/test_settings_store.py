#!/usr/bin/env python3
"""
Settings store tests

Fixed-slot binary image: layout, validation on load and atomic save.
"""

import struct

from greenhouse_hub.models import ManualCommand, NodeSettings, ScheduleSettings
from greenhouse_hub.settings_store import SLOT_FORMAT, SLOT_SIZE, SettingsStore


def write_slot(path, slots):
    with open(path, "wb") as f:
        for values in slots:
            f.write(struct.pack(SLOT_FORMAT, *values))


def test_slot_size():
    assert SLOT_SIZE == 16


def test_missing_file_gives_defaults(settings_store):
    settings = settings_store.load_all()

    assert sorted(settings) == [1, 2, 3, 4, 5, 6]
    for node_settings in settings.values():
        assert node_settings.temperature_threshold == 25.0
        assert node_settings.hysteresis == 0.5
        assert node_settings.manual_command is None
        assert node_settings.schedule == ScheduleSettings()


def test_save_and_load(settings_store):
    settings = {node_id: NodeSettings() for node_id in range(1, 7)}
    settings[3] = NodeSettings(
        temperature_threshold=30.5,
        hysteresis=1.5,
        auto_mode=False,
        schedule=ScheduleSettings(open_hour=6, open_minute=30, close_hour=20, close_minute=15, enabled=True),
    )

    assert settings_store.save_all(settings)
    loaded = settings_store.load_all()

    assert loaded[3].temperature_threshold == 30.5
    assert loaded[3].hysteresis == 1.5
    assert loaded[3].auto_mode is False
    assert loaded[3].schedule.open_hour == 6
    assert loaded[3].schedule.close_minute == 15
    assert loaded[3].schedule.enabled is True
    assert loaded[1] == NodeSettings()


def test_manual_command_never_restored(settings_store):
    settings = {1: NodeSettings(manual_command=ManualCommand.OPEN)}

    settings_store.save_all(settings)

    assert settings_store.load_all()[1].manual_command is None


def test_invalid_values_replaced_with_defaults(settings_store):
    write_slot(settings_store.path, [
        (float("nan"), -1.0, True, b"\x00", 8, 0, 18, 0, False),
        (999.0, 9.0, False, b"\x00", 30, 0, 18, 0, True),
        (20.0, 1.0, True, b"O", 7, 45, 19, 30, True),
    ])

    loaded = settings_store.load_all()

    assert loaded[1].temperature_threshold == 25.0
    assert loaded[1].hysteresis == 0.5
    assert loaded[2].temperature_threshold == 25.0
    assert loaded[2].hysteresis == 0.5
    assert loaded[2].schedule == ScheduleSettings()
    assert loaded[3].temperature_threshold == 20.0
    assert loaded[3].schedule.open_minute == 45
    assert loaded[3].manual_command is None
    # Truncated image: remaining slots fall back to defaults
    assert loaded[6].temperature_threshold == 25.0
    assert loaded[6].schedule == ScheduleSettings()


def test_save_is_a_full_image(settings_store):
    settings_store.save_all({2: NodeSettings(hysteresis=3.0)})

    with open(settings_store.path, "rb") as f:
        image = f.read()

    assert len(image) == 6 * SLOT_SIZE


def test_save_failure_returns_false(tmp_path):
    store = SettingsStore(str(tmp_path / "missing" / "settings.bin"), capacity=2)

    assert not store.save_all({1: NodeSettings()})
