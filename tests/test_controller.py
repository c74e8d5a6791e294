#!/usr/bin/env python3
"""
Hub controller tests

Wiring of transport, registry, settings store and history, with the radio
and the remote store replaced by fakes.
"""

import pytest

from conftest import FakeStore, FakeTransport, telemetry
from greenhouse_hub.controller import HubController
from greenhouse_hub.models import HubState, ManualCommand, NodeSettings
from greenhouse_hub.protocol import ControlMessage, to_float32
from greenhouse_hub.settings_store import SettingsStore


@pytest.fixture
def hub(hub_config, transport, store, clock):
    return HubController(
        hub_config,
        transport=transport,
        store=store,
        clock=clock,
        setup_logging=False,
    )


# =============================================================================
# Ingestion
# =============================================================================

def test_payload_updates_registry(hub, transport):
    received = []
    hub.on_telemetry(received.append)

    transport.deliver(telemetry(2, temperature=19.5).encode())

    assert hub.telemetry_count == 1
    assert hub.get_node(2).sensor.temperature == 19.5
    assert hub.registry.is_live(2)
    assert [msg.node_id for msg in received] == [2]


def test_bad_payloads_are_counted(hub, transport):
    transport.deliver(b"\x01\x02\x03")
    transport.deliver(telemetry(9).encode())

    assert hub.invalid_count == 2
    assert hub.telemetry_count == 0
    assert hub.registry.live_node_ids() == []


def test_handler_error_does_not_break_ingestion(hub, transport):
    def broken(msg):
        raise RuntimeError("boom")

    hub.on_telemetry(broken)
    transport.deliver(telemetry(1).encode())

    assert hub.registry.is_live(1)


# =============================================================================
# Lifecycle
# =============================================================================

def test_initialize_sets_ready(hub):
    changes = []
    hub.on_state_change(lambda old, new: changes.append(new))

    assert hub.initialize()
    assert hub.state == HubState.READY
    assert changes == [HubState.CONNECTING, HubState.READY]


def test_settings_restored_on_startup(hub_config, transport, store, clock):
    SettingsStore(hub_config.settings_path, hub_config.node_capacity).save_all(
        {3: NodeSettings(temperature_threshold=31.0, manual_command=ManualCommand.OPEN)}
    )

    hub = HubController(hub_config, transport=transport, store=store, clock=clock, setup_logging=False)

    assert hub.get_node(3).settings.temperature_threshold == 31.0
    assert hub.get_node(3).settings.manual_command is None


def test_shutdown_persists_and_closes(hub, transport, store, hub_config):
    hub.registry.mutate_settings(1, lambda s: setattr(s, "hysteresis", 4.0))

    hub.shutdown()

    assert transport.closed
    assert store.closed
    assert hub.state == HubState.DISCONNECTED
    saved = SettingsStore(hub_config.settings_path, hub_config.node_capacity).load_all()
    assert saved[1].hysteresis == 4.0


# =============================================================================
# Node control
# =============================================================================

def test_update_settings_persists_and_sends(hub, transport, hub_config):
    transport.deliver(telemetry(1).encode())

    assert hub.update_settings(1, lambda s: setattr(s, "temperature_threshold", 27.0))

    (payload,) = transport.sent
    assert ControlMessage.decode(payload).temperature_threshold == 27.0
    saved = SettingsStore(hub_config.settings_path, hub_config.node_capacity).load_all()
    assert saved[1].temperature_threshold == 27.0


def test_send_command(hub, transport):
    transport.deliver(telemetry(4).encode())

    assert hub.send_command(4, ManualCommand.STOP)
    assert ControlMessage.decode(transport.sent[0]).manual_command is ManualCommand.STOP
    assert hub.get_node(4).settings.manual_command is None


def test_broadcast_command(hub, transport, store):
    transport.deliver(telemetry(1).encode())
    transport.deliver(telemetry(5).encode())

    assert hub.broadcast_command(ManualCommand.CLOSE) == [1, 5]
    assert store.docs["system/lastControlAll"]["action"] == "close"


# =============================================================================
# History and stats
# =============================================================================

def test_record_history_once_per_snapshot(hub, transport, clock):
    transport.deliver(telemetry(1).encode())
    transport.deliver(telemetry(2).encode())

    assert hub.record_history() == 2
    assert hub.record_history() == 0

    clock.advance(5)
    transport.deliver(telemetry(1, temperature=23.0).encode())

    assert hub.record_history() == 1
    assert hub.history.get_count(1) == 2
    assert hub.history.get_latest(1)[0].temperature == 23.0


def test_stats(hub, transport):
    transport.deliver(telemetry(1).encode())
    hub.sync_now()

    stats = hub.get_stats()

    assert stats["node_capacity"] == 6
    assert stats["seen_nodes"] == 1
    assert stats["live_nodes"] == 1
    assert stats["telemetry_received"] == 1
    assert stats["sync_cycles"] == 1
    assert stats["remote_configured"] is True
    assert stats["last_sync"] is not None


def test_default_remote_store_from_config(hub_config, clock):
    hub_config.remote.database_url = "https://demo.firebaseio.com"

    hub = HubController(hub_config, transport=FakeTransport(), clock=clock, setup_logging=False)

    assert hub.store.is_configured
    assert hub.store.database_url == "https://demo.firebaseio.com"
    hub.store.close()


def test_fake_store_used_when_given(hub_config, clock):
    store = FakeStore(configured=False)
    hub = HubController(hub_config, transport=FakeTransport(), store=store, clock=clock, setup_logging=False)

    assert hub.sync_now().skipped


def test_purge_history(hub, transport):
    transport.deliver(telemetry(1).encode())
    hub.history.record(hub.get_node(1).sensor, recorded_at=1000)
    hub.record_history()

    assert hub.purge_history() == 1
    assert hub.history.get_count() == 1


def test_update_settings_rounds_to_float32(hub):
    hub.update_settings(2, lambda s: setattr(s, "temperature_threshold", 25.3))

    threshold = hub.get_node(2).settings.temperature_threshold
    assert threshold == to_float32(25.3)
    assert threshold != 25.3


def test_run_with_api_serves_app(hub, monkeypatch):
    served = {}

    def fake_server(app, host, port, log_level):
        served.update(app=app, host=host, port=port)

    monkeypatch.setattr("greenhouse_hub.api.run_api_server", fake_server)

    assert hub.run_with_api(api_host="127.0.0.1", api_port=9000)
    assert served["host"] == "127.0.0.1"
    assert served["port"] == 9000
    assert served["app"].state.hub is hub
    assert hub.state == HubState.DISCONNECTED
