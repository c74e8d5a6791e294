#!/usr/bin/env python3
"""
REST API tests using FastAPI's TestClient.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import telemetry
from greenhouse_hub.api import create_api
from greenhouse_hub.controller import HubController
from greenhouse_hub.models import ManualCommand
from greenhouse_hub.protocol import ControlMessage


@pytest.fixture
def hub(hub_config, transport, store, clock):
    return HubController(
        hub_config,
        transport=transport,
        store=store,
        clock=clock,
        setup_logging=False,
    )


@pytest.fixture
def client(hub):
    return TestClient(create_api(hub))


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["radio_connected"] is False


def test_status(client, transport):
    transport.deliver(telemetry(1).encode())

    data = client.get("/api/status").json()

    assert data["state"] == "disconnected"
    assert data["live_nodes"] == 1
    assert data["node_capacity"] == 6


def test_list_nodes(client, transport, clock):
    transport.deliver(telemetry(2, vent_state=2).encode())

    data = client.get("/api/nodes").json()

    assert data["total"] == 6
    assert data["live_count"] == 1
    node = data["nodes"][1]
    assert node["node_id"] == 2
    assert node["live"] is True
    assert node["sensor"]["vent_status"] == "open"
    assert data["nodes"][0]["sensor"] is None

    live = client.get("/api/nodes", params={"live_only": True}).json()
    assert [n["node_id"] for n in live["nodes"]] == [2]


def test_get_unknown_node(client):
    assert client.get("/api/nodes/0").status_code == 404
    assert client.get("/api/nodes/7").status_code == 404


def test_patch_settings(client, hub, transport):
    transport.deliver(telemetry(3).encode())

    response = client.patch(
        "/api/nodes/3/settings",
        json={"temperature_threshold": 29.0, "auto_mode": False},
    )

    assert response.status_code == 200
    settings = response.json()["settings"]
    assert settings["temperature_threshold"] == 29.0
    assert settings["mode"] == "manual"
    assert settings["hysteresis"] == 0.5
    msg = ControlMessage.decode(transport.sent[0])
    assert msg.target_node_id == 3
    assert msg.auto_mode is False


def test_patch_settings_rejects_out_of_range(client, transport):
    assert client.patch("/api/nodes/1/settings", json={"temperature_threshold": 80}).status_code == 422
    assert client.patch("/api/nodes/1/settings", json={"hysteresis": -1}).status_code == 422
    assert client.patch(
        "/api/nodes/1/settings",
        json={"schedule": {"open_hour": 25, "open_minute": 0, "close_hour": 18, "close_minute": 0, "enabled": True}},
    ).status_code == 422
    assert transport.sent == []


def test_command_node(client, hub, transport):
    transport.deliver(telemetry(1).encode())

    response = client.post("/api/nodes/1/command", json={"command": "open"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert ControlMessage.decode(transport.sent[0]).manual_command is ManualCommand.OPEN


def test_command_requires_live_node(client, transport):
    assert client.post("/api/nodes/2/command", json={"command": "open"}).status_code == 409
    assert transport.sent == []


def test_invalid_command(client, transport):
    transport.deliver(telemetry(1).encode())

    assert client.post("/api/nodes/1/command", json={"command": "spin"}).status_code == 400


def test_command_all(client, transport):
    transport.deliver(telemetry(1).encode())
    transport.deliver(telemetry(4).encode())

    data = client.post("/api/nodes/command", json={"command": "close"}).json()

    assert data["node_ids"] == [1, 4]
    assert len(transport.sent) == 2


def test_sync(client, store, transport):
    transport.deliver(telemetry(1).encode())
    store.docs["greenhouses/1/settings"] = {"mode": "manual"}

    data = client.post("/api/sync").json()

    assert data["skipped"] is False
    assert data["pushed"] == [1]
    assert data["dirty"] == [1]


def test_history(client, hub, transport):
    transport.deliver(telemetry(1, temperature=21.0).encode())
    hub.record_history()

    data = client.get("/api/nodes/1/history").json()

    assert len(data) == 1
    assert data[0]["temperature"] == 21.0
    assert data[0]["vent_status"] == "closed"


def test_ui_edit_does_not_bounce_back_from_remote(client, hub, transport):
    transport.deliver(telemetry(1).encode())

    client.patch("/api/nodes/1/settings", json={"temperature_threshold": 25.3, "hysteresis": 0.3})
    for _ in range(3):
        hub.sync_now()

    assert len(transport.sent) == 1
    assert hub.engine.last_report.dirty == []
