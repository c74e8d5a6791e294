#!/usr/bin/env python3
"""
Configuration loading tests
"""

import pytest

from greenhouse_hub.exceptions import ConfigurationError
from greenhouse_hub.models import HubConfig


def test_defaults():
    config = HubConfig()

    assert config.node_capacity == 6
    assert config.stale_timeout == 300.0
    assert config.sync_interval == 5.0
    assert config.private_port_num == 485
    assert config.remote.database_url == ""


def test_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "nodes:\n"
        "  capacity: 4\n"
        "  stale_timeout: 120\n"
        "sync:\n"
        "  interval_seconds: 10\n"
        "remote:\n"
        "  database_url: https://demo.firebaseio.com\n"
        "  auth_token: abc\n"
        "api:\n"
        "  port: 9000\n"
    )

    config = HubConfig.from_yaml(str(path))

    assert config.node_capacity == 4
    assert config.stale_timeout == 120
    assert config.sync_interval == 10
    assert config.remote.database_url == "https://demo.firebaseio.com"
    assert config.remote.auth_token == "abc"
    assert config.api.port == 9000
    assert config.api.host == "0.0.0.0"


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")

    assert HubConfig.from_yaml(str(path)) == HubConfig()


def test_round_trip_through_dict():
    config = HubConfig(node_capacity=3, sync_interval=2.0)

    assert HubConfig.from_dict(config.to_dict()) == config


@pytest.mark.parametrize("data", [
    {"nodes": {"capacity": 0}},
    {"nodes": {"capacity": 255}},
    {"nodes": {"stale_timeout": 0}},
    {"sync": {"interval_seconds": -1}},
])
def test_invalid_values(data):
    with pytest.raises(ConfigurationError):
        HubConfig.from_dict(data)


def test_top_level_must_be_mapping(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ConfigurationError):
        HubConfig.from_yaml(str(path))
