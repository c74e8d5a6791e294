"""
Shared test doubles for the greenhouse hub.

FakeClock     - manually advanced monotonic clock
FakeTransport - records every broadcast payload
FakeStore     - in-memory remote store with set/update/get semantics
"""

import copy

import pytest

from greenhouse_hub.exceptions import RemoteStoreError
from greenhouse_hub.models import HubConfig
from greenhouse_hub.protocol import TelemetryMessage
from greenhouse_hub.registry import NodeRegistry
from greenhouse_hub.settings_store import SettingsStore
from greenhouse_hub.sync import ReconciliationEngine
from greenhouse_hub.transport import BroadcastTransport


# =============================================================================
# Test doubles
# =============================================================================

class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeTransport(BroadcastTransport):
    def __init__(self, accept: bool = True):
        super().__init__()
        self.accept = accept
        self.sent = []
        self.closed = False

    def send(self, payload: bytes) -> bool:
        self.sent.append(payload)
        if self.accept:
            self.sent_count += 1
        else:
            self.send_failures += 1
        return self.accept

    def close(self):
        self.closed = True

    def deliver(self, payload: bytes):
        """Simulate a payload arriving from the air."""
        self._dispatch(payload)


class FakeStore:
    """Flat path -> document mapping, None deletes a field on update."""

    def __init__(self, configured: bool = True):
        self.is_configured = configured
        self.docs = {}
        self.calls = []
        self.fail = False
        self.closed = False

    def _check(self, method, path):
        self.calls.append((method, path))
        if self.fail:
            raise RemoteStoreError(f"{method} {path} failed: offline")

    def get(self, path):
        self._check("GET", path)
        return copy.deepcopy(self.docs.get(path))

    def set(self, path, data):
        self._check("PUT", path)
        self.docs[path] = copy.deepcopy(data)

    def update(self, path, fields):
        self._check("PATCH", path)
        doc = self.docs.setdefault(path, {})
        for key, value in fields.items():
            if value is None:
                doc.pop(key, None)
            else:
                doc[key] = copy.deepcopy(value)

    def close(self):
        self.closed = True

    def methods(self, method):
        return [path for m, path in self.calls if m == method]


def telemetry(node_id: int, temperature: float = 22.5, vent_state: int = 0, timestamp: int = 100):
    return TelemetryMessage(
        node_id=node_id,
        temperature=temperature,
        humidity=55.0,
        pressure=1013.0,
        vent_state=vent_state,
        timestamp=timestamp,
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def registry(clock):
    return NodeRegistry(capacity=6, stale_timeout=300.0, clock=clock)


@pytest.fixture
def settings_store(tmp_path):
    return SettingsStore(str(tmp_path / "hub_settings.bin"), capacity=6)


@pytest.fixture
def engine(registry, transport, store, settings_store):
    return ReconciliationEngine(
        registry, transport, store, settings_store, wall_clock=lambda: 1700000000.0
    )


@pytest.fixture
def hub_config(tmp_path):
    return HubConfig(
        settings_path=str(tmp_path / "hub_settings.bin"),
        history_db=str(tmp_path / "hub_history.db"),
        log_file="",
    )
