"""Pytest configuration and shared fixtures for deceive-relay tests."""

import pytest

from deceive_relay.io.status_store import StatusStore
from deceive_relay.pipeline.relay import PresenceRelay
from tests.harness import FakeStream


@pytest.fixture
def status_path(tmp_path):
    return tmp_path / "config" / "status"


@pytest.fixture
def status_store(status_path):
    return StatusStore(status_path)


@pytest.fixture
def relay(status_store):
    relay = PresenceRelay(status_store)
    yield relay
    relay.close()
    relay.wait(timeout=2)


@pytest.fixture
def streams():
    """(client-facing, server-facing) fake streams."""
    return FakeStream("client"), FakeStream("server")
