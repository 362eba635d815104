"""Shared fixtures for voice agent tests."""
import pytest

from observability.event_store import event_store
from fakes import FakeConnection, make_services


@pytest.fixture
def services():
    return make_services()


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture(autouse=True)
def clear_event_store():
    yield
    event_store.clear()
