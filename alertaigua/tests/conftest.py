"""Shared fixtures"""

import pytest

from tests.helpers import FakeClock, FakeTransport, InMemorySubscriberStore


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemorySubscriberStore()


@pytest.fixture
def transport():
    return FakeTransport()
