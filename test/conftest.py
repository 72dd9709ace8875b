import os
import sys

import pytest

# test/ on path so _helper is found (the directory is not a package: "test" would shadow stdlib)
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from _helper import FakeCartGateway, FakeNotifier, TickingClock  # noqa: E402

from orderflow.handler import OrderService  # noqa: E402
from orderflow.store import MemoryOrderStore  # noqa: E402


@pytest.fixture
def store() -> MemoryOrderStore:
    return MemoryOrderStore()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def cart() -> FakeCartGateway:
    return FakeCartGateway()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def service(store, notifier, cart, clock) -> OrderService:
    return OrderService(store, notifier, cart, clock=clock)
