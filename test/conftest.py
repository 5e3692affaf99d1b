import pytest
from fastapi.testclient import TestClient

from _helper import FailingStore, RecordingBus, TickingClock
from deliveries.identity import ADMIN_ROLE, USER_ROLE, InMemoryIdentityProvider
from deliveries.main import create_app
from deliveries.service import OrderService


@pytest.fixture
def identity():
    provider = InMemoryIdentityProvider()
    provider.add_user("alice")
    provider.add_user("bob")
    provider.add_user("admin", roles=(ADMIN_ROLE, USER_ROLE))
    provider.add_user("admin2", roles=(ADMIN_ROLE, USER_ROLE))
    return provider


@pytest.fixture
def store():
    return FailingStore()


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def service(store, identity, bus, clock):
    return OrderService(store, identity, bus, clock=clock)


@pytest.fixture
def client(service, bus):
    with TestClient(create_app(order_service=service, bus=bus)) as c:
        yield c
