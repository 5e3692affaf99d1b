"""
Shared fakes for the test suite: recording bus, controllable clock, failing store.
"""
from datetime import datetime, timedelta, timezone

from deliveries.bus import NotificationBus
from deliveries.errors import StoreUnavailableError
from deliveries.models import OrderEvent, OrderIn
from deliveries.store import InMemoryOrderStore

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


class RecordingBus(NotificationBus):
    """Real bus that also keeps every published event."""

    def __init__(self, buffer_size: int = 100):
        super().__init__(buffer_size)
        self.events: list[OrderEvent] = []

    def publish(self, event: OrderEvent) -> int:
        self.events.append(event)
        return super().publish(event)


class ExplodingBus(NotificationBus):
    def publish(self, event: OrderEvent) -> int:
        raise RuntimeError("subscriber transport down")


class TickingClock:
    """Each call returns a time one minute later than the previous one."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


class FailingStore(InMemoryOrderStore):
    def __init__(self):
        super().__init__()
        self.fail_inserts = False
        self.fail_updates = False
        self.fail_reads = False

    async def insert(self, order):
        if self.fail_inserts:
            raise StoreUnavailableError("insert timed out")
        return await super().insert(order)

    async def update_status_if_current(self, order_id, expected, new):
        if self.fail_updates:
            raise StoreUnavailableError("update timed out")
        return await super().update_status_if_current(order_id, expected, new)

    async def query_all(self, status=None):
        if self.fail_reads:
            raise StoreUnavailableError("query timed out")
        return await super().query_all(status)


def order_input(**overrides) -> OrderIn:
    data = {
        "description": "K50 for 2L Milk",
        "location": "Campus",
        "estimated_time": "14:30",
        "delivery_instructions": None,
    }
    data.update(overrides)
    return OrderIn(**data)
