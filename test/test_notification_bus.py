"""Tests for the in-process notification bus."""

import asyncio

from prometheus_client import REGISTRY

from deliveries.bus import NotificationBus
from deliveries.models import OrderEvent
from deliveries.order_state import OrderStatus


def _event(order_id=1, kind="updated", status=OrderStatus.IN_PROGRESS):
    return OrderEvent(kind=kind, order_id=order_id, status=status, message="Order status updated")


class TestSubscribe:
    async def test_every_subscriber_receives_event(self):
        bus = NotificationBus()
        a, b = bus.subscribe(), bus.subscribe()
        assert bus.publish(_event()) == 2
        assert a.drain() == [_event()]
        assert b.drain() == [_event()]

    async def test_no_replay_of_past_events(self):
        bus = NotificationBus()
        bus.publish(_event(order_id=1))
        sub = bus.subscribe()
        bus.publish(_event(order_id=2))
        assert [e.order_id for e in sub.drain()] == [2]

    async def test_publish_without_subscribers(self):
        bus = NotificationBus()
        assert bus.publish(_event()) == 0

    async def test_events_arrive_in_publish_order(self):
        bus = NotificationBus()
        sub = bus.subscribe()
        for i in range(1, 6):
            bus.publish(_event(order_id=i))
        assert [e.order_id for e in sub.drain()] == [1, 2, 3, 4, 5]

    async def test_get_waits_for_next_event(self):
        bus = NotificationBus()
        sub = bus.subscribe()
        bus.publish(_event(order_id=7))
        event = await sub.get(timeout=1)
        assert event.order_id == 7

    async def test_get_times_out(self):
        sub = NotificationBus().subscribe()
        assert await sub.get(timeout=0.01) is None


class TestUnsubscribe:
    async def test_removed_subscriber_gets_nothing(self):
        bus = NotificationBus()
        sub = bus.subscribe()
        bus.unsubscribe(sub)
        bus.publish(_event())
        assert sub.drain() == []
        assert sub.closed
        assert bus.subscriber_count == 0

    async def test_idempotent(self):
        bus = NotificationBus()
        sub = bus.subscribe()
        bus.unsubscribe(sub)
        bus.unsubscribe(sub)
        sub.close()
        assert bus.subscriber_count == 0

    async def test_unknown_handle_ignored(self):
        bus = NotificationBus()
        stranger = NotificationBus().subscribe()
        kept = bus.subscribe()
        bus.unsubscribe(stranger)
        assert bus.subscriber_count == 1
        assert not kept.closed


class TestBestEffort:
    async def test_full_subscriber_misses_events(self):
        bus = NotificationBus(buffer_size=2)
        slow, fast = bus.subscribe(), bus.subscribe()
        bus.publish(_event(order_id=1))
        bus.publish(_event(order_id=2))
        fast.drain()
        assert bus.publish(_event(order_id=3)) == 1
        assert [e.order_id for e in slow.drain()] == [1, 2]
        assert [e.order_id for e in fast.drain()] == [3]

    async def test_failing_forwarder_does_not_raise(self):
        bus = NotificationBus()
        sub = bus.subscribe()

        def broken(event):
            raise ConnectionError("relay down")

        bus.add_forwarder(broken)
        assert bus.publish(_event()) == 1
        assert len(sub.drain()) == 1

    async def test_forwarders_see_published_not_delivered_events(self):
        bus = NotificationBus()
        seen = []
        bus.add_forwarder(seen.append)
        bus.publish(_event(order_id=1))
        bus.deliver(_event(order_id=2))
        assert [e.order_id for e in seen] == [1]

    async def test_close_ends_all_subscriptions(self):
        bus = NotificationBus()
        subs = [bus.subscribe() for _ in range(3)]
        bus.close()
        assert all(s.closed for s in subs)
        assert bus.publish(_event()) == 0


def _dropped() -> float:
    return REGISTRY.get_sample_value("notifications_dropped_total") or 0.0


class TestClosingWakesReaders:
    async def test_async_iteration_ends_after_unsubscribe(self):
        bus = NotificationBus()
        sub = bus.subscribe()

        async def collect():
            return [e async for e in sub]

        task = asyncio.ensure_future(collect())
        await asyncio.sleep(0)
        bus.publish(_event(order_id=1))
        await asyncio.sleep(0)
        bus.unsubscribe(sub)
        events = await asyncio.wait_for(task, 0.5)
        assert [e.order_id for e in events] == [1]

    async def test_waiting_get_returns_on_bus_close(self):
        bus = NotificationBus()
        sub = bus.subscribe()
        task = asyncio.ensure_future(sub.get(timeout=5))
        await asyncio.sleep(0)
        bus.close()
        assert await asyncio.wait_for(task, 0.5) is None

    async def test_queued_events_still_read_before_close(self):
        bus = NotificationBus(buffer_size=1)
        sub = bus.subscribe()
        bus.publish(_event(order_id=9))
        sub.close()
        assert (await sub.get(timeout=0.5)).order_id == 9
        assert await sub.get(timeout=0.5) is None

    async def test_get_after_close_does_not_wait(self):
        bus = NotificationBus()
        sub = bus.subscribe()
        sub.close()
        sub.drain()
        assert await asyncio.wait_for(sub.get(timeout=5), 0.5) is None


class TestDropAccounting:
    async def test_closed_subscriber_not_counted_as_drop(self):
        bus = NotificationBus()
        live = bus.subscribe()
        gone = bus.subscribe()
        # closed while still in the registry, as when it leaves during a fan-out
        gone._shut()
        before = _dropped()
        assert bus.publish(_event()) == 1
        assert _dropped() == before
        assert len(live.drain()) == 1

    async def test_full_subscriber_counted_as_drop(self):
        bus = NotificationBus(buffer_size=1)
        bus.subscribe()
        bus.publish(_event(order_id=1))
        before = _dropped()
        bus.publish(_event(order_id=2))
        assert _dropped() == before + 1
