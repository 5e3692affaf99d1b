"""
Redis pub/sub relay: fans order events out across API processes.

Locally published events are sent to the channel fire-and-forget; events
from other processes are delivered into the local bus. Each process tags
what it sends with its instance id and ignores its own messages.
"""
import asyncio
import logging
import uuid

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError

from deliveries.bus import NotificationBus
from deliveries.metrics import notifications_dropped_total
from deliveries.models import OrderEvent

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SEC = 1.0


class RedisRelay:
    def __init__(
        self,
        bus: NotificationBus,
        client: redis.Redis,
        channel: str,
        instance_id: str | None = None,
    ):
        self._bus = bus
        self._redis = client
        self._channel = channel
        self.instance_id = instance_id or uuid.uuid4().hex
        self._listener: asyncio.Task | None = None
        self._sends: set[asyncio.Task] = set()

    async def start(self) -> None:
        self._listener = asyncio.create_task(self._listen())
        self._bus.add_forwarder(self.forward)
        logger.info("Relaying order events on %s (instance=%s)", self._channel, self.instance_id)

    def forward(self, event: OrderEvent) -> None:
        """Schedule publication of a local event. Never waits on Redis."""
        if event.origin is not None:
            return
        body = event.model_copy(update={"origin": self.instance_id}).model_dump_json()
        t = asyncio.get_running_loop().create_task(self._send(body))
        self._sends.add(t)
        t.add_done_callback(self._sends.discard)

    async def _send(self, body: str) -> None:
        try:
            await self._redis.publish(self._channel, body)
        except Exception as e:
            notifications_dropped_total.inc()
            logger.warning("Relay publish to %s failed: %s", self._channel, e)

    def handle_message(self, data) -> bool:
        """Deliver one relayed message locally. False if ignored."""
        try:
            event = OrderEvent.model_validate_json(data)
        except PydanticValidationError:
            logger.warning("Invalid event on %s, skipping", self._channel)
            return False
        if event.origin == self.instance_id:
            return False
        self._bus.deliver(event)
        return True

    async def _listen(self) -> None:
        while True:
            pubsub = self._redis.pubsub()
            try:
                await pubsub.subscribe(self._channel)
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    self.handle_message(message["data"])
            except asyncio.CancelledError:
                raise
            except (redis.ConnectionError, redis.TimeoutError, OSError) as e:
                logger.warning("Relay subscription lost (%s); retrying in %ss", e, RECONNECT_DELAY_SEC)
                await asyncio.sleep(RECONNECT_DELAY_SEC)
            finally:
                await pubsub.aclose()

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            await asyncio.gather(self._listener, return_exceptions=True)
            self._listener = None
        if self._sends:
            await asyncio.gather(*self._sends, return_exceptions=True)
        logger.info("Relay stopped.")
