import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from deliveries.bus import NotificationBus
from deliveries.config import settings
from deliveries.deps import get_bus, get_caller_id, get_service
from deliveries.models import OrderEvent
from deliveries.service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])

# Client-side handler name dashboards listen for
EVENT_NAME = "ReceiveOrderUpdate"


def format_sse(event: OrderEvent) -> str:
    return f"event: {EVENT_NAME}\ndata: {event.model_dump_json(exclude={'origin'})}\n\n"


async def event_stream(
    request: Request,
    bus: NotificationBus,
    keepalive: float,
) -> AsyncIterator[str]:
    """Subscribe for as long as the body is being consumed; ends when the bus closes."""
    sub = bus.subscribe()
    try:
        yield ": connected\n\n"
        while not sub.closed:
            if await request.is_disconnected():
                break
            event = await sub.get(timeout=keepalive)
            if event is not None:
                yield format_sse(event)
            elif not sub.closed:
                yield ": keepalive\n\n"
    finally:
        bus.unsubscribe(sub)


@router.get("/stream")
async def stream(
    request: Request,
    caller_id: str = Depends(get_caller_id),
    service: OrderService = Depends(get_service),
    bus: NotificationBus = Depends(get_bus),
) -> StreamingResponse:
    """
    Server-Sent Events: one `ReceiveOrderUpdate` per committed order change.
    Clients re-fetch their order lists on each event.
    """
    await service.resolve_caller(caller_id)
    logger.info("Event stream opened for %s", caller_id)
    return StreamingResponse(
        event_stream(request, bus, settings.sse_keepalive_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
