from fastapi import Header, Request

from deliveries.bus import NotificationBus
from deliveries.errors import AuthError
from deliveries.service import OrderService


def get_service(request: Request) -> OrderService:
    return request.app.state.order_service


def get_bus(request: Request) -> NotificationBus:
    return request.app.state.bus


async def get_caller_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller id as forwarded by the authenticating proxy."""
    if not x_user_id:
        raise AuthError("Not authenticated.", authenticated=False)
    return x_user_id
