from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from deliveries.deps import get_caller_id, get_service
from deliveries.models import Order, OrderIn
from deliveries.order_state import OrderStatus
from deliveries.service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


class StatusChange(BaseModel):
    status: OrderStatus = Field(..., description="Target status")


@router.post("", status_code=201)
async def create_order(
    body: OrderIn,
    caller_id: str = Depends(get_caller_id),
    service: OrderService = Depends(get_service),
) -> Order:
    return await service.create_order(caller_id, body)


@router.get("/mine")
async def my_orders(
    caller_id: str = Depends(get_caller_id),
    service: OrderService = Depends(get_service),
) -> list[Order]:
    """Caller's own orders, newest first."""
    return await service.list_orders_for_user(caller_id)


@router.get("")
async def all_orders(
    status: OrderStatus | None = Query(default=None),
    caller_id: str = Depends(get_caller_id),
    service: OrderService = Depends(get_service),
) -> list[Order]:
    """Admin dashboard: every order, optionally filtered by status."""
    return await service.list_all_orders(caller_id, status)


@router.post("/{order_id}/status")
async def change_status(
    order_id: int,
    body: StatusChange,
    caller_id: str = Depends(get_caller_id),
    service: OrderService = Depends(get_service),
) -> Order:
    return await service.advance_status(caller_id, order_id, body.status)


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    caller_id: str = Depends(get_caller_id),
    service: OrderService = Depends(get_service),
) -> Order:
    return await service.cancel_order(caller_id, order_id)
