"""
Order lifecycle service: the only writer of order state.

Every operation resolves the caller, checks authorization, validates, performs
at most one store mutation and, once that mutation is committed, publishes a
change event. Publishing is best-effort and never fails the operation.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Callable

from deliveries.bus import NotificationBus
from deliveries.errors import AuthError, InvalidTransitionError, NotFoundError, ValidationError
from deliveries.identity import Caller, IdentityProvider
from deliveries.metrics import (
    notifications_published_total,
    order_transitions_total,
    orders_created_total,
    transitions_rejected_total,
)
from deliveries.models import (
    DESCRIPTION_MAX_LENGTH,
    DESCRIPTION_MIN_LENGTH,
    INSTRUCTIONS_MAX_LENGTH,
    LOCATIONS,
    NewOrder,
    Order,
    OrderEvent,
    OrderIn,
)
from deliveries.order_state import ADMIN, OWNER, OrderStatus, is_terminal, is_valid_transition, required_actor
from deliveries.store import OrderStore

logger = logging.getLogger(__name__)

# "14:30" or "2:30 PM"
_TIME_24H = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$")
_TIME_12H = re.compile(r"^(0?[1-9]|1[0-2]):[0-5]\d\s?([AaPp][Mm])$")

_UPDATE_MESSAGES = {
    OrderStatus.CANCELLED: "Order cancelled",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def validate_order_input(data: OrderIn) -> dict:
    """Return cleaned order fields or raise ValidationError naming every bad field."""
    errors: dict[str, str] = {}

    description = (data.description or "").strip()
    if not description:
        errors["description"] = "Please describe what you need"
    elif not DESCRIPTION_MIN_LENGTH <= len(description) <= DESCRIPTION_MAX_LENGTH:
        errors["description"] = (
            f"Description must be between {DESCRIPTION_MIN_LENGTH} and "
            f"{DESCRIPTION_MAX_LENGTH} characters"
        )

    location = (data.location or "").strip()
    if not location:
        errors["location"] = "Please select a delivery location"
    elif location not in LOCATIONS:
        errors["location"] = f"Unknown delivery location: {location}"

    estimated_time = (data.estimated_time or "").strip()
    if not estimated_time:
        errors["estimated_time"] = "Please enter the time you need the items"
    elif not (_TIME_24H.match(estimated_time) or _TIME_12H.match(estimated_time)):
        errors["estimated_time"] = "Time must look like 14:30 or 2:30 PM"

    instructions = (data.delivery_instructions or "").strip() or None
    if instructions is not None and len(instructions) > INSTRUCTIONS_MAX_LENGTH:
        errors["delivery_instructions"] = (
            f"Delivery instructions must be at most {INSTRUCTIONS_MAX_LENGTH} characters"
        )

    if errors:
        raise ValidationError(errors)
    return {
        "description": description,
        "location": location,
        "estimated_time": estimated_time,
        "delivery_instructions": instructions,
    }


class OrderService:
    def __init__(
        self,
        store: OrderStore,
        identity: IdentityProvider,
        bus: NotificationBus,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._identity = identity
        self._bus = bus
        self._clock = clock

    async def resolve_caller(self, caller_id: str | None) -> Caller:
        caller = await self._identity.resolve(caller_id) if caller_id else None
        if caller is None:
            raise AuthError("User not found. Please log in again.", authenticated=False)
        return caller

    async def create_order(self, caller_id: str, data: OrderIn) -> Order:
        caller = await self.resolve_caller(caller_id)
        fields = validate_order_input(data)
        new = NewOrder(
            owner_id=caller.user_id,
            status=OrderStatus.PENDING,
            created_at=self._clock(),
            **fields,
        )
        order_id = await self._store.insert(new)
        order = Order(id=order_id, **new.model_dump())
        orders_created_total.inc()
        logger.info("Order %s created by %s (%s)", order.id, order.owner_id, order.location)
        self._publish(
            OrderEvent(kind="created", order_id=order.id, status=order.status, message="New order created")
        )
        return order

    async def list_orders_for_user(self, caller_id: str) -> list[Order]:
        return await self._store.query_by_owner(caller_id)

    async def list_all_orders(self, caller_id: str, status: OrderStatus | None = None) -> list[Order]:
        caller = await self.resolve_caller(caller_id)
        if not caller.is_admin:
            raise AuthError("Only administrators can view all orders.")
        return await self._store.query_all(status)

    async def advance_status(self, caller_id: str, order_id: int, target: OrderStatus) -> Order:
        caller = await self.resolve_caller(caller_id)
        order = await self._store.find_by_id(order_id)
        if order is None:
            raise NotFoundError(order_id)

        # Authorization is checked before legality so unauthorized callers
        # learn nothing about the order's state.
        if not self._may_move_to(caller, order, target):
            logger.info("Caller %s not authorized to move order %s to %s", caller.user_id, order_id, target.value)
            raise AuthError("You are not authorized to change this order.")

        current = order.status
        if not is_valid_transition(current, target):
            transitions_rejected_total.labels(current_status=current.value, target_status=target.value).inc()
            if is_terminal(current):
                logger.info("Rejected order %s transition to %s: already %s", order_id, target.value, current.value)
                raise InvalidTransitionError(current, target, terminal=True)
            logger.info("Rejected order %s transition %s -> %s", order_id, current.value, target.value)
            raise InvalidTransitionError(current, target)

        if not await self._store.update_status_if_current(order_id, current, target):
            transitions_rejected_total.labels(current_status=current.value, target_status=target.value).inc()
            logger.info("Order %s changed concurrently; %s -> %s lost", order_id, current.value, target.value)
            raise InvalidTransitionError(current, target, stale=True)

        updated = order.model_copy(update={"status": target})
        order_transitions_total.labels(from_status=current.value, to_status=target.value).inc()
        logger.info("Order %s: %s -> %s by %s", order_id, current.value, target.value, caller.user_id)
        self._publish(
            OrderEvent(
                kind="updated",
                order_id=order_id,
                status=target,
                message=_UPDATE_MESSAGES.get(target, "Order status updated"),
            )
        )
        return updated

    async def cancel_order(self, caller_id: str, order_id: int) -> Order:
        return await self.advance_status(caller_id, order_id, OrderStatus.CANCELLED)

    @staticmethod
    def _may_move_to(caller: Caller, order: Order, target: OrderStatus) -> bool:
        is_owner = caller.user_id == order.owner_id
        actor = required_actor(target)
        if actor == ADMIN:
            return caller.is_admin
        if actor == OWNER:
            return is_owner
        # No one may move an order into this status; only report it as an
        # invalid transition to callers with some standing on the order.
        return is_owner or caller.is_admin

    def _publish(self, event: OrderEvent) -> None:
        try:
            self._bus.publish(event)
        except Exception:
            logger.exception("Publishing %s event for order %s failed", event.kind, event.order_id)
            return
        notifications_published_total.labels(kind=event.kind).inc()
