"""
Pydantic models for orders, order input and change notifications.
"""
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from deliveries.order_state import OrderStatus

# Delivery zone -> flat delivery fee
DELIVERY_FEES: dict[str, Decimal] = {
    "Town": Decimal("30.00"),
    "VML Market": Decimal("20.00"),
    "Campus": Decimal("15.00"),
    "Mukuba Mall": Decimal("30.00"),
}
LOCATIONS = tuple(DELIVERY_FEES)

DESCRIPTION_MIN_LENGTH = 5
DESCRIPTION_MAX_LENGTH = 1000
INSTRUCTIONS_MAX_LENGTH = 500


def delivery_fee(location: str) -> Decimal:
    return DELIVERY_FEES.get(location, Decimal("0.00"))


class OrderIn(BaseModel):
    """Order request as submitted by a user. Checked by the lifecycle service."""

    description: str | None = None
    location: str | None = None
    estimated_time: str | None = None
    delivery_instructions: str | None = None


class NewOrder(BaseModel):
    """Validated order ready for insertion (no id yet)."""

    model_config = ConfigDict(frozen=True)

    owner_id: str
    description: str
    location: str
    estimated_time: str
    delivery_instructions: str | None = None
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime


class Order(NewOrder):
    id: int

    @computed_field
    @property
    def delivery_fee(self) -> Decimal:
        return delivery_fee(self.location)


EventKind = Literal["created", "updated"]


class OrderEvent(BaseModel):
    """Change notification. Subscribers re-fetch state; the body is a hint only."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    order_id: int
    status: OrderStatus
    message: str
    origin: str | None = Field(default=None, description="Process that published the event")
