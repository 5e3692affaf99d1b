"""
Order lifecycle state machine. Valid transitions and who may perform them.
"""
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


# Actor required for a transition
ADMIN = "admin"
OWNER = "owner"

# Current status -> {allowed target: required actor}
VALID_TRANSITIONS: dict[OrderStatus, dict[OrderStatus, str]] = {
    OrderStatus.PENDING: {
        OrderStatus.IN_PROGRESS: ADMIN,
        OrderStatus.CANCELLED: OWNER,
    },
    OrderStatus.IN_PROGRESS: {
        OrderStatus.COMPLETED: ADMIN,
    },
    OrderStatus.COMPLETED: {},  # terminal
    OrderStatus.CANCELLED: {},  # terminal
}


def is_valid_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """True if target is reachable from current in one step."""
    return target in VALID_TRANSITIONS.get(current, {})


def is_terminal(status: OrderStatus) -> bool:
    return not VALID_TRANSITIONS.get(status)


def required_actor(target: OrderStatus) -> str | None:
    """Actor allowed to move an order into `target`, or None if no one may."""
    for allowed in VALID_TRANSITIONS.values():
        if target in allowed:
            return allowed[target]
    return None
