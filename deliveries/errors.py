"""
Error kinds raised by the order lifecycle core.
"""


class OrderError(Exception):
    """Base for all errors surfaced to callers of the lifecycle service."""


class ValidationError(OrderError):
    """Order input failed validation. `errors` maps field name -> message."""

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))


class AuthError(OrderError):
    """Caller is unknown (authenticated=False) or lacks the role for the operation."""

    def __init__(self, message: str, authenticated: bool = True):
        self.authenticated = authenticated
        super().__init__(message)


class NotFoundError(OrderError):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class InvalidTransitionError(OrderError):
    """Requested status change is not legal from the current status.

    `stale` is set when the order changed between read and write (lost a
    concurrent update); callers should re-fetch before retrying. `terminal` is
    set when the order is Completed or Cancelled and can no longer change.
    """

    def __init__(self, current_status, target_status, stale: bool = False, terminal: bool = False):
        self.current_status = current_status
        self.target_status = target_status
        self.stale = stale
        self.terminal = terminal
        current = getattr(current_status, "value", current_status)
        target = getattr(target_status, "value", target_status)
        if stale:
            msg = f"Order is no longer {current}; cannot move to {target}"
        elif terminal:
            msg = f"Order is already {current} and can no longer change"
        else:
            msg = f"Cannot change order with status {current} to {target}"
        super().__init__(msg)


class StoreUnavailableError(OrderError):
    """Transient store failure or timeout. Safe to retry with backoff."""
