"""
Domain exceptions raised by the delivery reconciliation services.

Routes translate these into HTTP status codes; the best-effort refresh path
logs and swallows them.
"""


class DeliveryError(Exception):
    """Base class for delivery reconciliation errors."""


class OrderNotFoundError(DeliveryError):
    """Raised when an insertion order does not exist or was deleted."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InventorySnapshotMissingError(DeliveryError):
    """Raised when an order carries no selected inventory to reconcile against."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} has no selected inventory snapshot")


class InvalidSendDateError(DeliveryError, ValueError):
    """Raised when a send date cannot be parsed as a calendar day."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Invalid send date {value!r}; expected YYYY-MM-DD")
