"""
Engine error taxonomy. Every failure carries a stable `kind` for callers to branch on
and a transport-neutral `category` (not_found / bad_request / conflict / internal).
"""


class OrderLifecycleError(Exception):
    kind = "lifecycle_error"
    category = "internal"


class OrderNotFoundError(OrderLifecycleError):
    kind = "order_not_found"
    category = "not_found"

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"order {order_id} not found")


class OrderItemNotFoundError(OrderLifecycleError):
    kind = "order_item_not_found"
    category = "not_found"

    def __init__(self, order_id: int, item_id: int):
        self.order_id = order_id
        self.item_id = item_id
        super().__init__(f"item {item_id} not found in order {order_id}")


class VariantNotFoundError(OrderLifecycleError):
    kind = "variant_not_found"
    category = "not_found"

    def __init__(self, variant_id: int | None, detail: str = ""):
        self.variant_id = variant_id
        message = f"product variant {variant_id} not found"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class UnsupportedOrderTypeError(OrderLifecycleError):
    kind = "unsupported_order_type"
    category = "bad_request"

    def __init__(self, order_type: str):
        self.order_type = order_type
        super().__init__(f"unsupported order type: {order_type}")


class InvalidTargetStatusError(OrderLifecycleError):
    """Target status is not part of the order type's state graph."""

    kind = "invalid_target_status"
    category = "bad_request"

    def __init__(self, order_type: str, target_status: str):
        self.order_type = order_type
        self.target_status = target_status
        super().__init__(f"status {target_status} is not valid for {order_type} orders")


class AlreadyInStatusError(OrderLifecycleError):
    kind = "already_in_status"
    category = "bad_request"

    def __init__(self, order_id: int, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"order {order_id} is already in status {status}")


class InvalidTransitionError(OrderLifecycleError):
    kind = "invalid_transition"
    category = "bad_request"

    def __init__(self, current_status: str | None, target_status: str, allowed: list[str] | None = None):
        self.current_status = current_status
        self.target_status = target_status
        self.allowed = allowed or []
        message = f"transition {current_status} -> {target_status} is not allowed"
        if self.allowed:
            message += f" (allowed: {', '.join(self.allowed)})"
        else:
            message += f" ({current_status} is terminal)"
        super().__init__(message)


class OrderValidationError(OrderLifecycleError):
    kind = "order_validation"
    category = "bad_request"


class InvalidProducedQuantityError(OrderLifecycleError):
    kind = "invalid_produced_quantity"
    category = "bad_request"


class ItemsLockedError(OrderLifecycleError):
    """Items can only be edited while the order is still a quote or freshly approved."""

    kind = "items_locked"
    category = "conflict"

    def __init__(self, order_id: int, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"items of order {order_id} cannot be edited in status {status}")


class InsufficientStockError(OrderLifecycleError):
    kind = "insufficient_stock"
    category = "conflict"

    def __init__(self, variant_id: int, requested: int, available: int):
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"insufficient stock for variant {variant_id}: requested {requested}, available {available}"
        )


class PersistenceError(OrderLifecycleError):
    """Raised by store adapters; the surrounding transaction has been rolled back."""

    kind = "persistence_error"
    category = "internal"


class AutoTransitionLimitError(OrderLifecycleError):
    kind = "auto_transition_limit"
    category = "internal"

    def __init__(self, order_id: int, limit: int, last_status: str):
        self.order_id = order_id
        self.limit = limit
        self.last_status = last_status
        super().__init__(
            f"order {order_id} exceeded {limit} automatic transitions (stopped at {last_status})"
        )
