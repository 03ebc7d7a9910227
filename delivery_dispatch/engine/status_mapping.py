"""Translation between the backend order lifecycle and the delivery lifecycle."""

from delivery_dispatch.models.delivery import DeliveryAssignment, DeliveryStatus
from delivery_dispatch.models.order import Order, OrderStatus

ORDER_TO_DELIVERY: dict[OrderStatus, DeliveryStatus] = {
    OrderStatus.READY: DeliveryStatus.ASSIGNED,
    OrderStatus.PREPARING: DeliveryStatus.PICKED_UP,
    OrderStatus.CONFIRMED: DeliveryStatus.IN_TRANSIT,
    OrderStatus.DELIVERED: DeliveryStatus.DELIVERED,
    # several failure reasons collapse into one field-facing label
    OrderStatus.CANCELLED: DeliveryStatus.DELAYED,
}

DELIVERY_TO_ORDER: dict[DeliveryStatus, OrderStatus] = {
    delivery: order for order, delivery in ORDER_TO_DELIVERY.items()
}


def to_delivery_status(order_status: OrderStatus | str) -> DeliveryStatus:
    """Map a backend order status to the delivery lifecycle.

    Unknown values (including ``pending``) map to ``assigned``.
    """
    try:
        return ORDER_TO_DELIVERY.get(OrderStatus(order_status), DeliveryStatus.ASSIGNED)
    except ValueError:
        return DeliveryStatus.ASSIGNED


def to_order_status(delivery_status: DeliveryStatus | str) -> OrderStatus:
    """Map a delivery status back to the backend order lifecycle."""
    return DELIVERY_TO_ORDER[DeliveryStatus(delivery_status)]


def effective_delivery_status(
    order: Order,
    assignment: DeliveryAssignment | None,
) -> DeliveryStatus:
    """Delivery status of an order: the assignment's own status once one exists."""
    if assignment is not None:
        return assignment.status
    return to_delivery_status(order.status)
