"""Who may see and act on an order."""

from printease.core.errors import AuthorizationError
from printease.schemas.auth import Actor
from printease.schemas.orders import Order


def is_assigned_dealer(actor: Actor, order: Order) -> bool:
    return actor.is_dealer and order.dealer_id is not None and actor.dealer_id == order.dealer_id


def can_view_order(actor: Actor, order: Order) -> bool:
    """Admins see everything, customers their own orders, dealers their assigned ones."""
    if actor.is_admin:
        return True
    if actor.is_dealer:
        return is_assigned_dealer(actor, order)
    if actor.is_customer:
        return order.user_id == actor.user_id
    return False


def require_order_access(actor: Actor, order: Order, operation: str = "view") -> None:
    """
    Raises:
        AuthorizationError: If the actor is not a participant of the order
    """
    if not can_view_order(actor, order):
        raise AuthorizationError(
            f"Not allowed to {operation} this order",
            order_id=order.id,
            role=actor.role.value,
        )
