"""Order status transitions and the role allowed to drive each one."""

from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from errors import AssignmentConflict, InvalidTransition, PermissionDenied, ValidationError
from orders import OrderBook
from schemas import Order, OrderStatus, OrderType, PaymentStatus, User, UserRole

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[OrderStatus, List[OrderStatus]] = {
    OrderStatus.PENDING: [OrderStatus.CONFIRMED, OrderStatus.CANCELLED],
    OrderStatus.CONFIRMED: [OrderStatus.PREPARING, OrderStatus.CANCELLED],
    OrderStatus.PREPARING: [OrderStatus.READY, OrderStatus.CANCELLED],
    OrderStatus.READY: [OrderStatus.DISPATCHED, OrderStatus.DELIVERED],
    OrderStatus.DISPATCHED: [OrderStatus.DELIVERED],
    OrderStatus.DELIVERED: [],
    OrderStatus.CANCELLED: [],
}

Edge = Tuple[OrderStatus, OrderStatus]

ROLE_TRANSITIONS: Dict[UserRole, FrozenSet[Edge]] = {
    UserRole.ADMIN: frozenset((src, dst) for src, targets in TRANSITIONS.items() for dst in targets),
    UserRole.CHEF: frozenset({
        (OrderStatus.CONFIRMED, OrderStatus.PREPARING),
        (OrderStatus.PREPARING, OrderStatus.READY),
    }),
    UserRole.DELIVERY: frozenset({
        (OrderStatus.READY, OrderStatus.DISPATCHED),
        (OrderStatus.DISPATCHED, OrderStatus.DELIVERED),
    }),
    UserRole.CUSTOMER: frozenset(),
}


def allowed_next(status: OrderStatus) -> List[OrderStatus]:
    return list(TRANSITIONS.get(status, []))


def can_transition(src: OrderStatus, dst: OrderStatus) -> bool:
    """Return ``True`` if an order can move from ``src`` to ``dst``."""

    return dst in TRANSITIONS.get(src, [])


def role_can_apply(role: UserRole, src: OrderStatus, dst: OrderStatus) -> bool:
    return (src, dst) in ROLE_TRANSITIONS.get(role, frozenset())


def _claimed_by_other(order: Order, actor: User) -> bool:
    return order.assigned_delivery_staff is not None and order.assigned_delivery_staff != actor.id


def _check_driver(order: Order, actor: User) -> None:
    """Delivery staff only move delivery orders they have claimed."""
    if order.type != OrderType.DELIVERY:
        raise PermissionDenied(f"Order {order.id} is {order.type.value}, not a delivery order")
    if _claimed_by_other(order, actor):
        raise AssignmentConflict(f"Order {order.id} is assigned to another delivery staff member")
    if order.assigned_delivery_staff is None:
        raise InvalidTransition(f"Order {order.id} must be claimed before it can be dispatched")


def available_actions(order: Order, actor: User) -> List[OrderStatus]:
    """Target statuses ``actor`` could apply to ``order`` right now."""
    if actor.role == UserRole.DELIVERY and (
        order.type != OrderType.DELIVERY or order.assigned_delivery_staff != actor.id
    ):
        return []
    return [dst for dst in allowed_next(order.status) if role_can_apply(actor.role, order.status, dst)]


def _coerce_status(value: Union[OrderStatus, str]) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown order status {value!r}")


def _stamp(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def apply_transition(
    book: OrderBook,
    order_id: str,
    target_status: Union[OrderStatus, str],
    actor: User,
    now: Optional[datetime] = None,
) -> Order:
    """
    Move an order to ``target_status`` on behalf of ``actor``.

    The table check runs before the role check, so an edge that does not
    exist is always reported as InvalidTransition whoever asks. Assignments
    are left alone, cancellation included.
    """
    order = book.get(order_id)
    target = _coerce_status(target_status)

    if not can_transition(order.status, target):
        raise InvalidTransition(
            f"Order {order_id} cannot move from {order.status.value} to {target.value}"
        )
    if not role_can_apply(actor.role, order.status, target):
        raise PermissionDenied(
            f"A {actor.role.value} may not move an order from {order.status.value} to {target.value}"
        )
    if actor.role == UserRole.DELIVERY:
        _check_driver(order, actor)

    updated = order.model_copy(update={"status": target, "updated_at": _stamp(now)})
    book.save(updated, "status", "updated_at")
    logger.info("Order %s: %s -> %s by %s %s", order_id, order.status.value, target.value, actor.role.value, actor.id)
    return updated


def assign_delivery(book: OrderBook, order_id: str, actor: User, now: Optional[datetime] = None) -> Order:
    """Claim a ready order for the acting delivery staff member."""
    if actor.role != UserRole.DELIVERY:
        raise PermissionDenied("Only delivery staff can claim deliveries")
    order = book.get(order_id)
    if order.type != OrderType.DELIVERY:
        raise PermissionDenied(f"Order {order_id} is {order.type.value}, not a delivery order")
    if order.status != OrderStatus.READY:
        raise InvalidTransition(f"Order {order_id} is {order.status.value}; only ready orders can be claimed")
    if _claimed_by_other(order, actor):
        raise AssignmentConflict(f"Order {order_id} is already assigned to another delivery staff member")
    if order.assigned_delivery_staff == actor.id:
        return order

    updated = order.model_copy(update={"assigned_delivery_staff": actor.id, "updated_at": _stamp(now)})
    book.save(updated, "assigned_delivery_staff", "updated_at")
    logger.info("Order %s assigned to delivery staff %s", order_id, actor.id)
    return updated


def assign_chef(book: OrderBook, order_id: str, chef_id: str, actor: User, now: Optional[datetime] = None) -> Order:
    if actor.role != UserRole.ADMIN:
        raise PermissionDenied("Only admins can assign kitchen staff")
    order = book.get(order_id)
    if order.is_terminal:
        raise InvalidTransition(f"Order {order_id} is {order.status.value}")

    updated = order.model_copy(update={"assigned_chef": chef_id, "updated_at": _stamp(now)})
    book.save(updated, "assigned_chef", "updated_at")
    logger.info("Order %s assigned to chef %s", order_id, chef_id)
    return updated


def set_payment_status(
    book: OrderBook,
    order_id: str,
    payment_status: Union[PaymentStatus, str],
    actor: User,
    now: Optional[datetime] = None,
) -> Order:
    if actor.role != UserRole.ADMIN:
        raise PermissionDenied("Only admins can change payment status")
    try:
        value = PaymentStatus(payment_status)
    except ValueError:
        raise ValidationError(f"Unknown payment status {payment_status!r}")
    order = book.get(order_id)

    updated = order.model_copy(update={"payment_status": value, "updated_at": _stamp(now)})
    book.save(updated, "payment_status", "updated_at")
    logger.info("Order %s payment status set to %s", order_id, value.value)
    return updated
