from __future__ import annotations
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Union
from uuid import uuid4

from config import settings
from errors import EmptyCart, NotFound, ValidationError
from schemas import (
    CartLine, CartLineOut, CartOut, MenuItem, Order, OrderItem, OrderStatus, OrderType,
    PaymentStatus, User,
)

DELIVERY_FEE = settings.delivery_fee


def _normalize_customizations(customizations: Optional[Sequence[str]]) -> Optional[List[str]]:
    # "no add-ons" is one key whether it arrives as None or []
    if not customizations:
        return None
    return list(customizations)


class Cart:
    """A customer's unsubmitted selection, scoped to one session."""

    def __init__(self) -> None:
        self.lines: List[CartLine] = []

    def __len__(self) -> int:
        return len(self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def subtotal(self) -> float:
        return round(sum(line.menu_item.price * line.quantity for line in self.lines), 2)

    def add(self, menu_item: MenuItem, quantity: int = 1, customizations: Optional[Sequence[str]] = None) -> CartLine:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        if not menu_item.available:
            raise ValidationError(f"{menu_item.name} is not available right now")

        wanted = _normalize_customizations(customizations)
        for i, line in enumerate(self.lines):
            if line.menu_item.id == menu_item.id and line.customizations == wanted:
                merged = line.model_copy(update={"quantity": line.quantity + quantity})
                self.lines[i] = merged
                return merged

        line = CartLine(menu_item=menu_item, quantity=quantity, customizations=wanted)
        self.lines.append(line)
        return line

    def update(self, index: int, quantity: int) -> Optional[CartLine]:
        """Set a line's quantity; zero or less drops the line."""
        if index < 0 or index >= len(self.lines):
            raise NotFound(f"Cart line {index} not found")
        if quantity <= 0:
            self.lines.pop(index)
            return None
        line = self.lines[index].model_copy(update={"quantity": quantity})
        self.lines[index] = line
        return line

    def clear(self) -> None:
        self.lines = []

    def summary(self) -> CartOut:
        return CartOut(
            lines=[
                CartLineOut(
                    index=i,
                    menu_item=line.menu_item,
                    quantity=line.quantity,
                    customizations=line.customizations,
                    line_total=line.line_total,
                )
                for i, line in enumerate(self.lines)
            ],
            subtotal=self.subtotal,
            item_count=self.item_count,
        )


def snapshot_line(line: CartLine) -> OrderItem:
    item = line.menu_item
    return OrderItem(
        menu_item_id=item.id,
        name=item.name,
        price=item.price,
        quantity=line.quantity,
        customizations=list(line.customizations) if line.customizations else None,
        image=item.image or None,
    )


def order_total(items: Sequence[OrderItem], order_type: OrderType, delivery_fee: float = DELIVERY_FEE) -> float:
    subtotal = sum(it.price * it.quantity for it in items)
    fee = delivery_fee if order_type == OrderType.DELIVERY else 0.0
    return round(subtotal + fee, 2)


def new_order_id(now: datetime) -> str:
    return f"{int(now.timestamp() * 1000)}-{uuid4().hex[:6]}"


def compose_order(
    cart: Cart,
    customer: User,
    order_type: Union[OrderType, str],
    delivery_address: Optional[str] = None,
    scheduled_time: Optional[datetime] = None,
    now: Optional[datetime] = None,
    delivery_fee: float = DELIVERY_FEE,
) -> Order:
    """
    Turn the cart into a pending order without touching the cart itself.

    Customer name and phone are copied onto the order so later profile edits
    leave order history alone.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.astimezone()
    try:
        order_type = OrderType(order_type)
    except ValueError:
        raise ValidationError(f"Unknown order type {order_type!r}")

    address = (delivery_address or "").strip()
    if order_type == OrderType.DELIVERY and not address:
        raise ValidationError("A delivery address is required for delivery orders")
    if scheduled_time is not None:
        if scheduled_time.tzinfo is None:
            scheduled_time = scheduled_time.astimezone()
        if scheduled_time <= now:
            raise ValidationError("Scheduled time must be in the future")
    if cart.is_empty:
        raise EmptyCart("Your cart is empty")

    items = [snapshot_line(line) for line in cart.lines]
    return Order(
        id=new_order_id(now),
        customer_id=customer.id,
        customer_name=customer.name,
        customer_phone=customer.phone,
        items=items,
        total=order_total(items, order_type, delivery_fee),
        status=OrderStatus.PENDING,
        type=order_type,
        delivery_address=address if order_type == OrderType.DELIVERY else None,
        scheduled_time=scheduled_time,
        created_at=now,
        updated_at=now,
        payment_status=PaymentStatus.PENDING,
    )
