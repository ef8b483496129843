"""
Order placement: cart -> order record -> payment record -> paid flag.

The three writes are not wrapped in a transaction. When a later write fails
the earlier ones stay in place and the caller gets ExternalWriteFailure;
repeating the call with the same idempotency key resumes from the order that
was already created instead of placing a second one.
"""
from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Optional, Union
from uuid import uuid4

from cart import compose_order
from config import settings
from database import RecordStore
from errors import ExternalWriteFailure, PermissionDenied
from orders import OrderBook
from schemas import Order, OrderType, Payment, PaymentDetails, PaymentStatus, UserRole, to_record
from session import SessionContext

logger = logging.getLogger(__name__)


def record_payment(
    book: OrderBook,
    store: RecordStore,
    order: Order,
    details: PaymentDetails,
    now: Optional[datetime] = None,
) -> Order:
    now = now or datetime.now(timezone.utc)
    settled = details.payment_method != "cash"

    if not store.select("payments", {"order_id": order.id}, limit=1):
        payment = Payment(
            id=uuid4().hex,
            order_id=order.id,
            customer_id=order.customer_id,
            amount=order.total,
            payment_method=details.payment_method,
            card_number=details.masked_card_number(),
            card_holder_name=details.card_holder_name,
            mobile_wallet_number=details.mobile_wallet_number,
            status="completed" if settled else "pending",
            transaction_id=f"TXN-{int(now.timestamp() * 1000)}",
            created_at=now,
        )
        try:
            store.insert("payments", to_record(payment))
        except ExternalWriteFailure:
            logger.error("Order %s was saved but its payment record was not", order.id)
            raise ExternalWriteFailure(
                f"Order {order.id} was placed but the payment could not be recorded. Please try again."
            )

    if not settled:
        return order
    paid = order.model_copy(update={"payment_status": PaymentStatus.PAID, "updated_at": now})
    return book.save(paid, "payment_status", "updated_at")


def place_order(
    ctx: SessionContext,
    book: OrderBook,
    store: RecordStore,
    order_type: Union[OrderType, str],
    delivery_address: Optional[str] = None,
    scheduled_time: Optional[datetime] = None,
    payment: Optional[PaymentDetails] = None,
    idempotency_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    if ctx.user.role != UserRole.CUSTOMER:
        raise PermissionDenied("Only customers can place orders")

    if idempotency_key and idempotency_key in ctx.placed_orders:
        order = book.get(ctx.placed_orders[idempotency_key])
        logger.info("Replaying order %s for key %s", order.id, idempotency_key)
    else:
        order = compose_order(ctx.cart, ctx.user, order_type, delivery_address, scheduled_time, now=now)
        book.add(order)
        if idempotency_key:
            ctx.placed_orders[idempotency_key] = order.id
        logger.info(
            "Order %s placed by %s: %d items, %s, total %s%.2f",
            order.id, ctx.user.id, len(order.items), order.type.value, settings.currency_symbol, order.total,
        )

    if payment is not None and order.payment_status != PaymentStatus.PAID:
        order = record_payment(book, store, order, payment, now=now)

    ctx.cart.clear()
    return order
