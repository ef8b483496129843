from __future__ import annotations
import logging
from typing import Dict, List, Optional

from database import RecordStore
from errors import NotFound
from schemas import Order, OrderStatus, from_record, record_patch, to_record

logger = logging.getLogger(__name__)


class OrderBook:
    """
    Canonical order collection for the process.

    Every role view is derived from here. Writes go to the ``orders`` table
    first so a failed store call leaves the in-memory copy untouched.
    """

    def __init__(self, store: Optional[RecordStore] = None):
        self._store = store
        self._orders: Dict[str, Order] = {}

    def load(self) -> int:
        if self._store is None:
            return 0
        for doc in self._store.select("orders"):
            order = from_record(Order, doc)
            self._orders[order.id] = order
        logger.info("Loaded %d orders from the record store", len(self._orders))
        return len(self._orders)

    def __len__(self) -> int:
        return len(self._orders)

    def __contains__(self, order_id: str) -> bool:
        return order_id in self._orders

    def all(self) -> List[Order]:
        return list(self._orders.values())

    def get(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    def add(self, order: Order) -> Order:
        if self._store is not None:
            self._store.insert("orders", to_record(order))
        self._orders[order.id] = order
        return order

    def save(self, order: Order, *fields: str) -> Order:
        """Persist ``fields`` of an already-modified copy and swap it in."""
        self.get(order.id)
        if self._store is not None:
            self._store.update("orders", order.id, record_patch(order, *fields))
        self._orders[order.id] = order
        return order

    def filter(self, status: Optional[OrderStatus] = None, customer_id: Optional[str] = None) -> List[Order]:
        out = self.all()
        if status is not None:
            out = [o for o in out if o.status == status]
        if customer_id is not None:
            out = [o for o in out if o.customer_id == customer_id]
        return out
