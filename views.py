"""
Role-scoped views over the order collection.

Nothing in here mutates an order; every function takes the current list and
a ``now`` and derives a fresh result, so priorities and date windows move
with the wall clock.
"""
from __future__ import annotations
from collections import OrderedDict
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional
from urllib.parse import quote_plus

from cart import Cart
from errors import ValidationError
from lifecycle import available_actions
from schemas import (
    AdminDashboard, AdminOverview, ChefDashboard, ChefQueueEntry, CustomerDashboard, DailySales,
    DeliveryDashboard, DeliveryPools, ItemSales, MenuItem, Order, OrderStatus, OrderType,
    OrderWithActions, Priority, SalesReport, SalesWindow, User, UserRole,
)

KITCHEN_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PREPARING)
TERMINAL_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED)
DELIVERY_STATUSES = (OrderStatus.READY, OrderStatus.DISPATCHED)

HIGH_PRIORITY_MINUTES = 30
MEDIUM_PRIORITY_MINUTES = 15
POPULAR_ITEMS_LIMIT = 5
DAILY_BUCKETS_LIMIT = 7
WINDOW_DAYS = {"week": 7, "month": 30}
MAPS_DIRECTIONS_URL = "https://www.google.com/maps/dir/?api=1&destination="


def _now(now: Optional[datetime]) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now if now.tzinfo else now.astimezone()


def _local(dt: datetime) -> datetime:
    # naive timestamps are taken as local time
    return dt.astimezone()


def local_date(dt: datetime) -> date:
    return _local(dt).date()


def local_midnight(now: datetime) -> datetime:
    local_now = _local(now)
    return datetime.combine(local_now.date(), time.min, tzinfo=local_now.tzinfo)


def is_active(order: Order) -> bool:
    return order.status not in TERMINAL_STATUSES


def active_orders(orders: Iterable[Order]) -> List[Order]:
    return [o for o in orders if is_active(o)]


def newest_first(orders: Iterable[Order]) -> List[Order]:
    return sorted(orders, key=lambda o: o.created_at, reverse=True)


# ---------- Kitchen ----------
def age_minutes(order: Order, now: Optional[datetime] = None) -> int:
    delta = _now(now) - order.created_at
    return max(0, int(delta.total_seconds() // 60))


def priority_for(order: Order, now: Optional[datetime] = None) -> Priority:
    age = (_now(now) - order.created_at).total_seconds() / 60
    if age > HIGH_PRIORITY_MINUTES:
        return "high"
    if age > MEDIUM_PRIORITY_MINUTES:
        return "medium"
    return "low"


def chef_queue(orders: Iterable[Order], now: Optional[datetime] = None) -> List[ChefQueueEntry]:
    now = _now(now)
    return [
        ChefQueueEntry(order=o, priority=priority_for(o, now), age_minutes=age_minutes(o, now))
        for o in orders
        if o.status in KITCHEN_STATUSES
    ]


# ---------- Delivery ----------
def delivery_pools(orders: Iterable[Order], staff_id: str) -> DeliveryPools:
    """
    Split delivery orders into the three tabs a driver sees.

    The pools are disjoint: available needs no assignee, the other two need
    the driver, and assigned/delivering differ by status.
    """
    pools = DeliveryPools()
    for o in orders:
        if o.type != OrderType.DELIVERY or o.status not in DELIVERY_STATUSES:
            continue
        if o.status == OrderStatus.READY and not o.assigned_delivery_staff:
            pools.available.append(o)
        elif o.assigned_delivery_staff == staff_id and o.status == OrderStatus.READY:
            pools.assigned.append(o)
        elif o.assigned_delivery_staff == staff_id and o.status == OrderStatus.DISPATCHED:
            pools.delivering.append(o)
    return pools


def navigation_url(order: Order) -> str:
    if not order.delivery_address:
        raise ValidationError(f"Order {order.id} has no delivery address")
    return MAPS_DIRECTIONS_URL + quote_plus(order.delivery_address)


# ---------- Admin ----------
def todays_orders(orders: Iterable[Order], now: Optional[datetime] = None) -> List[Order]:
    today = local_date(_now(now))
    return [o for o in orders if local_date(o.created_at) == today]


def admin_overview(orders: List[Order], menu_items: Iterable[MenuItem], now: Optional[datetime] = None) -> AdminOverview:
    today = todays_orders(orders, now)
    return AdminOverview(
        today_orders=len(today),
        # every status counts, cancelled included
        today_revenue=round(sum(o.total for o in today), 2),
        active_orders=len(active_orders(orders)),
        available_menu_items=sum(1 for it in menu_items if it.available),
        recent_orders=newest_first(orders)[:5],
    )


def filter_by_window(orders: Iterable[Order], window: SalesWindow, now: Optional[datetime] = None) -> List[Order]:
    if window == "all":
        return list(orders)
    start = local_midnight(_now(now))
    if window in WINDOW_DAYS:
        start -= timedelta(days=WINDOW_DAYS[window])
    elif window != "today":
        raise ValidationError(f"Unknown report window {window!r}")
    return [o for o in orders if o.created_at >= start]


def sales_report(orders: Iterable[Order], window: SalesWindow = "today", now: Optional[datetime] = None) -> SalesReport:
    filtered = filter_by_window(orders, window, now)
    delivered = [o for o in filtered if o.status == OrderStatus.DELIVERED]
    revenue = round(sum(o.total for o in delivered), 2)

    order_types: Dict[str, int] = {}
    item_sales: Dict[str, int] = OrderedDict()
    daily: Dict[str, DailySales] = {}
    for o in filtered:
        order_types[o.type.value] = order_types.get(o.type.value, 0) + 1
        for it in o.items:
            item_sales[it.name] = item_sales.get(it.name, 0) + it.quantity
        key = local_date(o.created_at).isoformat()
        bucket = daily.setdefault(key, DailySales(date=key, orders=0, revenue=0.0))
        bucket.orders += 1
        if o.status == OrderStatus.DELIVERED:
            bucket.revenue = round(bucket.revenue + o.total, 2)

    # sorted() is stable, so equal quantities keep first-seen order
    popular = sorted(item_sales.items(), key=lambda kv: kv[1], reverse=True)[:POPULAR_ITEMS_LIMIT]
    days = sorted(daily.values(), key=lambda d: d.date, reverse=True)[:DAILY_BUCKETS_LIMIT]

    return SalesReport(
        window=window,
        total_revenue=revenue,
        total_orders=len(filtered),
        delivered_orders=len(delivered),
        average_order_value=round(revenue / len(delivered), 2) if delivered else 0.0,
        order_types=order_types,
        popular_items=[ItemSales(name=name, quantity=qty) for name, qty in popular],
        daily_sales=days,
    )


# ---------- Dashboards ----------
def _customer_dashboard(user: User, orders: List[Order], menu: List[MenuItem], cart: Optional[Cart], now: datetime) -> CustomerDashboard:
    mine = newest_first(o for o in orders if o.customer_id == user.id)
    return CustomerDashboard(
        menu=[it for it in menu if it.available],
        orders=mine,
        active_orders=active_orders(mine),
        cart=(cart if cart is not None else Cart()).summary(),
    )


def _admin_dashboard(user: User, orders: List[Order], menu: List[MenuItem], cart: Optional[Cart], now: datetime) -> AdminDashboard:
    return AdminDashboard(
        overview=admin_overview(orders, menu, now),
        orders=[OrderWithActions(order=o, actions=available_actions(o, user)) for o in newest_first(orders)],
        menu=menu,
        sales=sales_report(orders, "today", now),
    )


def _chef_dashboard(user: User, orders: List[Order], menu: List[MenuItem], cart: Optional[Cart], now: datetime) -> ChefDashboard:
    return ChefDashboard(
        queue=chef_queue(orders, now),
        pending_count=sum(1 for o in orders if o.status == OrderStatus.PENDING),
        preparing_count=sum(1 for o in orders if o.status == OrderStatus.PREPARING),
    )


def _delivery_dashboard(user: User, orders: List[Order], menu: List[MenuItem], cart: Optional[Cart], now: datetime) -> DeliveryDashboard:
    return DeliveryDashboard(pools=delivery_pools(orders, user.id))


DashboardBuilder = Callable[[User, List[Order], List[MenuItem], Optional[Cart], datetime], object]

DASHBOARD_BUILDERS: Dict[UserRole, DashboardBuilder] = {
    UserRole.CUSTOMER: _customer_dashboard,
    UserRole.ADMIN: _admin_dashboard,
    UserRole.CHEF: _chef_dashboard,
    UserRole.DELIVERY: _delivery_dashboard,
}

_unhandled = set(UserRole) - set(DASHBOARD_BUILDERS)
if _unhandled:
    raise RuntimeError(f"No dashboard builder for roles: {sorted(r.value for r in _unhandled)}")


def build_dashboard(
    user: User,
    orders: List[Order],
    menu: List[MenuItem],
    cart: Optional[Cart] = None,
    now: Optional[datetime] = None,
):
    return DASHBOARD_BUILDERS[user.role](user, orders, menu, cart, _now(now))
