from datetime import datetime, timedelta, timezone

import mongomock
import pytest

from database import RecordStore
from menu import MenuCatalog
from orders import OrderBook
from schemas import MenuItem, Order, OrderItem, OrderStatus, OrderType, User, UserRole


@pytest.fixture
def now():
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def store():
    return RecordStore(mongomock.MongoClient()["restaurant_test"])


@pytest.fixture
def book(store):
    return OrderBook(store)


@pytest.fixture
def catalog(store):
    return MenuCatalog(store)


def _user(user_id, role, name):
    return User(
        id=user_id,
        name=name,
        email=f"{user_id}@ubuntu.co.za",
        role=role,
        phone="0680998913",
        address="123 Main Street, Durban, 4001" if role == UserRole.CUSTOMER else None,
        created_at=datetime(2025, 9, 26, tzinfo=timezone.utc),
    )


@pytest.fixture
def customer():
    return _user("customer-1", UserRole.CUSTOMER, "Mbuso")


@pytest.fixture
def admin():
    return _user("admin-1", UserRole.ADMIN, "Khumbuzile")


@pytest.fixture
def chef():
    return _user("chef-1", UserRole.CHEF, "Amuh")


@pytest.fixture
def driver():
    return _user("delivery-1", UserRole.DELIVERY, "Mkhaya")


@pytest.fixture
def other_driver():
    return _user("delivery-2", UserRole.DELIVERY, "Sipho")


@pytest.fixture
def burger():
    return MenuItem(
        id="item-burger",
        name="Burger",
        description="Flame grilled beef burger",
        price=89.50,
        category="Mains",
        image="burger.jpg",
        customizations=["Extra cheese", "No onions", "Bacon"],
        prep_time=15,
    )


@pytest.fixture
def platter():
    return MenuItem(
        id="item-platter",
        name="Platter",
        description="Chicken wings, ribs and chips",
        price=195.00,
        category="Platters",
        image="platter.jpg",
        prep_time=25,
    )


@pytest.fixture
def make_order(now):
    counter = {"n": 0}

    def factory(
        status=OrderStatus.PENDING,
        order_type=OrderType.DELIVERY,
        created_at=None,
        assigned_delivery_staff=None,
        customer_id="customer-1",
        items=None,
        total=None,
    ):
        counter["n"] += 1
        items = items or [OrderItem(menu_item_id="item-burger", name="Burger", price=89.50, quantity=1)]
        stamp = created_at or now
        return Order(
            id=f"order-{counter['n']}",
            customer_id=customer_id,
            customer_name="Mbuso",
            customer_phone="0680998913",
            items=items,
            total=total if total is not None else round(sum(i.price * i.quantity for i in items), 2),
            status=status,
            type=order_type,
            delivery_address="123 Main Street, Durban" if order_type == OrderType.DELIVERY else None,
            created_at=stamp,
            updated_at=stamp,
            assigned_delivery_staff=assigned_delivery_staff,
        )

    return factory


@pytest.fixture
def stale(now):
    return now - timedelta(hours=1)
