"""
Schemas for the restaurant ordering backend

Entity models double as MongoDB records (collection names in database.py).
Python attributes are snake_case; the API speaks camelCase through the alias
generator, and the record store gets snake_case keys with ISO-8601 dates via
to_record / from_record.
"""
from __future__ import annotations
import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class UserRole(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    CHEF = "chef"
    DELIVERY = "delivery"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class OrderType(str, Enum):
    DINE_IN = "dine-in"
    TAKEAWAY = "takeaway"
    DELIVERY = "delivery"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


PaymentMethod = Literal["card", "mobile_wallet", "cash"]
Priority = Literal["low", "medium", "high"]
SalesWindow = Literal["today", "week", "month", "all"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- Records ----------
ModelT = TypeVar("ModelT", bound=BaseModel)


def to_record(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json")


def record_patch(model: BaseModel, *fields: str) -> Dict[str, Any]:
    return model.model_dump(mode="json", include=set(fields))


def from_record(model_cls: Type[ModelT], doc: Dict[str, Any]) -> ModelT:
    data = {k: v for k, v in doc.items() if k != "_id"}
    return model_cls.model_validate(data)


# ---------- Users ----------
class User(CamelModel):
    """
    Registered account profile
    Collection name: "users"
    """
    id: str
    name: str = Field(..., description="Full name")
    email: EmailStr
    role: UserRole = UserRole.CUSTOMER
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime


class SignupRequest(CamelModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: UserRole = UserRole.CUSTOMER
    phone: Optional[str] = None
    address: Optional[str] = None


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class SessionOut(CamelModel):
    token: str
    user: User


# ---------- Menu ----------
class MenuItem(CamelModel):
    """
    Menu items, edited in place by admins
    Collection name: "menu_items"
    """
    id: str
    name: str
    description: str = ""
    price: float = Field(..., ge=0, description="Unit price")
    category: str = Field(..., description="Free-text label like Mains, Drinks")
    image: str = ""
    available: bool = Field(True, description="Available to order")
    customizations: Optional[List[str]] = Field(None, description="Selectable add-on labels")
    prep_time: int = Field(..., gt=0, description="Preparation time in minutes")


class MenuItemIn(CamelModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    price: float = Field(..., ge=0)
    category: str
    image: str = ""
    available: bool = True
    customizations: Optional[List[str]] = None
    prep_time: int = Field(15, gt=0)


class MenuItemUpdate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    image: Optional[str] = None
    available: Optional[bool] = None
    customizations: Optional[List[str]] = None
    prep_time: Optional[int] = Field(None, gt=0)


# ---------- Orders ----------
class OrderItem(CamelModel):
    """
    Embedded snapshot of a menu item at order time (not a collection)
    """
    model_config = ConfigDict(frozen=True)

    menu_item_id: str = Field(..., description="Referenced menu item id")
    name: str = Field(..., description="Menu item name at time of order")
    price: float = Field(..., ge=0, description="Unit price at time of order")
    quantity: int = Field(..., ge=1)
    customizations: Optional[List[str]] = None
    image: Optional[str] = None


class Order(CamelModel):
    """
    Orders placed by customers
    Collection name: "orders"
    """
    id: str
    customer_id: str
    customer_name: str
    customer_phone: Optional[str] = None
    items: List[OrderItem] = Field(..., min_length=1)
    total: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING
    type: OrderType
    delivery_address: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    assigned_chef: Optional[str] = None
    assigned_delivery_staff: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING

    @model_validator(mode="after")
    def _delivery_needs_address(self) -> "Order":
        if self.type == OrderType.DELIVERY and not (self.delivery_address or "").strip():
            raise ValueError("delivery orders require a delivery address")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


class CartLine(CamelModel):
    menu_item: MenuItem
    quantity: int = Field(..., ge=1)
    customizations: Optional[List[str]] = None

    @property
    def line_total(self) -> float:
        return round(self.menu_item.price * self.quantity, 2)


class CartLineIn(CamelModel):
    menu_item_id: str
    quantity: int = 1
    customizations: Optional[List[str]] = None


class CartLineUpdate(CamelModel):
    quantity: int


class CartLineOut(CamelModel):
    index: int
    menu_item: MenuItem
    quantity: int
    customizations: Optional[List[str]] = None
    line_total: float


class CartOut(CamelModel):
    lines: List[CartLineOut]
    subtotal: float
    item_count: int


# ---------- Payments ----------
_EXPIRY_RE = re.compile(r"^(0[1-9]|1[0-2])/\d{2}$")


class PaymentDetails(CamelModel):
    """
    Payment form shell. Nothing here reaches a gateway.
    """
    payment_method: PaymentMethod = "card"
    card_number: Optional[str] = None
    card_holder_name: Optional[str] = None
    expiry_date: Optional[str] = None
    cvv: Optional[str] = None
    mobile_wallet_number: Optional[str] = None

    @field_validator("card_number")
    @classmethod
    def _card_digits(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        cleaned = v.replace(" ", "")
        if not cleaned.isdigit() or len(cleaned) > 16:
            raise ValueError("card number must be at most 16 digits")
        return cleaned

    @field_validator("expiry_date")
    @classmethod
    def _expiry_shape(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _EXPIRY_RE.match(v):
            raise ValueError("expiry date must look like MM/YY")
        return v

    @field_validator("cvv")
    @classmethod
    def _cvv_digits(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and (not v.isdigit() or len(v) > 3):
            raise ValueError("cvv must be at most 3 digits")
        return v

    @model_validator(mode="after")
    def _method_fields(self) -> "PaymentDetails":
        if self.payment_method == "card" and not (self.card_number and self.card_holder_name):
            raise ValueError("card payments need a card number and holder name")
        if self.payment_method == "mobile_wallet" and not self.mobile_wallet_number:
            raise ValueError("mobile wallet payments need a wallet number")
        return self

    def masked_card_number(self) -> Optional[str]:
        if not self.card_number:
            return None
        return "**** **** **** " + self.card_number[-4:]


class Payment(CamelModel):
    """
    Recorded payment for an order
    Collection name: "payments"
    """
    id: str
    order_id: str
    customer_id: str
    amount: float = Field(..., ge=0)
    payment_method: PaymentMethod
    card_number: Optional[str] = Field(None, description="Masked, last four digits only")
    card_holder_name: Optional[str] = None
    mobile_wallet_number: Optional[str] = None
    status: str = "completed"
    transaction_id: str
    created_at: datetime


class PlaceOrderRequest(CamelModel):
    type: OrderType
    delivery_address: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    payment: Optional[PaymentDetails] = None
    idempotency_key: Optional[str] = None


class TransitionRequest(CamelModel):
    status: OrderStatus


class PaymentStatusUpdate(CamelModel):
    payment_status: PaymentStatus


class ChefAssignment(CamelModel):
    chef_id: str


# ---------- Views ----------
class ChefQueueEntry(CamelModel):
    order: Order
    priority: Priority
    age_minutes: int


class DeliveryPools(CamelModel):
    available: List[Order] = []
    assigned: List[Order] = []
    delivering: List[Order] = []


class AdminOverview(CamelModel):
    today_orders: int
    today_revenue: float
    active_orders: int
    available_menu_items: int
    recent_orders: List[Order] = []


class ItemSales(CamelModel):
    name: str
    quantity: int


class DailySales(CamelModel):
    date: str
    orders: int
    revenue: float


class SalesReport(CamelModel):
    window: SalesWindow
    total_revenue: float
    total_orders: int
    delivered_orders: int
    average_order_value: float
    order_types: Dict[str, int]
    popular_items: List[ItemSales]
    daily_sales: List[DailySales]


class OrderWithActions(CamelModel):
    order: Order
    actions: List[OrderStatus] = []


class CustomerDashboard(CamelModel):
    role: Literal["customer"] = "customer"
    menu: List[MenuItem]
    orders: List[Order]
    active_orders: List[Order]
    cart: CartOut


class AdminDashboard(CamelModel):
    role: Literal["admin"] = "admin"
    overview: AdminOverview
    orders: List[OrderWithActions]
    menu: List[MenuItem]
    sales: SalesReport


class ChefDashboard(CamelModel):
    role: Literal["chef"] = "chef"
    queue: List[ChefQueueEntry]
    pending_count: int
    preparing_count: int


class DeliveryDashboard(CamelModel):
    role: Literal["delivery"] = "delivery"
    pools: DeliveryPools


DashboardView = Annotated[
    Union[CustomerDashboard, AdminDashboard, ChefDashboard, DeliveryDashboard],
    Field(discriminator="role"),
]
