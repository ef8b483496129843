from datetime import datetime, timedelta

import pytest

from errors import AssignmentConflict, InvalidTransition, NotFound, PermissionDenied, ValidationError
from lifecycle import (
    TRANSITIONS, allowed_next, apply_transition, assign_chef, assign_delivery, available_actions,
    set_payment_status,
)
from schemas import OrderStatus, OrderType, PaymentStatus
from views import delivery_pools


@pytest.mark.parametrize("current", list(OrderStatus))
@pytest.mark.parametrize("target", list(OrderStatus))
def test_admin_transition_succeeds_only_along_table(book, admin, make_order, current, target):
    order = book.add(make_order(status=current))

    if target in TRANSITIONS[current]:
        updated = apply_transition(book, order.id, target, admin)
        assert updated.status == target
        assert book.get(order.id).status == target
    else:
        with pytest.raises(InvalidTransition):
            apply_transition(book, order.id, target, admin)
        assert book.get(order.id).status == current


@pytest.mark.parametrize("terminal", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
def test_terminal_states_have_no_way_out(terminal):
    assert allowed_next(terminal) == []


def test_pending_cannot_skip_to_ready(book, admin, make_order):
    order = book.add(make_order())
    with pytest.raises(InvalidTransition):
        apply_transition(book, order.id, "ready", admin)


def test_unknown_order(book, admin):
    with pytest.raises(NotFound):
        apply_transition(book, "nope", OrderStatus.CONFIRMED, admin)


def test_unknown_status_value(book, admin, make_order):
    order = book.add(make_order())
    with pytest.raises(ValidationError):
        apply_transition(book, order.id, "eaten", admin)


def test_transition_stamps_updated_at_and_persists(book, store, admin, make_order, now):
    order = book.add(make_order())
    later = now + timedelta(minutes=3)

    updated = apply_transition(book, order.id, OrderStatus.CONFIRMED, admin, now=later)

    assert updated.updated_at == later
    assert updated.created_at == order.created_at
    row = store.select("orders", {"id": order.id})[0]
    assert row["status"] == "confirmed"
    assert datetime.fromisoformat(row["updated_at"].replace("Z", "+00:00")) == later


def test_chef_moves_confirmed_through_ready(book, chef, make_order):
    order = book.add(make_order(status=OrderStatus.CONFIRMED))
    apply_transition(book, order.id, OrderStatus.PREPARING, chef)
    assert apply_transition(book, order.id, OrderStatus.READY, chef).status == OrderStatus.READY


@pytest.mark.parametrize("current,target", [
    (OrderStatus.PENDING, OrderStatus.CONFIRMED),
    (OrderStatus.PREPARING, OrderStatus.CANCELLED),
    (OrderStatus.READY, OrderStatus.DISPATCHED),
])
def test_chef_cannot_apply_other_edges(book, chef, make_order, current, target):
    order = book.add(make_order(status=current))
    with pytest.raises(PermissionDenied):
        apply_transition(book, order.id, target, chef)


def test_chef_start_preparing_on_pending_is_not_an_edge(book, chef, make_order):
    order = book.add(make_order())
    with pytest.raises(InvalidTransition):
        apply_transition(book, order.id, OrderStatus.PREPARING, chef)


def test_customer_cannot_drive_status(book, customer, make_order):
    order = book.add(make_order())
    with pytest.raises(PermissionDenied):
        apply_transition(book, order.id, OrderStatus.CANCELLED, customer)


def test_delivery_round_trip(book, driver, make_order):
    order = book.add(make_order(status=OrderStatus.READY))
    assign_delivery(book, order.id, driver)
    apply_transition(book, order.id, OrderStatus.DISPATCHED, driver)
    done = apply_transition(book, order.id, OrderStatus.DELIVERED, driver)
    assert done.status == OrderStatus.DELIVERED
    assert done.assigned_delivery_staff == driver.id


def test_second_driver_cannot_claim(book, driver, other_driver, make_order):
    order = book.add(make_order(status=OrderStatus.READY))

    claimed = assign_delivery(book, order.id, driver)
    assert claimed.assigned_delivery_staff == driver.id

    with pytest.raises(AssignmentConflict):
        assign_delivery(book, order.id, other_driver)
    assert book.get(order.id).assigned_delivery_staff == driver.id


def test_reclaim_by_same_driver_is_a_no_op(book, driver, make_order, now):
    order = book.add(make_order(status=OrderStatus.READY))
    first = assign_delivery(book, order.id, driver, now=now + timedelta(minutes=1))
    again = assign_delivery(book, order.id, driver, now=now + timedelta(minutes=5))
    assert again.updated_at == first.updated_at


def test_claim_requires_ready(book, driver, make_order):
    order = book.add(make_order(status=OrderStatus.PREPARING))
    with pytest.raises(InvalidTransition):
        assign_delivery(book, order.id, driver)


def test_only_delivery_staff_claim(book, chef, make_order):
    order = book.add(make_order(status=OrderStatus.READY))
    with pytest.raises(PermissionDenied):
        assign_delivery(book, order.id, chef)


def test_driver_cannot_dispatch_someone_elses_order(book, driver, other_driver, make_order):
    order = book.add(make_order(status=OrderStatus.READY, assigned_delivery_staff=driver.id))
    with pytest.raises(AssignmentConflict):
        apply_transition(book, order.id, OrderStatus.DISPATCHED, other_driver)


def test_cancellation_keeps_assignments(book, admin, make_order):
    order = book.add(make_order(status=OrderStatus.PREPARING, assigned_delivery_staff="delivery-1"))
    order = assign_chef(book, order.id, "chef-1", admin)

    cancelled = apply_transition(book, order.id, OrderStatus.CANCELLED, admin)

    assert cancelled.assigned_delivery_staff == "delivery-1"
    assert cancelled.assigned_chef == "chef-1"


def test_assign_chef_rejects_terminal_orders(book, admin, make_order):
    order = book.add(make_order(status=OrderStatus.DELIVERED))
    with pytest.raises(InvalidTransition):
        assign_chef(book, order.id, "chef-1", admin)


def test_payment_status_is_admin_only(book, admin, chef, make_order):
    order = book.add(make_order())
    with pytest.raises(PermissionDenied):
        set_payment_status(book, order.id, PaymentStatus.PAID, chef)

    updated = set_payment_status(book, order.id, "failed", admin)
    assert updated.payment_status == PaymentStatus.FAILED
    assert updated.status == OrderStatus.PENDING


def test_available_actions_per_role(make_order, admin, chef, driver, other_driver, customer):
    confirmed = make_order(status=OrderStatus.CONFIRMED)
    assert available_actions(confirmed, admin) == [OrderStatus.PREPARING, OrderStatus.CANCELLED]
    assert available_actions(confirmed, chef) == [OrderStatus.PREPARING]
    assert available_actions(confirmed, customer) == []

    ready = make_order(status=OrderStatus.READY, assigned_delivery_staff=driver.id)
    assert available_actions(ready, driver) == [OrderStatus.DISPATCHED]
    assert available_actions(ready, other_driver) == []


def test_driver_must_claim_before_dispatching(book, driver, make_order):
    order = book.add(make_order(status=OrderStatus.READY))

    with pytest.raises(InvalidTransition):
        apply_transition(book, order.id, OrderStatus.DISPATCHED, driver)
    assert book.get(order.id).status == OrderStatus.READY
    assert [o.id for o in delivery_pools(book.all(), driver.id).available] == [order.id]
    assert available_actions(order, driver) == []

    assign_delivery(book, order.id, driver)
    apply_transition(book, order.id, OrderStatus.DISPATCHED, driver)
    assert [o.id for o in delivery_pools(book.all(), driver.id).delivering] == [order.id]


@pytest.mark.parametrize("order_type", [OrderType.DINE_IN, OrderType.TAKEAWAY])
def test_drivers_leave_non_delivery_orders_alone(book, driver, make_order, order_type):
    order = book.add(make_order(status=OrderStatus.READY, order_type=order_type))

    with pytest.raises(PermissionDenied):
        assign_delivery(book, order.id, driver)
    with pytest.raises(PermissionDenied):
        apply_transition(book, order.id, OrderStatus.DISPATCHED, driver)
    assert available_actions(order, driver) == []
