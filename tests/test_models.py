import re
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from agro_orders.domain.enums import OrderStatus, PaymentMethod, PaymentStatus, Role
from agro_orders.domain.errors import AlreadyFinalized, InvalidStateError, ValidationError
from agro_orders.domain.models import Order, OrderItem, generate_order_number


def product(price: str, name: str = "Carrots"):
    return SimpleNamespace(
        product_id=uuid.uuid4(),
        name=name,
        image=None,
        unit_price=Decimal(price),
        unit="kg",
        quality_grade="B",
        organic=False,
        harvest_date=None,
    )


def new_order(items=None, **amounts) -> Order:
    items = items or [OrderItem.snapshot_of(product("10.00"), Decimal("1"))]
    return Order.create(
        buyer_id=uuid.uuid4(),
        farmer_id=uuid.uuid4(),
        items=items,
        payment_method=PaymentMethod.UPI,
        shipping_address="1 Farm Road",
        shipping_city="Springfield",
        shipping_state="Green State",
        **amounts,
    )


def test_total_is_derived_from_parts():
    items = [
        OrderItem.snapshot_of(product("10.00"), Decimal("2")),
        OrderItem.snapshot_of(product("5.00", name="Beans"), Decimal("1")),
    ]
    order = new_order(
        items,
        tax_amount=Decimal("2.50"),
        shipping_cost=Decimal("5.00"),
        discount_amount=Decimal("0"),
    )

    assert order.sub_total == Decimal("25.00")
    assert order.total_amount == Decimal("32.50")
    assert order.status is OrderStatus.PENDING
    assert order.payment_status is PaymentStatus.PENDING


def test_recompute_total_is_idempotent():
    order = new_order(tax_amount=Decimal("1.00"), shipping_cost=Decimal("50.00"))
    first = order.recompute_total()
    assert order.recompute_total() == first == Decimal("61.00")


def test_discount_cannot_exceed_order_value():
    with pytest.raises(ValidationError):
        new_order(discount_amount=Decimal("100.00"))


def test_negative_part_is_rejected():
    with pytest.raises(ValidationError):
        new_order(shipping_cost=Decimal("-1.00"))


def test_order_needs_items():
    with pytest.raises(ValidationError):
        Order.create(
            buyer_id=uuid.uuid4(),
            farmer_id=uuid.uuid4(),
            items=[],
            payment_method=PaymentMethod.UPI,
            shipping_address="1 Farm Road",
            shipping_city="Springfield",
            shipping_state="Green State",
        )


@pytest.mark.parametrize("quantity", ["0", "-1"])
def test_snapshot_rejects_non_positive_quantity(quantity):
    with pytest.raises(ValidationError):
        OrderItem.snapshot_of(product("10.00"), Decimal(quantity))


@pytest.mark.parametrize("quantity", ["0.004", "0.335"])
def test_snapshot_rejects_sub_cent_quantity(quantity):
    with pytest.raises(ValidationError):
        OrderItem.snapshot_of(product("10.00"), Decimal(quantity))


def test_snapshot_total_matches_stored_quantity():
    item = OrderItem.snapshot_of(product("10.00"), Decimal("0.340"))
    assert item.quantity == Decimal("0.34")
    assert item.total_price == item.unit_price * item.quantity


def test_snapshot_line_total_uses_catalog_price():
    item = OrderItem.snapshot_of(product("3.33"), Decimal("1.5"))
    assert item.unit_price == Decimal("3.33")
    assert item.total_price == Decimal("5.00")


def test_order_number_format():
    now = datetime(2024, 3, 9, 14, 5, 7)
    number = generate_order_number(now)
    assert re.fullmatch(r"ORD-20240309140507-[0-9a-f]{8}", number)
    assert generate_order_number(now) != number


def test_status_stamps_are_set_once():
    order = new_order()
    start = datetime(2024, 1, 1, 8, 0, 0)
    for offset, status in enumerate([OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED]):
        order.apply_status(status, Role.FARMER, now=start + timedelta(hours=offset),
                           tracking_url_template="https://track.example/{tracking_number}")

    assert order.tracking_number.startswith("TRK" + order.order_number.rsplit("-", 1)[-1].upper())
    assert order.tracking_url == f"https://track.example/{order.tracking_number}"

    order.apply_status(OrderStatus.IN_TRANSIT, Role.TRANSPORTER, now=start + timedelta(hours=5))
    delivered_at = start + timedelta(hours=6)
    previous = order.apply_status(OrderStatus.DELIVERED, Role.FARMER, now=delivered_at)

    assert previous is OrderStatus.IN_TRANSIT
    assert order.actual_delivery == delivered_at
    with pytest.raises(AlreadyFinalized):
        order.apply_status(OrderStatus.DELIVERED, Role.ADMIN, now=delivered_at + timedelta(hours=1))
    assert order.actual_delivery == delivered_at


def test_cancel_stamps_cancelled_at():
    order = new_order()
    now = datetime(2024, 1, 2, 9, 30)
    order.apply_status(OrderStatus.CANCELLED, Role.BUYER, now=now)
    assert order.cancelled_at == now


def test_transporter_only_assignable_before_shipping():
    order = new_order()
    with pytest.raises(InvalidStateError):
        order.assign_transporter(uuid.uuid4(), datetime(2024, 1, 5))

    order.apply_status(OrderStatus.CONFIRMED, Role.FARMER)
    transporter_id = uuid.uuid4()
    order.assign_transporter(transporter_id, datetime(2024, 1, 5), vehicle_id="TRUCK-7")
    assert order.transporter_id == transporter_id
    assert order.vehicle_id == "TRUCK-7"


def test_cancelled_order_cannot_be_paid():
    order = new_order()
    order.apply_status(OrderStatus.CANCELLED, Role.BUYER)
    with pytest.raises(AlreadyFinalized):
        order.record_payment(PaymentStatus.PAID, payment_id="pay_1")
    assert order.payment_status is PaymentStatus.PENDING


def test_payment_leaves_fulfillment_alone():
    order = new_order()
    paid_at = datetime(2024, 1, 3, 10, 0)
    previous = order.record_payment(PaymentStatus.PAID, payment_id="pay_1", now=paid_at)

    assert previous is PaymentStatus.PENDING
    assert order.status is OrderStatus.PENDING
    assert order.paid_at == paid_at
    assert order.payment_id == "pay_1"


def test_paid_at_is_set_once():
    order = new_order()
    first = datetime(2024, 1, 3, 10, 0)
    order.record_payment(PaymentStatus.PAID, payment_id="pay_1", now=first)
    order.record_payment(PaymentStatus.PAID, payment_id="pay_2", now=first + timedelta(days=1))
    assert order.paid_at == first
    assert order.payment_id == "pay_2"


def test_is_party():
    order = new_order()
    assert order.is_party(order.buyer_id, Role.BUYER)
    assert order.is_party(order.farmer_id, Role.FARMER)
    assert not order.is_party(order.buyer_id, Role.FARMER)
    assert not order.is_party(uuid.uuid4(), Role.TRANSPORTER)
    assert order.is_party(uuid.uuid4(), Role.ADMIN)
    assert not order.is_party(uuid.uuid4(), Role.GATEWAY)
