import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from agro_orders.application.schemas import Caller
from agro_orders.application.service import OrderService
from agro_orders.domain.enums import OrderStatus, PaymentStatus, Role
from agro_orders.domain.errors import Unauthorized
from agro_orders.infrastructure.repository import OrderFilter, OrderRepository


@pytest.fixture
def five_orders(place_order):
    return [place_order() for _ in range(5)]


class TestListing:

    def test_pages_are_newest_first_with_total(self, db, five_orders, buyer):
        service = OrderService(db)
        first, total = service.list_my_orders(buyer, page=1, page_size=2)
        second, _ = service.list_my_orders(buyer, page=2, page_size=2)
        third, _ = service.list_my_orders(buyer, page=3, page_size=2)

        assert total == 5
        assert len(first) == 2 and len(second) == 2 and len(third) == 1
        seen = [o.id for o in first + second + third]
        assert sorted(seen) == sorted(o.id for o in five_orders)
        created = [o.created_at for o in first + second + third]
        assert created == sorted(created, reverse=True)

    def test_page_past_the_end_still_reports_total(self, db, five_orders, buyer):
        orders, total = OrderService(db).list_my_orders(buyer, page=10, page_size=2)
        assert orders == []
        assert total == 5

    def test_page_size_is_capped(self, db, buyer):
        service = OrderService(db)
        assert service.page_size(10_000) == service.settings.MAX_PAGE_SIZE
        assert service.page_size(None) == service.settings.DEFAULT_PAGE_SIZE

    def test_parties_only_see_their_orders(self, db, five_orders, buyer, farmer):
        service = OrderService(db)
        stranger = Caller(id=uuid.uuid4(), role=Role.BUYER)

        assert service.list_my_orders(stranger)[1] == 0
        assert service.list_my_orders(farmer)[1] == 5
        assert service.list_my_orders(Caller(id=uuid.uuid4(), role=Role.TRANSPORTER))[1] == 0

    def test_gateway_has_no_order_list(self, db, payment_gateway_caller):
        with pytest.raises(Unauthorized):
            OrderService(db).list_my_orders(payment_gateway_caller)


class TestAdminSearch:

    def test_filters_combine(self, db, five_orders, farmer, admin):
        service = OrderService(db)
        service.update_order_status(five_orders[0].id, OrderStatus.CONFIRMED, farmer)
        service.update_order_status(five_orders[1].id, OrderStatus.CONFIRMED, farmer)
        five_orders[1].record_payment(PaymentStatus.PAID, payment_id="pay_1")
        db.commit()

        confirmed, total = service.find_orders(admin, OrderFilter(status=OrderStatus.CONFIRMED))
        assert total == 2
        assert {o.id for o in confirmed} == {five_orders[0].id, five_orders[1].id}

        paid, total = service.find_orders(
            admin, OrderFilter(status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.PAID)
        )
        assert total == 1
        assert paid[0].id == five_orders[1].id

    def test_created_range(self, db, five_orders, admin):
        newest = max(o.created_at for o in five_orders)
        orders, total = OrderService(db).find_orders(
            admin, OrderFilter(created_from=newest, created_to=newest + timedelta(seconds=1))
        )
        assert total >= 1
        assert all(o.created_at >= newest for o in orders)

    def test_only_admin_searches(self, db, buyer):
        with pytest.raises(Unauthorized):
            OrderService(db).find_orders(buyer, OrderFilter())


class TestSummary:

    def test_no_orders_gives_zeros(self, db, buyer):
        summary = OrderService(db).get_order_summary(buyer)
        assert summary.total_orders == 0
        assert summary.total_revenue == Decimal("0.00")
        assert summary.average_order_value == Decimal("0.00")

    def test_counts_and_revenue(self, db, place_order, buyer, farmer):
        service = OrderService(db)
        first = place_order(quantity="1")
        second = place_order(quantity="3")
        service.cancel_order(second.id, buyer)

        summary = service.get_order_summary(farmer)
        assert summary.total_orders == 2
        assert summary.pending_orders == 1
        assert summary.cancelled_orders == 1
        assert summary.completed_orders == 0
        assert summary.total_revenue == first.total_amount + second.total_amount
        assert summary.average_order_value == ((first.total_amount + second.total_amount) / 2).quantize(Decimal("0.01"))

    def test_admin_summary_is_global(self, db, place_order, admin):
        place_order()
        place_order()
        assert OrderService(db).get_order_summary(admin).total_orders == 2

    def test_gateway_has_no_summary(self, db, payment_gateway_caller):
        with pytest.raises(Unauthorized):
            OrderService(db).get_order_summary(payment_gateway_caller)


def test_repository_lookup_by_number(db, place_order):
    order = place_order()
    assert OrderRepository(db).find_by_order_number(order.order_number).id == order.id
    assert OrderRepository(db).find_by_order_number("ORD-missing") is None
