from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

from agro_orders.core import get_logger
from agro_orders.core_settings import Settings, get_settings
from agro_orders.domain.enums import OrderStatus, PaymentStatus, Role
from agro_orders.domain.errors import NotFound, Unauthorized, ValidationError
from agro_orders.domain.models import Order, OrderItem, OrderTracking, check_quantity, to_money, utcnow
from agro_orders.infrastructure.catalog import CatalogClient
from agro_orders.infrastructure.repository import OrderFilter, OrderRepository, OrderSummary
from .schemas import Caller, OrderCreate, PublicTrackingEventRead, PublicTrackingRead
from .tracking import TrackingLedger, progress_percentage

logger = get_logger(__name__)

REMOTE_CITY_KEYWORDS = ("remote", "rural", "mountain")


class OrderService:
    """Order commands and queries on behalf of an authenticated caller."""

    def __init__(self, db: Session, catalog: Optional[CatalogClient] = None, settings: Optional[Settings] = None):
        self.db = db
        self.catalog = catalog
        self.settings = settings or get_settings()
        self.orders = OrderRepository(db)
        self.ledger = TrackingLedger(db)

    def get(self, order_id: UUID) -> Order:
        order = self.orders.find_by_id(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    def _get_for(self, order_id: UUID, caller: Caller) -> Order:
        order = self.get(order_id)
        if not order.is_party(caller.id, caller.role):
            raise Unauthorized("You are not a party to this order")
        return order

    def shipping_cost_for(self, city: str, sub_total: Decimal) -> Decimal:
        if sub_total > self.settings.FREE_SHIPPING_THRESHOLD:
            return Decimal("0.00")
        cost = self.settings.SHIPPING_BASE_COST
        if any(keyword in city.lower() for keyword in REMOTE_CITY_KEYWORDS):
            cost += self.settings.REMOTE_SHIPPING_SURCHARGE
        return to_money(cost)

    def page_size(self, requested: Optional[int]) -> int:
        if not requested or requested < 1:
            return self.settings.DEFAULT_PAGE_SIZE
        return min(requested, self.settings.MAX_PAGE_SIZE)

    def create_order(self, caller: Caller, data: OrderCreate) -> Order:
        """
        Place a pending order priced from the catalog.

        Every catalog lookup happens before the first write, so a catalog
        outage leaves nothing behind.
        """
        if caller.role != Role.BUYER:
            raise Unauthorized("Only buyers can place orders")
        if not data.items:
            raise ValidationError("An order needs at least one item")
        for item in data.items:
            check_quantity(item.quantity, f"product {item.product_id}")

        snapshots = self.catalog.snapshots(dict.fromkeys(item.product_id for item in data.items))

        now = utcnow()
        items: list[OrderItem] = []
        requested: dict[UUID, Decimal] = {}
        farmer_id = None
        for item in data.items:
            product = snapshots.get(item.product_id)
            if product is None:
                raise ValidationError(f"Product {item.product_id} does not exist")
            if not product.available:
                raise ValidationError(f"{product.name} is not available for purchase")

            requested[item.product_id] = requested.get(item.product_id, Decimal("0")) + item.quantity
            if product.available_stock is not None and requested[item.product_id] > product.available_stock:
                raise ValidationError(
                    f"Insufficient stock for {product.name}: available {product.available_stock}, "
                    f"requested {requested[item.product_id]}"
                )

            if farmer_id is None:
                farmer_id = product.farmer_id
            elif product.farmer_id != farmer_id:
                raise ValidationError("All products in an order must come from the same farmer")

            items.append(OrderItem.snapshot_of(product, item.quantity, now=now))

        sub_total = sum((item.total_price for item in items), Decimal("0.00"))
        order = Order.create(
            buyer_id=caller.id,
            farmer_id=farmer_id,
            items=items,
            payment_method=data.payment_method,
            shipping_address=data.shipping_address,
            shipping_city=data.shipping_city,
            shipping_state=data.shipping_state,
            shipping_zip_code=data.shipping_zip_code,
            shipping_notes=data.shipping_notes,
            tax_amount=to_money(sub_total * self.settings.TAX_RATE),
            shipping_cost=self.shipping_cost_for(data.shipping_city, sub_total),
            estimated_delivery=now + timedelta(days=self.settings.DELIVERY_DAYS),
            now=now,
        )

        self.orders.add(order)
        self.ledger.record(
            order.id,
            order.status,
            location="Order created",
            description="Order has been placed successfully",
            now=now,
        )
        self.orders.commit()

        logger.info(
            "Order created",
            extra={'extra_fields': {
                'order_id': str(order.id),
                'order_number': order.order_number,
                'items': len(items),
                'total_amount': str(order.total_amount),
            }}
        )
        return order

    def get_order(self, order_id: UUID, caller: Caller) -> Order:
        return self._get_for(order_id, caller)

    def get_order_by_number(self, order_number: str) -> PublicTrackingRead:
        """Public tracking view; exposes progress only, no party data."""
        order = self.orders.find_by_order_number(order_number)
        if order is None:
            raise NotFound(f"Order {order_number} not found")
        history = self.ledger.history(order.id)
        return PublicTrackingRead(
            order_number=order.order_number,
            status=order.status,
            progress_percentage=progress_percentage(history),
            current_location=next((event.location for event in reversed(history) if event.location), None),
            estimated_delivery=order.estimated_delivery,
            actual_delivery=order.actual_delivery,
            tracking_number=order.tracking_number,
            tracking_url=order.tracking_url,
            events=[PublicTrackingEventRead.model_validate(event) for event in history],
        )

    def list_my_orders(self, caller: Caller, page: int = 1, page_size: Optional[int] = None) -> tuple[list[Order], int]:
        filters = OrderFilter(page=max(page, 1), page_size=self.page_size(page_size))
        if caller.role == Role.BUYER:
            filters.buyer_id = caller.id
        elif caller.role == Role.FARMER:
            filters.farmer_id = caller.id
        elif caller.role == Role.TRANSPORTER:
            filters.transporter_id = caller.id
        elif caller.role != Role.ADMIN:
            raise Unauthorized("This caller has no order list")
        return self.orders.find_with_filters(filters)

    def find_orders(self, caller: Caller, filters: OrderFilter) -> tuple[list[Order], int]:
        """Filtered listing across all parties; admin only."""
        if caller.role != Role.ADMIN:
            raise Unauthorized("Only administrators can search all orders")
        filters.page = max(filters.page, 1)
        filters.page_size = self.page_size(filters.page_size)
        return self.orders.find_with_filters(filters)

    def update_order_status(
        self,
        order_id: UUID,
        new_status: OrderStatus,
        caller: Caller,
        notes: Optional[str] = None,
        location: Optional[str] = None,
    ) -> Order:
        order = self._get_for(order_id, caller)
        return self._transition(order, new_status, caller, notes=notes, location=location)

    def cancel_order(self, order_id: UUID, caller: Caller, notes: Optional[str] = None) -> Order:
        order = self._get_for(order_id, caller)
        return self._transition(
            order, OrderStatus.CANCELLED, caller, notes=notes, description="Order has been cancelled"
        )

    def _transition(
        self,
        order: Order,
        new_status: OrderStatus,
        caller: Caller,
        notes: Optional[str] = None,
        location: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Order:
        """Status change and its ledger event, committed together."""
        now = utcnow()
        previous = order.apply_status(
            new_status, caller.role, now=now, tracking_url_template=self.settings.TRACKING_URL_TEMPLATE
        )
        # Money already collected goes back to the buyer
        if order.status == OrderStatus.CANCELLED and order.payment_status == PaymentStatus.PAID:
            order.record_payment(PaymentStatus.REFUNDED, now=now)

        self.ledger.record(
            order.id,
            order.status,
            location=location,
            description=description or f"Order status updated to {order.status.value}",
            notes=notes,
            now=now,
        )
        self.orders.commit()

        logger.info(
            "Order status changed",
            extra={'extra_fields': {
                'order_id': str(order.id),
                'from': previous.value,
                'to': order.status.value,
                'role': caller.role.value,
            }}
        )
        return order

    def assign_transporter(
        self,
        order_id: UUID,
        caller: Caller,
        transporter_id: UUID,
        estimated_delivery: datetime,
        vehicle_id: Optional[str] = None,
    ) -> Order:
        order = self._get_for(order_id, caller)
        if caller.role not in (Role.FARMER, Role.ADMIN):
            raise Unauthorized("Only the order's farmer can assign a transporter")

        now = utcnow()
        order.assign_transporter(transporter_id, estimated_delivery, vehicle_id=vehicle_id, now=now)
        self.ledger.record(
            order.id,
            order.status,
            description="Transporter assigned to order",
            notes=f"Vehicle ID: {vehicle_id}" if vehicle_id else None,
            now=now,
        )
        self.orders.commit()

        logger.info(
            "Transporter assigned",
            extra={'extra_fields': {'order_id': str(order.id), 'transporter_id': str(transporter_id)}}
        )
        return order

    def add_tracking_event(
        self,
        order_id: UUID,
        caller: Caller,
        location: Optional[str] = None,
        description: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> OrderTracking:
        """Location or progress note that does not change the order's status."""
        order = self._get_for(order_id, caller)
        if caller.role not in (Role.FARMER, Role.TRANSPORTER, Role.ADMIN):
            raise Unauthorized("Only the farmer or transporter can add tracking events")
        if not (location or description):
            raise ValidationError("A tracking event needs a location or a description")

        now = utcnow()
        # Bumping updated_at makes the version check serialize this with status changes
        order.updated_at = now
        event = self.ledger.record(order.id, order.status, location=location, description=description, notes=notes, now=now)
        self.orders.commit()
        return event

    def get_tracking_history(self, order_id: UUID, caller: Caller) -> tuple[Order, list[OrderTracking]]:
        order = self._get_for(order_id, caller)
        return order, self.ledger.history(order.id)

    def get_order_summary(self, caller: Caller) -> OrderSummary:
        if caller.role not in (Role.BUYER, Role.FARMER, Role.TRANSPORTER, Role.ADMIN):
            raise Unauthorized("This caller has no order summary")
        party_id = None if caller.role == Role.ADMIN else caller.id
        return self.orders.summary(party_id, caller.role)
