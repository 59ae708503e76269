from sqlalchemy.orm import Session
from typing import Any, Optional
from uuid import UUID

from agro_orders.core import get_logger
from agro_orders.domain.enums import OrderStatus, PaymentMethod, PaymentStatus, Role
from agro_orders.domain.errors import (
    AlreadyFinalized, Conflict, NotFound, PaymentDeclined, Unauthorized, ValidationError,
)
from agro_orders.domain.models import Order, utcnow
from agro_orders.infrastructure.payment_gateway import ChargeResult, PaymentGatewayClient
from agro_orders.infrastructure.repository import OrderRepository
from .schemas import Caller
from .tracking import TrackingLedger

logger = get_logger(__name__)

PAYMENT_WRITERS = frozenset({Role.ADMIN, Role.GATEWAY})


class PaymentService:
    """
    Reconciles the payment axis of an order with the payment gateway.

    Payment status moves independently of fulfillment status; the only link
    is that a cancelled order can never become paid.
    """

    def __init__(self, db: Session, gateway: Optional[PaymentGatewayClient] = None):
        self.db = db
        self.gateway = gateway
        self.orders = OrderRepository(db)
        self.ledger = TrackingLedger(db)

    def _get(self, order_id: UUID) -> Order:
        order = self.orders.find_by_id(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    def update_payment_status(
        self,
        order_id: UUID,
        payment_status: PaymentStatus,
        caller: Caller,
        payment_id: Optional[str] = None,
    ) -> Order:
        """Apply a payment status reported by the gateway or an administrator."""
        if caller.role not in PAYMENT_WRITERS:
            raise Unauthorized("Only the payment gateway or an administrator can set payment status")

        order = self._get(order_id)
        payment_status = PaymentStatus(payment_status)
        # Gateways redeliver webhooks; a repeat of the current state is a no-op
        if order.payment_status == payment_status and (payment_id is None or payment_id == order.payment_id):
            return order

        now = utcnow()
        previous = order.record_payment(payment_status, payment_id=payment_id, now=now)
        self.ledger.record(
            order.id,
            order.status,
            description=f"Payment status updated to {payment_status.value}",
            notes=f"Payment ID: {payment_id}" if payment_id else None,
            now=now,
        )
        self.orders.commit()

        logger.info(
            "Payment status changed",
            extra={'extra_fields': {
                'order_id': str(order.id),
                'from': previous.value,
                'to': payment_status.value,
                'role': caller.role.value,
            }}
        )
        return order

    def process_payment(
        self,
        order_id: UUID,
        payment_method: PaymentMethod,
        payment_details: dict[str, Any],
        caller: Caller,
    ) -> Order:
        """
        Charge the order total through the gateway and record the outcome.

        If the gateway cannot be reached the order is left exactly as it was.
        A decline is persisted as ``failed`` before PaymentDeclined is raised.
        """
        order = self._get(order_id)
        if caller.role not in (Role.BUYER, Role.ADMIN) or not order.is_party(caller.id, caller.role):
            raise Unauthorized("Only the buyer can pay for this order")

        self._check_payable(order)
        payment_method = PaymentMethod(payment_method)
        if payment_method != order.payment_method:
            raise ValidationError(
                f"Order was placed for {order.payment_method.value}, not {payment_method.value}"
            )
        if payment_method == PaymentMethod.CASH_ON_DELIVERY:
            raise ValidationError("Cash on delivery orders are settled at delivery")

        result = self.gateway.charge(order.order_number, order.total_amount, payment_method.value, payment_details)

        if not result.approved:
            now = utcnow()
            order.record_payment(PaymentStatus.FAILED, payment_id=result.payment_id, now=now)
            self.ledger.record(
                order.id,
                order.status,
                description="Payment failed",
                notes=result.message,
                now=now,
            )
            self.orders.commit()
            logger.warning(
                "Payment declined",
                extra={'extra_fields': {'order_id': str(order.id), 'order_number': order.order_number}}
            )
            raise PaymentDeclined(result.message or "Payment was declined")

        try:
            self._record_paid(order, result)
        except Conflict:
            # The charge went through; reload and record it against the current row once more
            order = self._get(order_id)
            if order.payment_status == PaymentStatus.PAID and order.payment_id == result.payment_id:
                return order
            logger.warning(
                "Retrying payment record after concurrent update",
                extra={'extra_fields': {'order_id': str(order.id), 'payment_id': result.payment_id}}
            )
            self._record_paid(order, result)
        return order

    def _check_payable(self, order: Order) -> None:
        if order.payment_status == PaymentStatus.PAID:
            raise AlreadyFinalized("Order has already been paid")
        if order.payment_status == PaymentStatus.REFUNDED:
            raise AlreadyFinalized("Order payment has been refunded")
        if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            raise AlreadyFinalized(f"Cannot pay for a {order.status.value} order")

    def _record_paid(self, order: Order, result: ChargeResult) -> None:
        now = utcnow()
        order.record_payment(PaymentStatus.PAID, payment_id=result.payment_id, now=now)
        self.ledger.record(
            order.id,
            order.status,
            description="Payment received",
            notes=f"Payment ID: {result.payment_id}" if result.payment_id else None,
            now=now,
        )
        self.orders.commit()
        logger.info(
            "Payment recorded",
            extra={'extra_fields': {
                'order_id': str(order.id),
                'payment_id': result.payment_id,
                'amount': str(order.total_amount),
            }}
        )
