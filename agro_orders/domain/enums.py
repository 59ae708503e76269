from enum import Enum


class OrderStatus(str, Enum):
    """Fulfillment progression of an order."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    DIGITAL_WALLET = "digital_wallet"
    UPI = "upi"
    CASH_ON_DELIVERY = "cash_on_delivery"


class Role(str, Enum):
    BUYER = "buyer"
    FARMER = "farmer"
    TRANSPORTER = "transporter"
    ADMIN = "admin"
    # Machine caller used by the payment gateway webhook
    GATEWAY = "gateway"


TERMINAL_STATUSES = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
})
