from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import (
    String, Text, ForeignKey, Numeric, DateTime, Integer, Boolean, Uuid,
    Enum as SAEnum, UniqueConstraint, Index,
)
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import secrets
import uuid

from . import transitions
from .enums import OrderStatus, PaymentStatus, PaymentMethod, Role
from .errors import AlreadyFinalized, InvalidStateError, ValidationError

CENTS = Decimal("0.01")

# Transporters are booked once the farmer has accepted the order and before it ships
TRANSPORTER_ASSIGNABLE = frozenset({OrderStatus.CONFIRMED, OrderStatus.PROCESSING})


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS)


def check_quantity(quantity, label: str) -> Decimal:
    """Positive and whole to the cent, so the stored quantity prices the line exactly."""
    quantity = Decimal(str(quantity))
    if quantity <= 0:
        raise ValidationError(f"Quantity for {label} must be greater than zero")
    if quantity != quantity.quantize(CENTS):
        raise ValidationError(f"Quantity for {label} allows at most two decimal places")
    return quantity.quantize(CENTS)


def generate_order_number(now: Optional[datetime] = None) -> str:
    """ORD-<UTC timestamp>-<random hex>: sortable by time, not guessable."""
    now = now or utcnow()
    return f"ORD-{now:%Y%m%d%H%M%S}-{secrets.token_hex(4)}"


def _enum(enum_cls, length: int) -> SAEnum:
    # Persist the lowercase values, not the member names
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [member.value for member in members],
    )


class Base(DeclarativeBase):
    pass


class Order(Base):
    __tablename__ = "orders"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(String(100), unique=True, index=True)

    # Parties; identities live in the user service
    buyer_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    farmer_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    transporter_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    vehicle_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    sub_total: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    status: Mapped[OrderStatus] = mapped_column(_enum(OrderStatus, 20), default=OrderStatus.PENDING, index=True)
    payment_status: Mapped[PaymentStatus] = mapped_column(_enum(PaymentStatus, 20), default=PaymentStatus.PENDING, index=True)
    payment_method: Mapped[PaymentMethod] = mapped_column(_enum(PaymentMethod, 30))
    payment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    shipping_address: Mapped[str] = mapped_column(Text)
    shipping_city: Mapped[str] = mapped_column(String(100))
    shipping_state: Mapped[str] = mapped_column(String(100))
    shipping_zip_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    shipping_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    estimated_delivery: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    actual_delivery: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tracking_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Optimistic lock: every UPDATE is guarded by WHERE version = <loaded version>
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.created_at"
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("idx_orders_buyer_status", "buyer_id", "status"),
        Index("idx_orders_farmer_status", "farmer_id", "status"),
        Index("idx_orders_created_status", "created_at", "status"),
    )

    @classmethod
    def create(
        cls,
        buyer_id: uuid.UUID,
        farmer_id: uuid.UUID,
        items: list["OrderItem"],
        payment_method: PaymentMethod,
        shipping_address: str,
        shipping_city: str,
        shipping_state: str,
        shipping_zip_code: Optional[str] = None,
        shipping_notes: Optional[str] = None,
        tax_amount: Decimal = Decimal("0.00"),
        shipping_cost: Decimal = Decimal("0.00"),
        discount_amount: Decimal = Decimal("0.00"),
        estimated_delivery: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> "Order":
        """Open a new pending order from already snapshotted items."""
        if not items:
            raise ValidationError("An order needs at least one item")
        now = now or utcnow()
        order = cls(
            id=uuid.uuid4(),
            order_number=generate_order_number(now),
            buyer_id=buyer_id,
            farmer_id=farmer_id,
            sub_total=sum((item.total_price for item in items), Decimal("0.00")),
            tax_amount=tax_amount,
            shipping_cost=shipping_cost,
            discount_amount=discount_amount,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            payment_method=PaymentMethod(payment_method),
            shipping_address=shipping_address,
            shipping_city=shipping_city,
            shipping_state=shipping_state,
            shipping_zip_code=shipping_zip_code,
            shipping_notes=shipping_notes,
            estimated_delivery=estimated_delivery,
            created_at=now,
            updated_at=now,
            items=list(items),
        )
        order.recompute_total()
        return order

    def recompute_total(self) -> Decimal:
        """Derive total_amount from its parts; safe to call repeatedly."""
        parts = {
            "sub_total": self.sub_total,
            "tax_amount": self.tax_amount,
            "shipping_cost": self.shipping_cost,
            "discount_amount": self.discount_amount,
        }
        for name, value in parts.items():
            if value is None or to_money(value) < 0:
                raise ValidationError(f"{name} must be a non-negative amount")
            setattr(self, name, to_money(value))

        total = self.sub_total + self.tax_amount + self.shipping_cost - self.discount_amount
        if total < 0:
            raise ValidationError("Discount cannot exceed the order value")
        self.total_amount = total
        return total

    def apply_status(
        self,
        new_status: OrderStatus,
        role: Role,
        now: Optional[datetime] = None,
        tracking_url_template: Optional[str] = None,
    ) -> OrderStatus:
        """
        Move the order to ``new_status`` if the transition authority permits it.

        Returns the previous status. Raises AlreadyFinalized, InvalidTransition
        or Unauthorized without touching the order when the move is refused.
        """
        new_status = OrderStatus(new_status)
        previous = OrderStatus(self.status)
        transitions.check(previous, new_status, role)

        now = now or utcnow()
        self.status = new_status
        self.updated_at = now

        if new_status is OrderStatus.CANCELLED and self.cancelled_at is None:
            self.cancelled_at = now
        elif new_status is OrderStatus.DELIVERED and self.actual_delivery is None:
            self.actual_delivery = now
        elif new_status is OrderStatus.SHIPPED and not self.tracking_number:
            suffix = self.order_number.rsplit("-", 1)[-1].upper()
            epoch = int(now.replace(tzinfo=timezone.utc).timestamp())
            self.tracking_number = f"TRK{suffix}{epoch}"
            if tracking_url_template:
                self.tracking_url = tracking_url_template.format(tracking_number=self.tracking_number)

        return previous

    def assign_transporter(
        self,
        transporter_id: uuid.UUID,
        estimated_delivery: datetime,
        vehicle_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        status = OrderStatus(self.status)
        if status not in TRANSPORTER_ASSIGNABLE:
            raise InvalidStateError(
                f"A transporter can only be assigned to confirmed or processing orders, not {status.value}"
            )
        self.transporter_id = transporter_id
        self.vehicle_id = vehicle_id
        self.estimated_delivery = estimated_delivery
        self.updated_at = now or utcnow()

    def record_payment(
        self,
        payment_status: PaymentStatus,
        payment_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PaymentStatus:
        """Update the payment axis; fulfillment status is left alone."""
        payment_status = PaymentStatus(payment_status)
        if payment_status is PaymentStatus.PAID and OrderStatus(self.status) is OrderStatus.CANCELLED:
            raise AlreadyFinalized("A cancelled order cannot be marked as paid")

        now = now or utcnow()
        previous = PaymentStatus(self.payment_status)
        self.payment_status = payment_status
        if payment_id:
            self.payment_id = payment_id
        if payment_status is PaymentStatus.PAID and self.paid_at is None:
            self.paid_at = now
        self.updated_at = now
        return previous

    def is_party(self, caller_id: uuid.UUID, role: Role) -> bool:
        """Whether the caller is entitled to see this order."""
        role = Role(role)
        if role is Role.ADMIN:
            return True
        if role is Role.BUYER:
            return self.buyer_id == caller_id
        if role is Role.FARMER:
            return self.farmer_id == caller_id
        if role is Role.TRANSPORTER:
            return self.transporter_id is not None and self.transporter_id == caller_id
        return False


class OrderItem(Base):
    """Point-in-time copy of a catalog product; never edited after placement."""

    __tablename__ = "order_items"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)

    product_name: Mapped[str] = mapped_column(String(255))
    product_image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    unit: Mapped[str] = mapped_column(String(50))
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    quality_grade: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    organic: Mapped[bool] = mapped_column(Boolean, default=False)
    harvest_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    order: Mapped[Order] = relationship("Order", back_populates="items")

    @classmethod
    def snapshot_of(cls, product, quantity: Decimal, now: Optional[datetime] = None) -> "OrderItem":
        """
        Freeze ``product`` (a catalog snapshot) at ``quantity``.

        The unit price always comes from the catalog, never from the client.
        """
        quantity = check_quantity(quantity, product.name)
        unit_price = to_money(product.unit_price)
        return cls(
            id=uuid.uuid4(),
            product_id=product.product_id,
            product_name=product.name,
            product_image=product.image,
            unit_price=unit_price,
            quantity=quantity,
            unit=product.unit,
            total_price=to_money(unit_price * quantity),
            quality_grade=product.quality_grade,
            organic=product.organic,
            harvest_date=product.harvest_date,
            created_at=now or utcnow(),
        )


class OrderTracking(Base):
    """Append-only ledger row; one per status-relevant event."""

    __tablename__ = "order_tracking"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    # Position within the order's history; (order_id, sequence) is unique
    sequence: Mapped[int] = mapped_column(Integer)
    status: Mapped[OrderStatus] = mapped_column(_enum(OrderStatus, 20))
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("order_id", "sequence", name="uq_order_tracking_order_sequence"),
        Index("idx_order_tracking_order_created", "order_id", "created_at"),
    )
