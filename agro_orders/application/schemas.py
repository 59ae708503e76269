from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from agro_orders.domain.enums import OrderStatus, PaymentStatus, PaymentMethod, Role


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Caller(BaseModel):
    """Identity resolved from the bearer token of the current request."""
    model_config = ConfigDict(frozen=True)

    id: UUID
    role: Role


class OrderItemCreate(BaseModel):
    product_id: UUID
    # Quantities are sold by weight/volume, so fractions are allowed
    quantity: Decimal

class OrderCreate(BaseModel):
    shipping_address: str
    shipping_city: str
    shipping_state: str
    shipping_zip_code: Optional[str] = None
    shipping_notes: Optional[str] = None
    payment_method: PaymentMethod
    items: list[OrderItemCreate]

class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None
    location: Optional[str] = None

class CancelRequest(BaseModel):
    notes: Optional[str] = None

class TransporterAssignment(BaseModel):
    transporter_id: UUID
    vehicle_id: Optional[str] = None
    estimated_delivery: datetime

    @field_validator("estimated_delivery")
    @classmethod
    def as_naive_utc(cls, value: datetime) -> datetime:
        return naive_utc(value)

class TrackingEventCreate(BaseModel):
    location: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None

class PaymentRequest(BaseModel):
    payment_method: PaymentMethod
    payment_details: dict[str, Any] = Field(default_factory=dict)

class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus
    payment_id: Optional[str] = None

class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    product_name: str
    product_image: Optional[str] = None
    unit_price: Decimal
    quantity: Decimal
    unit: str
    total_price: Decimal
    quality_grade: Optional[str] = None
    organic: bool = False
    harvest_date: Optional[datetime] = None

class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    buyer_id: UUID
    farmer_id: UUID
    transporter_id: Optional[UUID] = None
    vehicle_id: Optional[str] = None
    sub_total: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    shipping_address: str
    shipping_city: str
    shipping_state: str
    shipping_zip_code: Optional[str] = None
    shipping_notes: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    cancelled_at: Optional[datetime] = None
    items: list[OrderItemRead]

class OrderListRead(BaseModel):
    orders: list[OrderRead]
    total: int
    page: int
    pages: int
    has_more: bool

class TrackingEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: OrderStatus
    location: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

class TrackingHistoryRead(BaseModel):
    order_id: UUID
    status: OrderStatus
    progress_percentage: int
    events: list[TrackingEventRead]

class PublicTrackingEventRead(BaseModel):
    """Tracking event as shown on the public page; internal notes are omitted."""
    model_config = ConfigDict(from_attributes=True)

    status: OrderStatus
    location: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime

class PublicTrackingRead(BaseModel):
    """Everything the unauthenticated tracking page may see. No party data."""
    order_number: str
    status: OrderStatus
    progress_percentage: int
    current_location: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    events: list[PublicTrackingEventRead]

class OrderSummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_orders: int
    pending_orders: int
    completed_orders: int
    cancelled_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
