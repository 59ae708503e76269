from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
from uuid import UUID
import math

from agro_orders.infrastructure.db import get_db
from agro_orders.infrastructure.catalog import CatalogClient, get_catalog
from agro_orders.infrastructure.payment_gateway import PaymentGatewayClient, get_payment_gateway
from agro_orders.infrastructure.repository import OrderFilter
from agro_orders.application.service import OrderService
from agro_orders.application.payments import PaymentService
from agro_orders.application.tracking import progress_percentage
from agro_orders.application.schemas import (
    Caller, CancelRequest, OrderCreate, OrderListRead, OrderRead, OrderStatusUpdate, OrderSummaryRead,
    PaymentRequest, PaymentStatusUpdate, PublicTrackingRead, TrackingEventCreate, TrackingEventRead,
    TrackingHistoryRead, TransporterAssignment, naive_utc,
)
from agro_orders.domain.enums import OrderStatus, PaymentStatus
from .auth_local import get_caller

router = APIRouter(prefix="/orders", tags=["orders"])

def _page(orders, total: int, page: int, page_size: int) -> OrderListRead:
    return OrderListRead(
        orders=[OrderRead.model_validate(order) for order in orders],
        total=total,
        page=page,
        pages=math.ceil(total / page_size) if total else 0,
        has_more=page * page_size < total,
    )

@router.post("/", response_model=OrderRead, status_code=201)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    catalog: CatalogClient = Depends(get_catalog),
    caller: Caller = Depends(get_caller),
):
    """Place an order; prices and availability come from the catalog."""
    return OrderService(db, catalog).create_order(caller, payload)

@router.get("/", response_model=OrderListRead)
def find_orders(
    status: Optional[OrderStatus] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    buyer_id: Optional[UUID] = Query(None),
    farmer_id: Optional[UUID] = Query(None),
    transporter_id: Optional[UUID] = Query(None),
    created_from: Optional[datetime] = Query(None, description="Inclusive lower bound on created_at (UTC)"),
    created_to: Optional[datetime] = Query(None, description="Inclusive upper bound on created_at (UTC)"),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, description="Capped at the configured maximum"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """Search all orders (administrators only)."""
    filters = OrderFilter(
        status=status,
        payment_status=payment_status,
        buyer_id=buyer_id,
        farmer_id=farmer_id,
        transporter_id=transporter_id,
        created_from=naive_utc(created_from),
        created_to=naive_utc(created_to),
        page=page,
        page_size=page_size or 0,
    )
    service = OrderService(db)
    orders, total = service.find_orders(caller, filters)
    return _page(orders, total, filters.page, filters.page_size)

@router.get("/mine", response_model=OrderListRead)
def list_my_orders(
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """Orders where the caller is the buyer, farmer or assigned transporter."""
    service = OrderService(db)
    size = service.page_size(page_size)
    orders, total = service.list_my_orders(caller, page=page, page_size=size)
    return _page(orders, total, page, size)

@router.get("/summary", response_model=OrderSummaryRead)
def get_order_summary(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return OrderService(db).get_order_summary(caller)

@router.get("/track/{order_number}", response_model=PublicTrackingRead)
def track_order(order_number: str, db: Session = Depends(get_db)):
    """Public tracking by order number; no authentication."""
    return OrderService(db).get_order_by_number(order_number)

@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: UUID, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return OrderService(db).get_order(order_id, caller)

@router.patch("/{order_id}/status", response_model=OrderRead)
def update_order_status(
    order_id: UUID,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return OrderService(db).update_order_status(
        order_id, payload.status, caller, notes=payload.notes, location=payload.location
    )

@router.post("/{order_id}/cancel", response_model=OrderRead)
def cancel_order(
    order_id: UUID,
    payload: Optional[CancelRequest] = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return OrderService(db).cancel_order(order_id, caller, notes=payload.notes if payload else None)

@router.post("/{order_id}/transporter", response_model=OrderRead)
def assign_transporter(
    order_id: UUID,
    payload: TransporterAssignment,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return OrderService(db).assign_transporter(
        order_id,
        caller,
        payload.transporter_id,
        payload.estimated_delivery,
        vehicle_id=payload.vehicle_id,
    )

@router.post("/{order_id}/payment", response_model=OrderRead)
def process_payment(
    order_id: UUID,
    payload: PaymentRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
    caller: Caller = Depends(get_caller),
):
    return PaymentService(db, gateway).process_payment(
        order_id, payload.payment_method, payload.payment_details, caller
    )

@router.post("/{order_id}/payment-status", response_model=OrderRead)
def update_payment_status(
    order_id: UUID,
    payload: PaymentStatusUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """Payment gateway webhook."""
    return PaymentService(db).update_payment_status(
        order_id, payload.payment_status, caller, payment_id=payload.payment_id
    )

@router.get("/{order_id}/tracking", response_model=TrackingHistoryRead)
def get_tracking_history(order_id: UUID, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    order, history = OrderService(db).get_tracking_history(order_id, caller)
    return TrackingHistoryRead(
        order_id=order.id,
        status=order.status,
        progress_percentage=progress_percentage(history),
        events=[TrackingEventRead.model_validate(event) for event in history],
    )

@router.post("/{order_id}/tracking", response_model=TrackingEventRead, status_code=201)
def add_tracking_event(
    order_id: UUID,
    payload: TrackingEventCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return OrderService(db).add_tracking_event(
        order_id, caller, location=payload.location, description=payload.description, notes=payload.notes
    )
