from sqlalchemy import select
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

from agro_orders.domain.enums import OrderStatus
from agro_orders.domain.models import OrderTracking, utcnow

# Display weight of each status; cancelled and refunded orders report no progress
PROGRESS_WEIGHTS = {
    OrderStatus.PENDING: 0,
    OrderStatus.CONFIRMED: 20,
    OrderStatus.PROCESSING: 40,
    OrderStatus.SHIPPED: 60,
    OrderStatus.IN_TRANSIT: 80,
    OrderStatus.DELIVERED: 100,
    OrderStatus.CANCELLED: 0,
    OrderStatus.REFUNDED: 0,
}


def progress_percentage(history: Sequence[OrderTracking]) -> int:
    if not history:
        return 0
    return PROGRESS_WEIGHTS[OrderStatus(history[-1].status)]


class TrackingLedger:
    """
    Append-only history of an order's status.

    ``record`` only adds rows to the caller's session; the caller commits them
    together with the order change they describe.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        order_id: UUID,
        status: OrderStatus,
        location: Optional[str] = None,
        description: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OrderTracking:
        now = now or utcnow()
        last = self.db.execute(
            select(OrderTracking.sequence, OrderTracking.created_at)
            .where(OrderTracking.order_id == order_id)
            .order_by(OrderTracking.sequence.desc())
            .limit(1)
        ).first()
        sequence = 1
        if last is not None:
            sequence = last.sequence + 1
            # Keep created_at ordering identical to sequence ordering under clock skew
            now = max(now, last.created_at)

        event = OrderTracking(
            order_id=order_id,
            sequence=sequence,
            status=OrderStatus(status),
            location=location,
            description=description,
            notes=notes,
            created_at=now,
        )
        self.db.add(event)
        return event

    def history(self, order_id: UUID) -> list[OrderTracking]:
        stmt = (
            select(OrderTracking)
            .where(OrderTracking.order_id == order_id)
            .order_by(OrderTracking.created_at, OrderTracking.sequence)
        )
        return list(self.db.scalars(stmt))

    def latest(self, order_id: UUID) -> Optional[OrderTracking]:
        stmt = (
            select(OrderTracking)
            .where(OrderTracking.order_id == order_id)
            .order_by(OrderTracking.created_at.desc(), OrderTracking.sequence.desc())
            .limit(1)
        )
        return self.db.scalars(stmt).first()
