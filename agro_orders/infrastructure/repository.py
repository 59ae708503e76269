"""
Persistence and read models for orders.

All writes go through the caller's Session; :meth:`OrderRepository.commit`
is the single place where optimistic-lock and uniqueness failures are turned
into :class:`Conflict`.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from agro_orders.core import get_logger
from agro_orders.domain.enums import OrderStatus, PaymentStatus, Role
from agro_orders.domain.errors import Conflict
from agro_orders.domain.models import Order, to_money

logger = get_logger(__name__)


@dataclass
class OrderFilter:
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    buyer_id: Optional[UUID] = None
    farmer_id: Optional[UUID] = None
    transporter_id: Optional[UUID] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    page: int = 1
    page_size: int = 10


@dataclass
class OrderSummary:
    total_orders: int = 0
    pending_orders: int = 0
    completed_orders: int = 0
    cancelled_orders: int = 0
    total_revenue: Decimal = Decimal("0.00")
    average_order_value: Decimal = Decimal("0.00")


class OrderRepository:
    def __init__(self, db: Session):
        self.db = db

    def add(self, order: Order) -> Order:
        self.db.add(order)
        self.db.flush()  # assign rows before ledger events reference them
        return order

    def find_by_id(self, order_id: UUID) -> Optional[Order]:
        return self.db.get(Order, order_id, options=[selectinload(Order.items)])

    def find_by_order_number(self, order_number: str) -> Optional[Order]:
        stmt = (
            select(Order)
            .where(Order.order_number == order_number)
            .options(selectinload(Order.items))
        )
        return self.db.scalars(stmt).first()

    def _conditions(self, filters: OrderFilter) -> list:
        conditions = []
        if filters.status is not None:
            conditions.append(Order.status == OrderStatus(filters.status))
        if filters.payment_status is not None:
            conditions.append(Order.payment_status == PaymentStatus(filters.payment_status))
        if filters.buyer_id is not None:
            conditions.append(Order.buyer_id == filters.buyer_id)
        if filters.farmer_id is not None:
            conditions.append(Order.farmer_id == filters.farmer_id)
        if filters.transporter_id is not None:
            conditions.append(Order.transporter_id == filters.transporter_id)
        if filters.created_from is not None:
            conditions.append(Order.created_at >= filters.created_from)
        if filters.created_to is not None:
            conditions.append(Order.created_at <= filters.created_to)
        return conditions

    def find_with_filters(self, filters: OrderFilter) -> tuple[list[Order], int]:
        """
        One page of matching orders, newest first, with the total match count.

        The count is a window column of the same SELECT, so page and total
        always come from the same snapshot.
        """
        conditions = self._conditions(filters)
        page = max(filters.page, 1)
        page_size = max(filters.page_size, 1)

        stmt = (
            select(Order, func.count().over().label("total_count"))
            .where(*conditions)
            .options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.order_number.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        rows = self.db.execute(stmt).all()
        if rows:
            return [row[0] for row in rows], rows[0][1]

        if page == 1:
            return [], 0
        # Past the last page: no rows carry the window count. The page is empty,
        # so a separate count cannot disagree with it.
        total = self.db.scalar(select(func.count()).select_from(Order).where(*conditions))
        return [], total or 0

    def summary(self, party_id: Optional[UUID], party_role: Role) -> OrderSummary:
        stmt = select(
            func.count(Order.id).label("total_orders"),
            func.count(case((Order.status == OrderStatus.PENDING, 1))).label("pending_orders"),
            func.count(case((Order.status == OrderStatus.DELIVERED, 1))).label("completed_orders"),
            func.count(case((Order.status == OrderStatus.CANCELLED, 1))).label("cancelled_orders"),
            func.coalesce(func.sum(Order.total_amount), 0).label("total_revenue"),
        )

        party_role = Role(party_role)
        if party_role is Role.BUYER:
            stmt = stmt.where(Order.buyer_id == party_id)
        elif party_role is Role.FARMER:
            stmt = stmt.where(Order.farmer_id == party_id)
        elif party_role is Role.TRANSPORTER:
            stmt = stmt.where(Order.transporter_id == party_id)

        row = self.db.execute(stmt).one()
        summary = OrderSummary(
            total_orders=row.total_orders,
            pending_orders=row.pending_orders,
            completed_orders=row.completed_orders,
            cancelled_orders=row.cancelled_orders,
            total_revenue=to_money(row.total_revenue or 0),
        )
        if summary.total_orders > 0:
            summary.average_order_value = to_money(summary.total_revenue / summary.total_orders)
        return summary

    def count_by_status(self) -> dict[str, int]:
        rows = self.db.execute(select(Order.status, func.count()).group_by(Order.status)).all()
        counts = {status.value: 0 for status in OrderStatus}
        counts.update({OrderStatus(status).value: total for status, total in rows})
        return counts

    def commit(self) -> None:
        """Commit the unit of work; a lost race becomes Conflict."""
        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            logger.warning("Order changed concurrently", extra={'extra_fields': {'error': str(e)}})
            raise Conflict("The order was modified by another request; reload it and retry") from e
        except IntegrityError as e:
            self.db.rollback()
            logger.warning("Order write violated a constraint", extra={'extra_fields': {'error': str(e.orig)}})
            raise Conflict("The order was modified by another request; reload it and retry") from e
