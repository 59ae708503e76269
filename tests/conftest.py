import os

# Point the module-level engine at an in-memory database before the app is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")

import uuid
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from agro_orders.application.schemas import Caller, OrderCreate, OrderItemCreate
from agro_orders.application.service import OrderService
from agro_orders.domain.enums import OrderStatus, PaymentMethod, Role
from agro_orders.domain.errors import UpstreamUnavailable
from agro_orders.domain.models import Base
from agro_orders.infrastructure.catalog import ProductSnapshot
from agro_orders.infrastructure.payment_gateway import ChargeResult


class FakeCatalog:
    """In-memory stand-in for the product catalog service."""

    def __init__(self):
        self.products: dict[uuid.UUID, ProductSnapshot] = {}
        self.unavailable = False
        self.calls = 0

    def add(
        self,
        farmer_id: uuid.UUID,
        price: str = "100.00",
        stock: Optional[str] = "50",
        status: str = "active",
        name: str = "Tomatoes",
        unit: str = "kg",
    ) -> ProductSnapshot:
        product = ProductSnapshot(
            id=uuid.uuid4(),
            farmer_id=farmer_id,
            name=name,
            images=[f"https://img.example/{name.lower()}.jpg"],
            price_per_unit=Decimal(price),
            unit=unit,
            status=status,
            available_stock=Decimal(stock) if stock is not None else None,
            quality_grade="A",
            organic=True,
        )
        self.products[product.product_id] = product
        return product

    def snapshots(self, product_ids):
        self.calls += 1
        if self.unavailable:
            raise UpstreamUnavailable("Product catalog is unavailable")
        return {product_id: self.products.get(product_id) for product_id in product_ids}


class FakeGateway:
    """Payment gateway double; answers with ``result`` or raises ``error``."""

    def __init__(self):
        self.result = ChargeResult(status="succeeded", payment_id="pay_123")
        self.error: Optional[Exception] = None
        self.charges: list[dict] = []

    def charge(self, order_number, amount, method, details):
        self.charges.append({"order_number": order_number, "amount": amount, "method": method})
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'orders.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def buyer():
    return Caller(id=uuid.uuid4(), role=Role.BUYER)


@pytest.fixture
def farmer():
    return Caller(id=uuid.uuid4(), role=Role.FARMER)


@pytest.fixture
def transporter():
    return Caller(id=uuid.uuid4(), role=Role.TRANSPORTER)


@pytest.fixture
def admin():
    return Caller(id=uuid.uuid4(), role=Role.ADMIN)


@pytest.fixture
def payment_gateway_caller():
    return Caller(id=uuid.uuid4(), role=Role.GATEWAY)


@pytest.fixture
def product(catalog, farmer):
    return catalog.add(farmer.id)


@pytest.fixture
def order_payload(product):
    def build(quantity: str = "2", city: str = "Springfield", method: PaymentMethod = PaymentMethod.UPI, items=None):
        return OrderCreate(
            shipping_address="12 Orchard Lane",
            shipping_city=city,
            shipping_state="Green State",
            shipping_zip_code="12345",
            payment_method=method,
            items=items or [OrderItemCreate(product_id=product.product_id, quantity=Decimal(quantity))],
        )
    return build


@pytest.fixture
def place_order(db, catalog, buyer, order_payload):
    def place(**kwargs):
        return OrderService(db, catalog).create_order(buyer, order_payload(**kwargs))
    return place


@pytest.fixture
def advance(db):
    """Walk an order along the happy path as ``caller``."""
    def walk(order, caller, *statuses: OrderStatus):
        service = OrderService(db)
        for status in statuses:
            order = service.update_order_status(order.id, status, caller)
        return order
    return walk
