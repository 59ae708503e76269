"""Read-only client for the product catalog service."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PayloadError, field_validator

from agro_orders.core import get_logger
from agro_orders.core_settings import get_settings
from agro_orders.domain.errors import UpstreamUnavailable

logger = get_logger(__name__)


class ProductSnapshot(BaseModel):
    """Catalog attributes captured when an order is placed."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_id: UUID = Field(alias="id")
    farmer_id: UUID
    name: str
    images: list[str] = Field(default_factory=list)
    unit_price: Decimal = Field(alias="price_per_unit")
    unit: str
    status: str = "active"
    # None when the catalog does not report stock
    available_stock: Optional[Decimal] = None
    quality_grade: Optional[str] = None
    organic: bool = False
    harvest_date: Optional[datetime] = None

    @field_validator("harvest_date")
    @classmethod
    def _as_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @property
    def image(self) -> Optional[str]:
        return self.images[0] if self.images else None

    @property
    def available(self) -> bool:
        return self.status == "active" and (self.available_stock is None or self.available_stock > 0)


class CatalogClient:
    """
    Fetches authoritative price and availability for products.

    Every call is bounded by ``timeout``; timeouts, transport errors and 5xx
    answers raise UpstreamUnavailable so the caller can retry safely.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    def _fetch(self, client: httpx.Client, product_id: UUID) -> Optional[ProductSnapshot]:
        try:
            response = client.get(f"/products/{product_id}")
        except httpx.HTTPError as e:
            logger.warning(
                "Catalog lookup failed",
                extra={'extra_fields': {'product_id': str(product_id), 'error': repr(e)}}
            )
            raise UpstreamUnavailable("Product catalog is unavailable") from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise UpstreamUnavailable(f"Product catalog answered {response.status_code}")

        try:
            return ProductSnapshot.model_validate(response.json())
        except (ValueError, PayloadError) as e:
            raise UpstreamUnavailable("Product catalog returned an unreadable product") from e

    def price_and_availability(self, product_id: UUID) -> Optional[ProductSnapshot]:
        """Snapshot for one product, or None when the catalog does not know it."""
        with self._client() as client:
            return self._fetch(client, product_id)

    def snapshots(self, product_ids: Iterable[UUID]) -> dict[UUID, Optional[ProductSnapshot]]:
        """Snapshots for several products over one connection."""
        with self._client() as client:
            return {product_id: self._fetch(client, product_id) for product_id in product_ids}


def get_catalog() -> CatalogClient:
    settings = get_settings()
    return CatalogClient(settings.CATALOG_SERVICE_URL, timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
