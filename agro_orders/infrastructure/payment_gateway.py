"""Outbound charge requests to the payments service."""

from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ValidationError as PayloadError

from agro_orders.core import get_logger
from agro_orders.core_settings import get_settings
from agro_orders.domain.errors import UpstreamUnavailable

logger = get_logger(__name__)


class ChargeResult(BaseModel):
    status: str
    payment_id: Optional[str] = None
    message: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.status == "succeeded"


class PaymentGatewayClient:
    def __init__(self, base_url: str, timeout: float = 5.0, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def charge(self, order_number: str, amount: Decimal, method: str, details: dict[str, Any]) -> ChargeResult:
        """
        Ask the gateway to collect ``amount`` for ``order_number``.

        A 4xx answer is a decline; timeouts, transport errors and 5xx answers
        raise UpstreamUnavailable and nothing is assumed about the charge.
        """
        payload = {
            "order_number": order_number,
            "amount": str(amount),
            "method": method,
            "details": details,
        }
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                response = client.post("/payments/charge", json=payload)
        except httpx.HTTPError as e:
            logger.warning(
                "Payment gateway call failed",
                extra={'extra_fields': {'order_number': order_number, 'error': repr(e)}}
            )
            raise UpstreamUnavailable("Payment gateway is unavailable") from e

        if response.status_code >= 500:
            raise UpstreamUnavailable(f"Payment gateway answered {response.status_code}")
        if response.status_code >= 400:
            return ChargeResult(status="declined", message=response.text or None)

        try:
            return ChargeResult.model_validate(response.json())
        except (ValueError, PayloadError) as e:
            raise UpstreamUnavailable("Payment gateway returned an unreadable answer") from e


def get_payment_gateway() -> PaymentGatewayClient:
    settings = get_settings()
    return PaymentGatewayClient(settings.PAYMENTS_SERVICE_URL, timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
