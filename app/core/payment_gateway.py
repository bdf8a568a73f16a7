"""Payment gateway client for order creation and callback verification."""

import hashlib
import hmac
from typing import Any

import httpx
import structlog

from app.config import settings
from app.core.exceptions import ExternalGatewayException

logger = structlog.get_logger(__name__)


def to_minor_units(amount: int) -> int:
    """Convert a whole-currency amount to minor units, charging at least one unit."""
    return max(1, round(amount)) * 100


def compute_signature(secret: str, order_ref: str, payment_ref: str) -> str:
    """HMAC-SHA256 hex digest the gateway sends with a payment callback."""
    payload = f"{order_ref}|{payment_ref}".encode()
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class PaymentGatewayClient:
    """Razorpay-style HTTP API client."""

    def __init__(
        self,
        base_url: str,
        key_id: str,
        key_secret: str,
        currency: str = "INR",
        timeout: float = 30.0,
    ):
        """Initialize client with gateway credentials."""
        self.base_url = base_url.rstrip("/")
        self.key_id = key_id
        self.key_secret = key_secret
        self.currency = currency
        self.timeout = timeout

    async def create_order(
        self,
        amount: int,
        receipt: str,
        notes: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """
        Create a gateway order.

        Args:
            amount: Amount in whole currency units
            receipt: Merchant receipt reference (at most 40 characters)
            notes: Optional metadata attached to the order

        Returns:
            Gateway order document; ``id`` is the order reference

        Raises:
            ExternalGatewayException: If the gateway is unreachable or rejects the order
        """
        payload = {
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "receipt": receipt[:40],
            "notes": notes or {},
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/orders",
                    json=payload,
                    auth=(self.key_id, self.key_secret),
                )
                response.raise_for_status()
                order = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "payment_order_rejected",
                status_code=e.response.status_code,
                receipt=receipt,
                body=e.response.text[:500],
            )
            raise ExternalGatewayException("Payment gateway rejected the order") from e
        except httpx.HTTPError as e:
            logger.error("payment_gateway_unreachable", receipt=receipt, error=str(e))
            raise ExternalGatewayException("Payment gateway is unavailable") from e

        if not isinstance(order, dict) or not order.get("id"):
            raise ExternalGatewayException("Payment gateway returned an invalid order")

        logger.info("payment_order_created", order_ref=order["id"], receipt=receipt)
        return order

    def verify_signature(self, order_ref: str, payment_ref: str, signature: str) -> bool:
        """Check a callback signature in constant time."""
        if not signature:
            return False
        expected = compute_signature(self.key_secret, order_ref, payment_ref)
        return hmac.compare_digest(expected, signature)


def get_payment_gateway() -> PaymentGatewayClient:
    """Build the gateway client from settings."""
    return PaymentGatewayClient(
        base_url=settings.payment_gateway_url,
        key_id=settings.payment_key_id,
        key_secret=settings.payment_key_secret,
        currency=settings.payment_currency,
        timeout=settings.payment_timeout_seconds,
    )
