"""
Payment gateway abstraction (Razorpay) and an in-memory test double.

Checkout happens out of band in the browser; the server only creates orders
and verifies the signature the gateway hands back, an HMAC-SHA256 over
`<order_id>|<payment_id>` keyed with the account secret.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import requests

from messconnect.entities import new_id
from messconnect.errors import UpstreamServiceError

logger = logging.getLogger(__name__)

RAZORPAY_API_URL = "https://api.razorpay.com/v1"
REQUEST_TIMEOUT = 15  # seconds


def compute_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(
    order_id: str, payment_id: str, signature: str, secret: str
) -> bool:
    if not (order_id and payment_id and signature and secret):
        return False
    expected = compute_signature(order_id, payment_id, secret)
    # compare_digest rejects non-ASCII str input, so compare encoded bytes.
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def to_minor_units(amount: float) -> int:
    """Rupees to paise."""
    return int(round(amount * 100))


class PaymentGateway(Protocol):
    key_id: str

    def create_order(
        self, amount: float, currency: str, receipt: str, notes: Optional[dict] = None
    ) -> dict:
        ...

    def fetch_order(self, order_id: str) -> Optional[dict]:
        ...

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        ...


@dataclass
class InMemoryPaymentGateway:
    """Issues fake orders and checks signatures against a local secret."""

    key_id: str = "rzp_test_local"
    key_secret: str = "local-test-secret"
    orders: List[dict] = field(default_factory=list)

    def create_order(
        self, amount: float, currency: str, receipt: str, notes: Optional[dict] = None
    ) -> dict:
        order = {
            "id": f"order_{new_id()[:14]}",
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
            "status": "created",
        }
        self.orders.append(order)
        return order

    def fetch_order(self, order_id: str) -> Optional[dict]:
        return next((order for order in self.orders if order["id"] == order_id), None)

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        return verify_signature(order_id, payment_id, signature, self.key_secret)


@dataclass
class RazorpayGateway:
    key_id: str
    key_secret: str
    base_url: str = RAZORPAY_API_URL

    def create_order(
        self, amount: float, currency: str, receipt: str, notes: Optional[dict] = None
    ) -> dict:
        payload = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": receipt[:40],
            "notes": notes or {},
        }
        try:
            response = requests.post(
                f"{self.base_url}/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise UpstreamServiceError(f"Razorpay order creation failed: {exc}") from exc
        return response.json()

    def fetch_order(self, order_id: str) -> Optional[dict]:
        """The order as Razorpay recorded it, None when the id is unknown."""
        try:
            response = requests.get(
                f"{self.base_url}/orders/{order_id}",
                auth=(self.key_id, self.key_secret),
                timeout=REQUEST_TIMEOUT,
            )
            if response.status_code in (400, 404):
                return None
            response.raise_for_status()
        except requests.RequestException as exc:
            raise UpstreamServiceError(f"Razorpay order lookup failed: {exc}") from exc
        return response.json()

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        return verify_signature(order_id, payment_id, signature, self.key_secret)
