from __future__ import annotations

import hashlib
import hmac
import secrets
import time

import httpx

from ..config import Settings
from ..logging_config import logger
from ..models.schemas import PaymentOrder


class PaymentError(Exception):
    pass


def build_receipt(user_id: str, now: float | None = None) -> str:
    stamp = str(int((now if now is not None else time.time()) * 1000))[-6:]
    return f"receipt_{user_id[:20]}_{stamp}"[:40]


class PaymentGateway:
    """Razorpay order creation and checkout signature verification."""

    base_url = "https://api.razorpay.com/v1"

    def __init__(self, key_id: str | None, key_secret: str | None, *, timeout: float = 15.0) -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "PaymentGateway":
        return cls(settings.razorpay_key_id, settings.razorpay_key_secret, timeout=settings.request_timeout_seconds)

    async def create_order(self, user_id: str, amount: int, currency: str, plan: str) -> PaymentOrder:
        receipt = build_receipt(user_id)
        if not (self.key_id and self.key_secret):
            return PaymentOrder(
                id=f"order_sim_{secrets.token_hex(7)}",
                amount=amount,
                currency=currency,
                receipt=receipt,
                simulated=True,
            )
        body = {"amount": amount, "currency": currency, "receipt": receipt, "notes": {"plan": plan, "userId": user_id}}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, auth=(self.key_id, self.key_secret)) as client:
                response = await client.post(f"{self.base_url}/orders", json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            logger.error("payment.order_failed", user_id=user_id, reason=str(exc))
            raise PaymentError("Failed to create order") from exc
        return PaymentOrder(id=data["id"], amount=data["amount"], currency=data["currency"], receipt=data.get("receipt", receipt))

    def expected_signature(self, order_id: str, payment_id: str) -> str:
        if not self.key_secret:
            raise PaymentError("Payment verification is not configured")
        message = f"{order_id}|{payment_id}".encode()
        return hmac.new(self.key_secret.encode(), message, hashlib.sha256).hexdigest()

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return hmac.compare_digest(self.expected_signature(order_id, payment_id), signature)
