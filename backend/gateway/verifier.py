"""
Payment Verifier
================
Read-only payment status check against the gateway. Idempotent and free of
side effects, so any trigger path may call it as often as it likes.
"""

import hashlib
import hmac

import structlog

from gateway.client import RazorpayClient
from schemas.booking import PaymentVerification

logger = structlog.get_logger().bind(component="payment_verifier")

SUCCESS_STATUSES = frozenset({"captured", "authorized"})


def is_successful_status(status: str) -> bool:
    return status in SUCCESS_STATUSES


def verify_checkout_signature(
    order_id: str,
    payment_id: str,
    signature: str,
    key_secret: str,
) -> bool:
    """Checkout handler signature: HMAC-SHA256("<order_id>|<payment_id>")"""
    expected = hmac.new(
        key_secret.encode(),
        f"{order_id}|{payment_id}".encode(),
        hashlib.sha256,
    ).hexdigest()
    supplied = (signature or "").strip().lower().encode("utf-8", "surrogateescape")
    return hmac.compare_digest(expected.encode(), supplied)


class PaymentVerifier:
    def __init__(self, client: RazorpayClient):
        self.client = client

    async def verify_payment(self, payment_id: str) -> PaymentVerification:
        payment = await self.client.fetch_payment(payment_id)
        status = payment.get("status") or "unknown"

        result = PaymentVerification(
            payment_id=payment.get("id", payment_id),
            status=status,
            is_success=is_successful_status(status),
            amount=payment.get("amount"),
            currency=payment.get("currency"),
            order_id=payment.get("order_id"),
            error_description=payment.get("error_description"),
        )

        log = logger.bind(payment_id=result.payment_id, order_id=result.order_id)
        if result.is_success:
            log.info("payment_verified", status=status, amount=result.amount)
        else:
            log.warning("payment_not_successful",
                        status=status,
                        error_description=result.error_description)
        return result
