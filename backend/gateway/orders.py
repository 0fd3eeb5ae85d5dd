"""
Gateway Order Service
=====================
Creates Razorpay orders before payment. The gateway is the system of record
for the order; nothing is persisted locally. The BookingIntent rides along in
the order notes so that it can be recovered after payment.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

import structlog

from config import AppConfig
from errors import IntentTooLargeError, InvalidAmountError, InvalidOrderError
from gateway.client import RazorpayClient
from gateway.intent_codec import CHUNK_KEY_PREFIX, MAX_NOTES, NOTE_VALUE_LIMIT, encode_intent
from schemas.booking import BookingIntent, GatewayOrder

logger = structlog.get_logger().bind(component="order_service")

MIN_AMOUNT_MINOR = 100
RECEIPT_MAX_LENGTH = 40


def to_minor_units(amount: Any) -> int:
    """Major units -> minor units, rounding half up"""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(f"Invalid amount: {amount!r}") from None
    if not value.is_finite():
        raise InvalidAmountError(f"Invalid amount: {amount!r}")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_receipt(receipt: str) -> str:
    receipt_id = (receipt or "")[:RECEIPT_MAX_LENGTH].strip()
    if not receipt_id:
        raise InvalidOrderError("Receipt ID cannot be empty")
    return receipt_id


def sanitize_notes(notes: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Keep only non-empty string values within the gateway's length limit"""
    if not isinstance(notes, Mapping):
        return {}
    return {
        key: value
        for key, value in notes.items()
        if key and isinstance(key, str)
        and value and isinstance(value, str)
        and len(value) <= NOTE_VALUE_LIMIT
    }


class GatewayOrderService:
    """Wraps order creation with amount, receipt and notes validation."""

    def __init__(self, client: RazorpayClient, config: Optional[AppConfig] = None):
        self.client = client
        self.config = config or AppConfig.from_env()

    def build_order_request(
        self,
        amount: Any,
        receipt: str,
        notes: Optional[Mapping[str, Any]] = None,
        intent: Optional[BookingIntent] = None,
    ) -> Dict[str, Any]:
        amount_minor = to_minor_units(amount)
        if amount_minor < MIN_AMOUNT_MINOR:
            raise InvalidAmountError(
                f"Amount must be at least {MIN_AMOUNT_MINOR} minor units, got {amount_minor}"
            )

        body: Dict[str, Any] = {
            "amount": amount_minor,
            "currency": self.config.currency,
            "receipt": normalize_receipt(receipt),
        }

        valid_notes = sanitize_notes(notes)
        if intent is not None:
            # Caller-supplied envelopes would corrupt reassembly
            valid_notes = {
                k: v for k, v in valid_notes.items() if not k.startswith(CHUNK_KEY_PREFIX)
            }
            intent_notes = encode_intent(intent)
            if len(valid_notes) + len(intent_notes) > MAX_NOTES:
                raise IntentTooLargeError(
                    f"Booking intent needs {len(intent_notes)} notes and "
                    f"{len(valid_notes)} are already used (limit {MAX_NOTES})"
                )
            valid_notes.update(intent_notes)

        if valid_notes:
            body["notes"] = valid_notes
        return body

    async def create_order(
        self,
        amount: Any,
        receipt: str,
        notes: Optional[Mapping[str, Any]] = None,
        intent: Optional[BookingIntent] = None,
    ) -> GatewayOrder:
        body = self.build_order_request(amount, receipt, notes, intent)
        log = logger.bind(receipt=body["receipt"], amount=body["amount"])
        log.info("order_create_requested",
                 currency=body["currency"],
                 note_count=len(body.get("notes", {})),
                 has_intent=intent is not None)

        order = await self.client.create_order(body)

        log.info("order_created", order_id=order.get("id"))
        return GatewayOrder(
            order_id=order["id"],
            amount=order["amount"],
            currency=order["currency"],
            receipt=order.get("receipt"),
            status=order.get("status"),
            notes=order["notes"] if isinstance(order.get("notes"), dict) else {},
        )
