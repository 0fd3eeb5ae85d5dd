"""
Webhook Receiver
================
Authenticates and classifies asynchronous Razorpay push events.

- Signature: hex HMAC-SHA256 of the raw body with the webhook secret, sent in
  X-Razorpay-Signature. Verified BEFORE parsing.
- Relaxed mode: with no webhook secret configured the signature is not
  checked. Every such request is logged as a warning.
- Events are routed to registered handlers for logging and audit only. No
  handler materializes bookings; the client verification call is the sole
  booking-creation path.
- Must answer well inside the gateway's timeout, so handlers do no network
  I/O beyond the audit append.
"""

import hashlib
import hmac
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import ValidationError

from errors import MalformedWebhookError, SignatureVerificationError
from schemas.booking import WebhookAck, WebhookEvent
from storage.base import IEventLog

logger = structlog.get_logger().bind(component="webhook_receiver")

SIGNATURE_HEADER = "X-Razorpay-Signature"


class WebhookEventType(str, Enum):
    PAYMENT_AUTHORIZED = "payment.authorized"
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    ORDER_PAID = "order.paid"


# =============================================================================
# SIGNATURES
# =============================================================================

def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """Constant-time, case-insensitive comparison against the hex digest"""
    if not signature:
        return False
    expected = compute_signature(raw_body, secret)
    supplied = signature.strip().lower().encode("utf-8", "surrogateescape")
    return hmac.compare_digest(expected.encode(), supplied)


# =============================================================================
# WEBHOOK ROUTER
# =============================================================================

WebhookHandler = Callable[[WebhookEvent], Awaitable[Any]]


class WebhookRouter:
    """Maps event names to handlers."""

    def __init__(self):
        self._handlers: dict[str, WebhookHandler] = {}
        self._logger = logger.bind(component="webhook_router")

    def register(self, event_type: str):
        """Decorator to register handler for event type"""
        def decorator(handler: WebhookHandler):
            self._handlers[event_type] = handler
            self._logger.debug("handler_registered", event_type=event_type)
            return handler
        return decorator

    async def route(self, event: WebhookEvent) -> bool:
        """Run the handler for this event. Returns False when none is registered."""
        handler = self._handlers.get(event.event)
        if not handler:
            self._logger.info("webhook_unhandled", event_type=event.event)
            return False
        await handler(event)
        return True

    @property
    def supported_events(self) -> list[str]:
        return list(self._handlers.keys())


# =============================================================================
# RECEIVER
# =============================================================================

class WebhookReceiver:
    """
    Example:
        receiver = WebhookReceiver(webhook_secret=secret, event_log=log)
        ack = await receiver.handle_webhook(raw_body, signature)
    """

    def __init__(self, webhook_secret: Optional[str], event_log: Optional[IEventLog] = None):
        self.webhook_secret = webhook_secret
        self.event_log = event_log
        self.router = WebhookRouter()
        self._register_handlers()

    def _register_handlers(self):

        @self.router.register(WebhookEventType.PAYMENT_CAPTURED.value)
        async def handle_captured(event: WebhookEvent):
            payment = event.entity("payment")
            logger.info("payment_captured",
                        payment_id=payment.get("id"),
                        order_id=payment.get("order_id"),
                        amount=payment.get("amount"))

        @self.router.register(WebhookEventType.PAYMENT_AUTHORIZED.value)
        async def handle_authorized(event: WebhookEvent):
            payment = event.entity("payment")
            logger.info("payment_authorized",
                        payment_id=payment.get("id"),
                        order_id=payment.get("order_id"))

        @self.router.register(WebhookEventType.PAYMENT_FAILED.value)
        async def handle_failed(event: WebhookEvent):
            payment = event.entity("payment")
            logger.warning("payment_failed",
                           payment_id=payment.get("id"),
                           order_id=payment.get("order_id"),
                           error_code=payment.get("error_code"),
                           error_description=payment.get("error_description"))

        @self.router.register(WebhookEventType.ORDER_PAID.value)
        async def handle_order_paid(event: WebhookEvent):
            order = event.entity("order")
            payment = event.entity("payment")
            logger.info("order_paid",
                        order_id=order.get("id") or payment.get("order_id"),
                        payment_id=payment.get("id"))

    def authenticate(self, raw_body: bytes, signature: Optional[str]) -> None:
        if not self.webhook_secret:
            logger.warning("webhook_signature_unchecked",
                           reason="no webhook secret configured")
            return
        if not verify_signature(raw_body, signature, self.webhook_secret):
            logger.error("webhook_signature_invalid", has_signature=bool(signature))
            raise SignatureVerificationError("Invalid signature")

    @staticmethod
    def parse(raw_body: bytes) -> WebhookEvent:
        try:
            data = json.loads(raw_body)
        except ValueError as e:
            raise MalformedWebhookError(f"Invalid webhook JSON: {e}") from e
        if not isinstance(data, dict):
            raise MalformedWebhookError("Webhook body is not a JSON object")
        try:
            return WebhookEvent.model_validate(data)
        except ValidationError as e:
            raise MalformedWebhookError(f"Invalid webhook event: {e}") from e

    async def handle_webhook(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookAck:
        logger.info("webhook_received",
                    has_signature=bool(signature_header),
                    payload_length=len(raw_body))

        self.authenticate(raw_body, signature_header)
        event = self.parse(raw_body)
        handled = await self.router.route(event)

        if self.event_log is not None:
            payment = event.entity("payment")
            await self.event_log.append(
                "WEBHOOK_RECEIVED",
                {
                    "event": event.event,
                    "handled": handled,
                    "payment_id": payment.get("id"),
                    "order_id": payment.get("order_id"),
                    "status": payment.get("status"),
                },
                agent="webhook_receiver",
                correlation_id=payment.get("order_id"),
            )

        return WebhookAck(event=event.event, handled=handled)
