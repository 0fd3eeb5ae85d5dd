# gateway/__init__.py
from gateway.client import RazorpayClient
from gateway.orders import GatewayOrderService, to_minor_units, sanitize_notes
from gateway.verifier import PaymentVerifier, verify_checkout_signature
from gateway.webhooks import WebhookReceiver, WebhookRouter, WebhookEventType
from gateway.intent_codec import encode_intent, decode_intent
from gateway.callback import build_callback_redirect, extract_params

__all__ = [
    "RazorpayClient",
    # Orders
    "GatewayOrderService",
    "to_minor_units",
    "sanitize_notes",
    # Verification
    "PaymentVerifier",
    "verify_checkout_signature",
    # Webhooks
    "WebhookReceiver",
    "WebhookRouter",
    "WebhookEventType",
    # Intent codec
    "encode_intent",
    "decode_intent",
    # Callback
    "build_callback_redirect",
    "extract_params",
]
