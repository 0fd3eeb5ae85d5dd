"""
Callback Redirector
===================
Translates the gateway's browser redirect (GET with query string, or POST
with a form/JSON body) into an app URL. Pure boundary adapter: it never
creates bookings. The success page calls /create-booking-from-payment.
"""

import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import parse_qs, quote, urlencode

SUCCESS_PATH = "/public/payment/success"
FAILURE_PATH = "/public/payment/failed"
MISSING_DETAILS_ERROR = "Payment details missing"

PAYMENT_ID_FIELD = "razorpay_payment_id"
ORDER_ID_FIELD = "razorpay_order_id"
SIGNATURE_FIELD = "razorpay_signature"


@dataclass(frozen=True)
class CallbackParams:
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    signature: Optional[str] = None


def parse_body(raw_body: bytes, content_type: Optional[str]) -> dict[str, Any]:
    """Decode a JSON or url-encoded POST body. Anything else yields {}."""
    if not raw_body:
        return {}
    text = raw_body.decode("utf-8", errors="replace")
    if content_type and "application/json" in content_type:
        try:
            data = json.loads(text)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
    return {key: values[0] for key, values in parse_qs(text).items() if values}


def extract_params(query: Mapping[str, str], body: Mapping[str, Any]) -> CallbackParams:
    """Query string wins over body, field by field"""
    def pick(name: str) -> Optional[str]:
        value = query.get(name) or body.get(name)
        return str(value) if value else None

    return CallbackParams(
        payment_id=pick(PAYMENT_ID_FIELD),
        order_id=pick(ORDER_ID_FIELD),
        signature=pick(SIGNATURE_FIELD),
    )


def _url(base_url: str, path: str, params: dict[str, str]) -> str:
    return f"{base_url.rstrip('/')}{path}?{urlencode(params, quote_via=quote)}"


def failure_url(base_url: str, error: str) -> str:
    return _url(base_url, FAILURE_PATH, {"error": error})


def build_callback_redirect(params: CallbackParams, base_url: str) -> str:
    if params.payment_id and params.order_id:
        return _url(base_url, SUCCESS_PATH, {
            "payment_id": params.payment_id,
            "order_id": params.order_id,
            "signature": params.signature or "",
        })
    return failure_url(base_url, MISSING_DETAILS_ERROR)
