# schemas/__init__.py
from schemas.booking import (
    IntentCustomer,
    TimeSlot,
    Pricing,
    BookingIntent,
    Customer,
    Booking,
    GatewayOrder,
    PaymentVerification,
    WebhookEvent,
    WebhookAck,
    MaterializationResult,
)

__all__ = [
    # Booking intent
    "IntentCustomer",
    "TimeSlot",
    "Pricing",
    "BookingIntent",
    # Persisted rows
    "Customer",
    "Booking",
    # Gateway payloads
    "GatewayOrder",
    "PaymentVerification",
    "WebhookEvent",
    "WebhookAck",
    # Materialization
    "MaterializationResult",
]
