# schemas/booking.py
# ============================================================================
# RECONCILIATION SERVICE: DOMAIN SCHEMAS
# ============================================================================
# Purpose: Type-safe models for booking intents, persisted rows and gateway
# payloads
#
# The BookingIntent wire format is camelCase (it is produced by the booking
# frontend and travels inside gateway order notes); Python attributes are
# snake_case. Both spellings are accepted on input.
# ============================================================================

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# SECTION 1: BOOKING INTENT
# ============================================================================

class IntentModel(BaseModel):
    """Immutable once embedded in a gateway order."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class IntentCustomer(IntentModel):
    id: Optional[str] = None
    name: str
    phone: str = ""
    email: Optional[str] = None


class TimeSlot(IntentModel):
    """One bookable slot. Older clients send start_time/end_time."""
    start_time: str = Field(
        validation_alias=AliasChoices("start", "start_time"),
        serialization_alias="start",
    )
    end_time: str = Field(
        validation_alias=AliasChoices("end", "end_time"),
        serialization_alias="end",
    )


class Pricing(IntentModel):
    """Totals for the whole intent, in major currency units."""
    original: float = Field(ge=0)
    discount: float = Field(default=0, ge=0)
    final: float = Field(ge=0)
    coupons: Optional[str] = None


class BookingIntent(IntentModel):
    """Draft booking embedded in the gateway order at creation time."""
    customer: IntentCustomer
    selected_stations: List[str] = Field(alias="selectedStations", min_length=1)
    slots: List[TimeSlot] = Field(min_length=1)
    selected_date_iso: str = Field(alias="selectedDateISO")
    duration: int = Field(ge=0)
    pricing: Pricing

    @field_validator("selected_date_iso")
    @classmethod
    def _check_date(cls, value: str) -> str:
        """A plain date or a full ISO timestamp; the first 10 chars are the day"""
        try:
            date.fromisoformat(value[:10])
        except ValueError:
            raise ValueError(f"selectedDateISO must start with YYYY-MM-DD, got {value!r}") from None
        return value

    @property
    def booking_date(self) -> date:
        return date.fromisoformat(self.selected_date_iso[:10])

    @property
    def row_count(self) -> int:
        return len(self.selected_stations) * len(self.slots)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================================================
# SECTION 2: PERSISTED ROWS
# ============================================================================

class Customer(BaseModel):
    """Customer row. Phone (digits only) is the natural key."""
    id: Optional[str] = None
    custom_id: str
    name: str
    phone: str
    email: Optional[str] = None
    is_member: bool = False
    loyalty_points: int = 0
    total_spent: Decimal = Decimal("0")
    total_play_time: int = 0


class Booking(BaseModel):
    """One station × slot row of a booking group."""
    id: Optional[str] = None
    station_id: str
    customer_id: str
    booking_date: date
    start_time: str
    end_time: str
    duration: int
    status: str = "confirmed"
    original_price: Decimal
    discount_percentage: Optional[Decimal] = None
    final_price: Decimal
    coupon_code: Optional[str] = None
    payment_mode: str
    payment_txn_id: str
    notes: str = ""


# ============================================================================
# SECTION 3: GATEWAY PAYLOADS
# ============================================================================

class GatewayOrder(BaseModel):
    order_id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: Optional[str] = None
    notes: Dict[str, Any] = Field(default_factory=dict)


class PaymentVerification(BaseModel):
    """Result of a read-only payment status check."""
    payment_id: str
    status: str
    is_success: bool
    amount: Optional[int] = None
    currency: Optional[str] = None
    order_id: Optional[str] = None
    error_description: Optional[str] = None


class WebhookEvent(BaseModel):
    """Gateway push event: {event, payload: {<entity>: {entity: {...}}}}"""
    model_config = ConfigDict(extra="ignore")

    event: str = "unknown"
    payload: Dict[str, Any] = Field(default_factory=dict)
    account_id: Optional[str] = None
    created_at: Optional[int] = None

    def entity(self, name: str) -> Dict[str, Any]:
        wrapper = self.payload.get(name) or {}
        if isinstance(wrapper, dict) and isinstance(wrapper.get("entity"), dict):
            return wrapper["entity"]
        return wrapper if isinstance(wrapper, dict) else {}


class WebhookAck(BaseModel):
    ok: bool = True
    received: bool = True
    event: str
    handled: bool
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================================
# SECTION 4: MATERIALIZATION
# ============================================================================

class MaterializationResult(BaseModel):
    success: bool = True
    booking_id: Optional[str] = None
    already_exists: bool = False
    inserted_count: int = 0
