# bookings/materializer.py
# ============================================================================
# RECONCILIATION SERVICE: BOOKING MATERIALIZER
# ============================================================================
# Purpose: Turn a confirmed payment into persisted booking rows, exactly once
#
# STATE FLOW:
#   START -> IDEMPOTENCY_CHECK -> EXISTING (short-circuit)
#                              -> PAYMENT_VERIFY -> ORDER_FETCH
#                              -> PAYLOAD_DECODE -> CUSTOMER_RESOLVE
#                              -> BOOKING_INSERT -> DONE
#   Any failure -> FAILED (error re-raised to the boundary)
#
# EXACTLY-ONCE:
# - Fast path: booking lookup by payment_txn_id before touching the gateway
# - Authoritative: booking_payments uniqueness inside the insert transaction;
#   losing that race is reported as already_exists, never as an error
# ============================================================================

import asyncio
import uuid
from enum import Enum
from typing import List, Optional

import structlog

from bookings.customers import CustomerResolver
from bookings.pricing import discount_percentage, split_evenly
from config import AppConfig
from errors import (
    DuplicatePaymentError,
    MaterializationTimeoutError,
    MissingBookingDataError,
    PaymentNotSuccessfulError,
    PaymentOrderMismatchError,
    ReconciliationError,
    StoreError,
)
from gateway.client import RazorpayClient
from gateway.intent_codec import decode_intent
from gateway.verifier import PaymentVerifier
from schemas.booking import Booking, BookingIntent, MaterializationResult
from storage.base import IBookingStore, ICustomerStore, IEventLog

logger = structlog.get_logger().bind(component="booking_materializer")

PAYMENT_MODE = "razorpay"


class MaterializationState(str, Enum):
    START = "START"
    IDEMPOTENCY_CHECK = "IDEMPOTENCY_CHECK"
    EXISTING = "EXISTING"
    PAYMENT_VERIFY = "PAYMENT_VERIFY"
    ORDER_FETCH = "ORDER_FETCH"
    PAYLOAD_DECODE = "PAYLOAD_DECODE"
    CUSTOMER_RESOLVE = "CUSTOMER_RESOLVE"
    BOOKING_INSERT = "BOOKING_INSERT"
    DONE = "DONE"
    FAILED = "FAILED"


def build_booking_rows(
    intent: BookingIntent,
    customer_id: str,
    payment_id: str,
    order_id: str,
) -> List[Booking]:
    """One row per station x slot, with totals split evenly across rows"""
    count = intent.row_count
    pricing = intent.pricing
    originals = split_evenly(pricing.original, count)
    finals = split_evenly(pricing.final, count)
    discount_pct = discount_percentage(pricing)
    booking_date = intent.booking_date

    rows = []
    index = 0
    for station_id in intent.selected_stations:
        for slot in intent.slots:
            rows.append(Booking(
                station_id=station_id,
                customer_id=customer_id,
                booking_date=booking_date,
                start_time=slot.start_time,
                end_time=slot.end_time,
                duration=intent.duration,
                original_price=originals[index],
                discount_percentage=discount_pct,
                final_price=finals[index],
                coupon_code=pricing.coupons or None,
                payment_mode=PAYMENT_MODE,
                payment_txn_id=payment_id,
                notes=f"Razorpay Order ID: {order_id}",
            ))
            index += 1
    return rows


class BookingMaterializer:
    """
    Reconciles one (payment_id, order_id) pair into bookings.

    Safe to invoke concurrently and repeatedly for the same payment from any
    trigger path. Request-scoped: holds no state between invocations.

    Example:
        async with RazorpayClient(credentials) as client:
            materializer = BookingMaterializer(client, bookings, customers)
            result = await materializer.materialize("pay_123", "order_456")
    """

    def __init__(
        self,
        client: RazorpayClient,
        booking_store: IBookingStore,
        customer_store: ICustomerStore,
        event_log: Optional[IEventLog] = None,
        config: Optional[AppConfig] = None,
        verifier: Optional[PaymentVerifier] = None,
    ):
        self.client = client
        self.bookings = booking_store
        self.event_log = event_log
        self.config = config or AppConfig.from_env()
        self.verifier = verifier or PaymentVerifier(client)
        self.customers = CustomerResolver(
            customer_store,
            event_log=event_log,
            code_prefix=self.config.customer_code_prefix,
        )

    async def _audit(self, event_type: str, payload: dict, correlation_id: str, severity: str = "INFO"):
        if self.event_log is None:
            return
        await self.event_log.append(
            event_type,
            payload,
            severity=severity,
            agent="booking_materializer",
            correlation_id=correlation_id,
        )

    async def materialize(self, payment_id: str, order_id: str) -> MaterializationResult:
        correlation_id = str(uuid.uuid4())
        log = logger.bind(payment_id=payment_id, order_id=order_id, correlation_id=correlation_id)
        log.info("materialization_state", state=MaterializationState.START.value)

        try:
            async with asyncio.timeout(self.config.materialize_timeout_seconds):
                return await self._run(payment_id, order_id, correlation_id, log)
        except TimeoutError as e:
            log.error("materialization_state",
                      state=MaterializationState.FAILED.value,
                      error="timeout",
                      timeout_s=self.config.materialize_timeout_seconds)
            raise MaterializationTimeoutError(
                f"Booking creation exceeded {self.config.materialize_timeout_seconds:g}s; retry"
            ) from e
        except ReconciliationError as e:
            log.warning("materialization_state",
                        state=MaterializationState.FAILED.value,
                        error=e.message,
                        retryable=e.retryable)
            raise

    async def _run(self, payment_id: str, order_id: str, correlation_id: str, log) -> MaterializationResult:
        def enter(state: MaterializationState, **kw):
            log.info("materialization_state", state=state.value, **kw)

        # 1. Fast-path idempotency
        enter(MaterializationState.IDEMPOTENCY_CHECK)
        existing_id = await self.bookings.find_by_payment(payment_id)
        if existing_id:
            enter(MaterializationState.EXISTING, booking_id=existing_id)
            await self._audit("BOOKING_EXISTING", {"payment_id": payment_id, "booking_id": existing_id}, correlation_id)
            return MaterializationResult(booking_id=existing_id, already_exists=True)

        # 2. Payment must be captured or authorized
        enter(MaterializationState.PAYMENT_VERIFY)
        verification = await self.verifier.verify_payment(payment_id)
        if not verification.is_success:
            await self._audit(
                "PAYMENT_REJECTED",
                {"payment_id": payment_id, "status": verification.status,
                 "error_description": verification.error_description},
                correlation_id,
                severity="WARNING",
            )
            raise PaymentNotSuccessfulError(verification.status)
        if verification.order_id and verification.order_id != order_id:
            raise PaymentOrderMismatchError(payment_id, order_id, verification.order_id)

        # 3. Recover the intent from the order notes
        enter(MaterializationState.ORDER_FETCH)
        order = await self.client.fetch_order(order_id)

        enter(MaterializationState.PAYLOAD_DECODE)
        try:
            intent = decode_intent(order.get("notes"))
        except MissingBookingDataError as e:
            # Paid but unrecoverable: needs a human
            log.error("booking_data_missing", error=e.message)
            await self._audit(
                "BOOKING_DATA_MISSING",
                {"payment_id": payment_id, "order_id": order_id, "error": e.message},
                correlation_id,
                severity="ERROR",
            )
            raise

        # 4. Customer
        enter(MaterializationState.CUSTOMER_RESOLVE)
        customer_id = await self.customers.resolve(intent.customer, correlation_id=correlation_id)

        # 5. Rows, inserted as one group
        rows = build_booking_rows(intent, customer_id, payment_id, order_id)
        enter(MaterializationState.BOOKING_INSERT, row_count=len(rows))
        try:
            inserted = await self.bookings.insert_group(payment_id, order_id, rows)
        except DuplicatePaymentError:
            winner_id = await self.bookings.find_by_payment(payment_id)
            if winner_id is None:
                raise StoreError(
                    f"Bookings for payment {payment_id} reported as duplicate but not found"
                ) from None
            enter(MaterializationState.EXISTING, booking_id=winner_id, race=True)
            await self._audit("BOOKING_EXISTING", {"payment_id": payment_id, "booking_id": winner_id}, correlation_id)
            return MaterializationResult(booking_id=winner_id, already_exists=True)

        booking_id = inserted[0].id
        enter(MaterializationState.DONE, booking_id=booking_id, inserted_count=len(inserted))
        await self._audit(
            "BOOKING_MATERIALIZED",
            {"payment_id": payment_id, "order_id": order_id, "booking_id": booking_id,
             "customer_id": customer_id, "inserted_count": len(inserted)},
            correlation_id,
        )
        return MaterializationResult(booking_id=booking_id, inserted_count=len(inserted))
