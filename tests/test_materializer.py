import asyncio
import base64
import json
from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from bookings.materializer import BookingMaterializer, build_booking_rows
from errors import (
    MaterializationTimeoutError,
    MissingBookingDataError,
    PaymentNotSuccessfulError,
    PaymentOrderMismatchError,
)
from gateway.intent_codec import encode_intent
from schemas.booking import BookingIntent
from storage.memory import InMemoryBookingStore


@pytest.fixture
def materializer(client, booking_store, customer_store, event_log, app_config):
    return BookingMaterializer(client, booking_store, customer_store, event_log=event_log, config=app_config)


class StalePrecheckStore(InMemoryBookingStore):
    """Pre-check misses a group committed by a concurrent request"""

    def __init__(self):
        super().__init__()
        self.lookups = 0

    async def find_by_payment(self, payment_txn_id):
        self.lookups += 1
        if self.lookups == 1:
            return None
        return await super().find_by_payment(payment_txn_id)


class SlowStore(InMemoryBookingStore):
    async def find_by_payment(self, payment_txn_id):
        await asyncio.sleep(5)
        return None


def test_rows_are_station_by_slot_product(intent):
    data = intent.to_wire()
    data["slots"] = [{"start": "18:00", "end": "18:30"}, {"start": "18:30", "end": "19:00"}]
    data["pricing"] = {"original": 1000, "discount": 100, "final": 900, "coupons": "HAPPY10"}
    data["selectedDateISO"] = "2026-10-20T00:00:00.000Z"
    rows = build_booking_rows(BookingIntent.model_validate(data), "cust_1", "pay_1", "order_1")

    assert [(r.station_id, r.start_time) for r in rows] == [
        ("st1", "18:00"), ("st1", "18:30"), ("st2", "18:00"), ("st2", "18:30"),
    ]
    assert sum(r.final_price for r in rows) == Decimal("900.00")
    assert {r.discount_percentage for r in rows} == {Decimal("10.00")}
    assert {r.coupon_code for r in rows} == {"HAPPY10"}
    assert {r.booking_date for r in rows} == {date(2026, 10, 20)}
    assert {r.notes for r in rows} == {"Razorpay Order ID: order_1"}
    assert {r.payment_mode for r in rows} == {"razorpay"}


def test_date_prefix_is_required(intent):
    data = intent.to_wire()
    data["selectedDateISO"] = "tomorrow"
    with pytest.raises(ValidationError, match="selectedDateISO must start with YYYY-MM-DD"):
        BookingIntent.model_validate(data)


@pytest.mark.asyncio
async def test_invalid_booking_date_writes_nothing(gateway, materializer, intent, booking_store, customer_store, event_log):
    data = intent.to_wire()
    data["selectedDateISO"] = "tomorrow"
    gateway.payment("pay_1", "order_1")
    gateway.order("order_1", {"booking_data": base64.b64encode(json.dumps(data).encode()).decode()})

    with pytest.raises(MissingBookingDataError):
        await materializer.materialize("pay_1", "order_1")

    assert customer_store.customers == []
    assert booking_store.bookings == []
    assert len(event_log.of_type("BOOKING_DATA_MISSING")) == 1


@pytest.mark.asyncio
async def test_captured_payment_creates_rows(gateway, materializer, intent, booking_store, customer_store, event_log):
    gateway.payment("pay_1", "order_1", status="captured")
    gateway.order("order_1", encode_intent(intent))

    result = await materializer.materialize("pay_1", "order_1")

    assert result.success and not result.already_exists
    assert result.inserted_count == 2
    rows = booking_store.bookings
    assert len(rows) == 2
    assert result.booking_id == rows[0].id
    assert {r.final_price for r in rows} == {Decimal("500.00")}
    assert {r.payment_txn_id for r in rows} == {"pay_1"}
    assert {r.status for r in rows} == {"confirmed"}
    assert {r.discount_percentage for r in rows} == {None}
    [customer] = customer_store.customers
    assert {r.customer_id for r in rows} == {customer.id}
    assert len(event_log.of_type("BOOKING_MATERIALIZED")) == 1


@pytest.mark.asyncio
async def test_repeat_call_is_idempotent(gateway, materializer, intent, booking_store):
    payment_route = gateway.payment("pay_1", "order_1")
    gateway.order("order_1", encode_intent(intent))

    first = await materializer.materialize("pay_1", "order_1")
    second = await materializer.materialize("pay_1", "order_1")

    assert second.already_exists
    assert second.booking_id == first.booking_id
    assert second.inserted_count == 0
    assert len(booking_store.bookings) == 2
    # The fast path never reaches the gateway
    assert payment_route.call_count == 1


@pytest.mark.asyncio
async def test_failed_payment_writes_nothing(gateway, materializer, intent, booking_store, customer_store, event_log):
    gateway.payment("pay_1", "order_1", status="failed")
    order_route = gateway.order("order_1", encode_intent(intent))

    with pytest.raises(PaymentNotSuccessfulError, match="Payment not successful. Status: failed"):
        await materializer.materialize("pay_1", "order_1")

    assert booking_store.bookings == []
    assert customer_store.customers == []
    assert not order_route.called
    assert len(event_log.of_type("PAYMENT_REJECTED")) == 1


@pytest.mark.asyncio
async def test_payment_for_another_order_rejected(gateway, materializer, intent, booking_store):
    gateway.payment("pay_1", "order_cheap")
    gateway.order("order_1", encode_intent(intent))

    with pytest.raises(PaymentOrderMismatchError):
        await materializer.materialize("pay_1", "order_1")
    assert booking_store.bookings == []


@pytest.mark.asyncio
async def test_order_without_intent_is_missing_data(gateway, materializer, booking_store, event_log):
    gateway.payment("pay_1", "order_1")
    gateway.order("order_1", [])

    with pytest.raises(MissingBookingDataError) as exc:
        await materializer.materialize("pay_1", "order_1")

    assert exc.value.retryable is False
    assert booking_store.bookings == []
    [event] = event_log.of_type("BOOKING_DATA_MISSING")
    assert event["severity"] == "ERROR"


@pytest.mark.asyncio
async def test_concurrent_calls_materialize_once(gateway, materializer, intent, booking_store, customer_store):
    gateway.payment("pay_1", "order_1")
    gateway.order("order_1", encode_intent(intent))

    results = await asyncio.gather(*[materializer.materialize("pay_1", "order_1") for _ in range(3)])

    assert sorted(r.already_exists for r in results) == [False, True, True]
    assert len({r.booking_id for r in results}) == 1
    assert len(booking_store.bookings) == 2
    assert len(customer_store.customers) == 1


@pytest.mark.asyncio
async def test_different_payments_same_new_phone_share_customer(gateway, materializer, intent, booking_store, customer_store):
    notes = encode_intent(intent)
    for n in (1, 2):
        gateway.payment(f"pay_{n}", f"order_{n}")
        gateway.order(f"order_{n}", notes)

    await asyncio.gather(
        materializer.materialize("pay_1", "order_1"),
        materializer.materialize("pay_2", "order_2"),
    )

    assert len(booking_store.bookings) == 4
    assert len(customer_store.customers) == 1


@pytest.mark.asyncio
async def test_lost_insert_race_reports_existing(gateway, client, customer_store, intent, app_config):
    store = StalePrecheckStore()
    committed = await store.insert_group("pay_1", "order_1", build_booking_rows(intent, "cust_1", "pay_1", "order_1"))
    gateway.payment("pay_1", "order_1")
    gateway.order("order_1", encode_intent(intent))

    result = await BookingMaterializer(client, store, customer_store, config=app_config).materialize("pay_1", "order_1")

    assert result.already_exists
    assert result.booking_id == committed[0].id
    assert len(store.bookings) == 2


@pytest.mark.asyncio
async def test_slow_store_times_out(client, customer_store, app_config):
    config = replace(app_config, materialize_timeout_seconds=0.05)
    materializer = BookingMaterializer(client, SlowStore(), customer_store, config=config)

    with pytest.raises(MaterializationTimeoutError) as exc:
        await materializer.materialize("pay_1", "order_1")
    assert exc.value.retryable is True
