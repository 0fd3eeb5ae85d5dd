"""
Customer Resolution
===================
Finds or creates the customer a booking belongs to, safely under races.

Two materializations for the same previously-unknown phone can both miss the
lookup and both try to insert. The store's phone uniqueness constraint lets
exactly one insert win; the loser catches DuplicateCustomerError, re-reads by
phone and uses the winner's id.
"""

import re
import time
from typing import Optional

import structlog

from errors import DuplicateCustomerError, MissingBookingDataError, StoreError
from schemas.booking import Customer, IntentCustomer
from storage.base import ICustomerStore, IEventLog

logger = structlog.get_logger().bind(component="customer_resolver")

BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def normalize_phone(phone: Optional[str]) -> str:
    """Digits only"""
    return re.sub(r"\D", "", phone or "")


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def generate_customer_code(phone: str, prefix: str = "CUE", now_ms: Optional[int] = None) -> str:
    """<prefix><last 4 phone digits><last 4 base36 chars of the ms timestamp>"""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    stamp = to_base36(now_ms)[-4:].upper()
    return f"{prefix}{normalize_phone(phone)[-4:]}{stamp}"


class CustomerResolver:
    def __init__(
        self,
        store: ICustomerStore,
        event_log: Optional[IEventLog] = None,
        code_prefix: str = "CUE",
    ):
        self.store = store
        self.event_log = event_log
        self.code_prefix = code_prefix

    async def resolve(self, customer: IntentCustomer, correlation_id: Optional[str] = None) -> str:
        """Customer id for this intent, creating the customer if needed"""
        if customer.id:
            return customer.id

        phone = normalize_phone(customer.phone)
        if not phone:
            raise MissingBookingDataError("Booking data has neither a customer id nor a phone")

        log = logger.bind(phone_suffix=phone[-4:], correlation_id=correlation_id)

        existing = await self.store.get_by_phone(phone)
        if existing:
            log.info("customer_found", customer_id=existing.id)
            return existing.id

        candidate = Customer(
            custom_id=generate_customer_code(phone, self.code_prefix),
            name=customer.name,
            phone=phone,
            email=customer.email or None,
        )

        try:
            created = await self.store.insert(candidate)
        except DuplicateCustomerError:
            # Lost the creation race; the winner's row is committed
            winner = await self.store.get_by_phone(phone)
            if winner is None:
                raise StoreError("Customer creation failed: duplicate phone number") from None
            log.info("customer_race_recovered", customer_id=winner.id)
            return winner.id

        log.info("customer_created", customer_id=created.id, custom_id=created.custom_id)
        if self.event_log is not None:
            await self.event_log.append(
                "CUSTOMER_CREATED",
                {"customer_id": created.id, "custom_id": created.custom_id},
                agent="booking_materializer",
                correlation_id=correlation_id,
            )
        return created.id
