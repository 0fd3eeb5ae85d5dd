"""
In-memory stores with the same uniqueness guarantees as the Postgres schema.
Used by the test suite and for local runs without a database.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from errors import DuplicateCustomerError, DuplicatePaymentError
from schemas.booking import Booking, Customer
from storage.base import IBookingStore, ICustomerStore, IEventLog


class InMemoryCustomerStore(ICustomerStore):
    """Phone-unique customer table"""

    def __init__(self):
        self._by_phone: dict[str, Customer] = {}
        self._lock = asyncio.Lock()

    async def get_by_phone(self, phone: str) -> Optional[Customer]:
        async with self._lock:
            return self._by_phone.get(phone)

    async def insert(self, customer: Customer) -> Customer:
        async with self._lock:
            if customer.phone in self._by_phone:
                raise DuplicateCustomerError(customer.phone)
            stored = customer.model_copy(update={"id": str(uuid.uuid4())})
            self._by_phone[customer.phone] = stored
            return stored

    @property
    def customers(self) -> list[Customer]:
        return list(self._by_phone.values())


class InMemoryBookingStore(IBookingStore):
    """Bookings with a unique payment_txn_id per group"""

    def __init__(self):
        self._groups: dict[str, list[Booking]] = {}
        self._lock = asyncio.Lock()

    async def find_by_payment(self, payment_txn_id: str) -> Optional[str]:
        async with self._lock:
            rows = self._groups.get(payment_txn_id)
            return rows[0].id if rows else None

    async def insert_group(
        self,
        payment_txn_id: str,
        order_id: str,
        rows: List[Booking],
    ) -> List[Booking]:
        async with self._lock:
            if payment_txn_id in self._groups:
                raise DuplicatePaymentError(payment_txn_id)
            stored = [row.model_copy(update={"id": str(uuid.uuid4())}) for row in rows]
            self._groups[payment_txn_id] = stored
            return list(stored)

    @property
    def bookings(self) -> list[Booking]:
        return [row for rows in self._groups.values() for row in rows]


class InMemoryEventLog(IEventLog):
    """Append-only audit log"""

    def __init__(self):
        self.events: list[dict] = []
        self._lock = asyncio.Lock()

    async def append(
        self,
        event_type: str,
        payload: Dict[str, Any],
        severity: str = "INFO",
        agent: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> str:
        event_id = str(uuid.uuid4())
        async with self._lock:
            self.events.append({
                "id": event_id,
                "event_type": event_type,
                "payload": payload,
                "severity": severity,
                "agent": agent,
                "correlation_id": correlation_id,
                "timestamp": datetime.now(timezone.utc),
            })
        return event_id

    def of_type(self, event_type: str) -> list[dict]:
        return [e for e in self.events if e["event_type"] == event_type]
