"""
Store Interfaces
================
Abstract repositories for the external Customer and Booking stores and the
audit event log. Postgres implementations live in storage/postgres.py, the
in-memory ones used by tests in storage/memory.py.

Contracts the materializer relies on:
- ICustomerStore.insert raises DuplicateCustomerError when the phone is taken
- IBookingStore.insert_group is all-or-nothing and raises
  DuplicatePaymentError when a group for the payment already exists
- IEventLog.append never raises
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from schemas.booking import Booking, Customer


class ICustomerStore(ABC):
    """Customer lookup and creation keyed by normalized phone"""

    @abstractmethod
    async def get_by_phone(self, phone: str) -> Optional[Customer]:
        pass

    @abstractmethod
    async def insert(self, customer: Customer) -> Customer:
        """Insert and return the row with its id. Raises DuplicateCustomerError."""
        pass


class IBookingStore(ABC):
    """Booking rows grouped by payment"""

    @abstractmethod
    async def find_by_payment(self, payment_txn_id: str) -> Optional[str]:
        """Id of any booking row for this payment, or None"""
        pass

    @abstractmethod
    async def insert_group(
        self,
        payment_txn_id: str,
        order_id: str,
        rows: List[Booking],
    ) -> List[Booking]:
        """Atomically insert all rows. Raises DuplicatePaymentError."""
        pass


class IEventLog(ABC):
    """Append-only audit trail"""

    @abstractmethod
    async def append(
        self,
        event_type: str,
        payload: Dict[str, Any],
        severity: str = "INFO",
        agent: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> str:
        pass
