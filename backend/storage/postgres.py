"""
Postgres Stores
===============
asyncpg-backed implementations of the store interfaces.

Driver failures (connection loss, statement timeout, constraint errors we do
not recover from) surface as StoreError carrying the driver's message, so
the caller can retry.
"""

import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import asyncpg
import structlog

from database import Database
from errors import DuplicateCustomerError, DuplicatePaymentError, ReconciliationError, StoreError
from schemas.booking import Booking, Customer
from storage.base import IBookingStore, ICustomerStore, IEventLog

logger = structlog.get_logger().bind(component="postgres_store")

PHONE_CONSTRAINT = "customers_phone_key"

CUSTOMER_COLUMNS = (
    "id, custom_id, name, phone, email, is_member, "
    "loyalty_points, total_spent, total_play_time"
)


@asynccontextmanager
async def _store_errors(operation: str):
    """Translate driver exceptions into StoreError"""
    try:
        yield
    except ReconciliationError:
        raise
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
        logger.error("store_operation_failed",
                     operation=operation,
                     error=str(e),
                     error_type=type(e).__name__)
        raise StoreError(str(e) or type(e).__name__) from e


def _customer_from_record(record: asyncpg.Record) -> Customer:
    data = dict(record)
    data["id"] = str(data["id"])
    return Customer(**data)


# =============================================================================
# CUSTOMERS
# =============================================================================

class PostgresCustomerStore(ICustomerStore):

    async def get_by_phone(self, phone: str) -> Optional[Customer]:
        async with _store_errors("customer_get_by_phone"):
            record = await Database.fetch_one(
                f"SELECT {CUSTOMER_COLUMNS} FROM customers WHERE phone = $1",
                phone,
            )
        return _customer_from_record(record) if record else None

    async def insert(self, customer: Customer) -> Customer:
        async with _store_errors("customer_insert"):
            try:
                record = await Database.fetch_one(
                    """
                    INSERT INTO customers
                    (custom_id, name, phone, email, is_member,
                     loyalty_points, total_spent, total_play_time)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    RETURNING id
                    """,
                    customer.custom_id,
                    customer.name,
                    customer.phone,
                    customer.email,
                    customer.is_member,
                    customer.loyalty_points,
                    customer.total_spent,
                    customer.total_play_time,
                )
            except asyncpg.UniqueViolationError as e:
                if e.constraint_name == PHONE_CONSTRAINT:
                    raise DuplicateCustomerError(customer.phone) from e
                raise StoreError(str(e)) from e
        return customer.model_copy(update={"id": str(record["id"])})


# =============================================================================
# BOOKINGS
# =============================================================================

class PostgresBookingStore(IBookingStore):

    async def find_by_payment(self, payment_txn_id: str) -> Optional[str]:
        async with _store_errors("booking_find_by_payment"):
            # Rows written before booking_payments existed only live in bookings
            record = await Database.fetch_one(
                """
                SELECT COALESCE(
                    (SELECT booking_id FROM booking_payments WHERE payment_txn_id = $1),
                    (SELECT id FROM bookings WHERE payment_txn_id = $1
                     ORDER BY created_at, id LIMIT 1)
                ) AS id
                """,
                payment_txn_id,
            )
        return str(record["id"]) if record and record["id"] else None

    async def insert_group(
        self,
        payment_txn_id: str,
        order_id: str,
        rows: List[Booking],
    ) -> List[Booking]:
        stored: List[Booking] = []
        async with _store_errors("booking_insert_group"):
            async with Database.transaction() as conn:
                # Claim the payment first: a concurrent claimant blocks here
                # until we commit, then fails on the primary key
                try:
                    await conn.execute(
                        """
                        INSERT INTO booking_payments (payment_txn_id, order_id, row_count)
                        VALUES ($1, $2, $3)
                        """,
                        payment_txn_id,
                        order_id,
                        len(rows),
                    )
                except asyncpg.UniqueViolationError as e:
                    raise DuplicatePaymentError(payment_txn_id) from e

                for row in rows:
                    record = await conn.fetchrow(
                        """
                        INSERT INTO bookings
                        (station_id, customer_id, booking_date, start_time, end_time,
                         duration, status, original_price, discount_percentage,
                         final_price, coupon_code, payment_mode, payment_txn_id, notes)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
                        RETURNING id
                        """,
                        row.station_id,
                        row.customer_id,
                        row.booking_date,
                        row.start_time,
                        row.end_time,
                        row.duration,
                        row.status,
                        row.original_price,
                        row.discount_percentage,
                        row.final_price,
                        row.coupon_code,
                        row.payment_mode,
                        row.payment_txn_id,
                        row.notes,
                    )
                    stored.append(row.model_copy(update={"id": str(record["id"])}))

                if stored:
                    await conn.execute(
                        "UPDATE booking_payments SET booking_id = $1 WHERE payment_txn_id = $2",
                        stored[0].id,
                        payment_txn_id,
                    )
        return stored


# =============================================================================
# THE BLACK BOX: Event Logging
# =============================================================================

class PostgresEventLog(IEventLog):
    """
    Every significant reconciliation event flows through here, creating a
    complete audit trail. A failed write is logged and dropped; it never
    fails the business operation.
    """

    async def append(
        self,
        event_type: str,
        payload: Dict[str, Any],
        severity: str = "INFO",
        agent: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> str:
        event_id = str(uuid.uuid4())

        log_method = getattr(logger, severity.lower(), logger.info)
        log_method(event_type,
                   event_id=event_id[:8],
                   correlation_id=correlation_id,
                   agent=agent,
                   **payload)

        try:
            await Database.execute(
                """
                INSERT INTO system_events
                (id, correlation_id, event_type, agent, payload, severity)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                event_id,
                correlation_id,
                event_type,
                agent,
                json.dumps(payload, default=str),
                severity,
            )
        except Exception as e:
            logger.error("event_log_write_failed", event_type=event_type, error=str(e))

        return event_id
