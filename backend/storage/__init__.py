# storage/__init__.py
# ============================================================================
# RECONCILIATION SERVICE: STORAGE MODULE
# ============================================================================
# Store interfaces with Postgres and in-memory implementations
# ============================================================================

from storage.base import (
    ICustomerStore,
    IBookingStore,
    IEventLog,
)

from storage.memory import (
    InMemoryCustomerStore,
    InMemoryBookingStore,
    InMemoryEventLog,
)

from storage.postgres import (
    PostgresCustomerStore,
    PostgresBookingStore,
    PostgresEventLog,
)

__all__ = [
    # Interfaces
    "ICustomerStore",
    "IBookingStore",
    "IEventLog",
    # In-memory
    "InMemoryCustomerStore",
    "InMemoryBookingStore",
    "InMemoryEventLog",
    # Postgres
    "PostgresCustomerStore",
    "PostgresBookingStore",
    "PostgresEventLog",
]
