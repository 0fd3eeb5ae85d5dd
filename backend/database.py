"""
Database Module
===============
asyncpg connection pool and schema for the reconciliation service.

This module provides:
- AsyncPG connection pool for PostgreSQL (process-scoped, opened in the
  FastAPI lifespan)
- Idempotent migrations for customers, bookings, booking_payments and the
  system_events audit table
- Transaction helper for all-or-nothing multi-row writes

The pool holds connections only. No request state lives here.

pip install asyncpg
"""

import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional

import asyncpg
import structlog

from errors import ConfigurationError

logger = structlog.get_logger().bind(component="database")


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class DatabaseConfig:
    """Database configuration from environment"""
    database_url: str
    min_pool_size: int = 2
    max_pool_size: int = 10
    command_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        url = os.getenv("DATABASE_URL")
        if not url:
            raise ConfigurationError("Missing env: DATABASE_URL")
        return cls(
            database_url=url,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "2")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "10")),
            command_timeout=float(os.getenv("DB_COMMAND_TIMEOUT", "10")),
        )


# =============================================================================
# SCHEMA
# =============================================================================

MIGRATIONS = [
    # Customers: phone (digits only) is the natural dedup key
    """
    CREATE TABLE IF NOT EXISTS customers (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        custom_id VARCHAR(32) NOT NULL UNIQUE,
        name TEXT NOT NULL,
        phone VARCHAR(32) NOT NULL,
        email TEXT,
        is_member BOOLEAN NOT NULL DEFAULT FALSE,
        loyalty_points INTEGER NOT NULL DEFAULT 0,
        total_spent NUMERIC(12, 2) NOT NULL DEFAULT 0,
        total_play_time INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        CONSTRAINT customers_phone_key UNIQUE (phone)
    )
    """,

    """
    CREATE TABLE IF NOT EXISTS bookings (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        station_id TEXT NOT NULL,
        customer_id TEXT NOT NULL,
        booking_date DATE NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        duration INTEGER NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'confirmed',
        original_price NUMERIC(12, 2) NOT NULL,
        discount_percentage NUMERIC(6, 2),
        final_price NUMERIC(12, 2) NOT NULL,
        coupon_code TEXT,
        payment_mode VARCHAR(20) NOT NULL,
        payment_txn_id VARCHAR(64),
        notes TEXT,
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,

    # Authoritative idempotency key: one row per materialized payment,
    # written in the same transaction as its booking rows
    """
    CREATE TABLE IF NOT EXISTS booking_payments (
        payment_txn_id VARCHAR(64) PRIMARY KEY,
        order_id VARCHAR(64) NOT NULL,
        booking_id UUID,
        row_count INTEGER NOT NULL,
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,

    # THE BLACK BOX: audit trail
    """
    CREATE TABLE IF NOT EXISTS system_events (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        correlation_id VARCHAR(64),
        timestamp TIMESTAMPTZ DEFAULT NOW(),
        event_type VARCHAR(50) NOT NULL,
        agent VARCHAR(50),
        payload JSONB NOT NULL DEFAULT '{}',
        severity VARCHAR(10) DEFAULT 'INFO'
    )
    """,

    "CREATE INDEX IF NOT EXISTS idx_bookings_payment ON bookings(payment_txn_id)",
    "CREATE INDEX IF NOT EXISTS idx_bookings_customer ON bookings(customer_id)",
    "CREATE INDEX IF NOT EXISTS idx_events_type ON system_events(event_type)",
    "CREATE INDEX IF NOT EXISTS idx_events_correlation ON system_events(correlation_id)",
]


# =============================================================================
# CONNECTION POOL
# =============================================================================

class Database:
    """Async database connection pool manager"""

    _pool: Optional[asyncpg.Pool] = None
    _initialized: bool = False

    @classmethod
    async def initialize(cls, config: Optional[DatabaseConfig] = None):
        """Open the pool and run migrations"""
        if cls._initialized:
            return

        config = config or DatabaseConfig.from_env()
        try:
            cls._pool = await asyncpg.create_pool(
                config.database_url,
                min_size=config.min_pool_size,
                max_size=config.max_pool_size,
                command_timeout=config.command_timeout,
            )
            cls._initialized = True
            logger.info("database_pool_initialized",
                        min_size=config.min_pool_size,
                        max_size=config.max_pool_size)

            await cls._run_migrations()

        except Exception as e:
            logger.error("database_init_failed", error=str(e))
            raise

    @classmethod
    async def close(cls):
        if cls._pool:
            await cls._pool.close()
            cls._pool = None
            cls._initialized = False
            logger.info("database_pool_closed")

    @classmethod
    @asynccontextmanager
    async def acquire(cls):
        """Acquire a connection from the pool"""
        if not cls._pool:
            await cls.initialize()

        async with cls._pool.acquire() as conn:
            yield conn

    @classmethod
    @asynccontextmanager
    async def transaction(cls):
        """Connection with an open transaction; rolled back on any exception"""
        async with cls.acquire() as conn:
            async with conn.transaction():
                yield conn

    @classmethod
    async def execute(cls, query: str, *args) -> str:
        async with cls.acquire() as conn:
            return await conn.execute(query, *args)

    @classmethod
    async def fetch_one(cls, query: str, *args) -> Optional[asyncpg.Record]:
        async with cls.acquire() as conn:
            return await conn.fetchrow(query, *args)

    @classmethod
    async def fetch_all(cls, query: str, *args) -> List[asyncpg.Record]:
        async with cls.acquire() as conn:
            return await conn.fetch(query, *args)

    @classmethod
    async def _run_migrations(cls):
        async with cls.acquire() as conn:
            for migration in MIGRATIONS:
                await conn.execute(migration)

        logger.info("database_migrations_complete", count=len(MIGRATIONS))


async def init_database():
    """Initialize database on app startup"""
    await Database.initialize()


async def close_database():
    """Close database on app shutdown"""
    await Database.close()
