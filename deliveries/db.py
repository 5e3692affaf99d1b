"""
Async Postgres: users (identity) + orders (one row per delivery order).
Status changes are a conditional UPDATE on the previously observed status, so a
concurrent writer that lost the race sees no row updated.
"""
import asyncio
import logging
from typing import Iterable

import asyncpg

from deliveries.config import settings
from deliveries.errors import StoreUnavailableError
from deliveries.identity import USER_ROLE, Caller
from deliveries.models import NewOrder, Order
from deliveries.order_state import OrderStatus

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None

# Failures treated as transient infrastructure trouble
_UNAVAILABLE = (
    asyncio.TimeoutError,
    OSError,
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.TooManyConnectionsError,
)

_ORDER_COLUMNS = (
    "id, user_id, description, location, estimated_time, "
    "delivery_instructions, status, created_at"
)


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min,
            max_size=settings.db_pool_max,
            command_timeout=settings.store_timeout_seconds,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email VARCHAR(255),
                roles TEXT[] NOT NULL DEFAULT ARRAY['User'],
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id SERIAL PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                description VARCHAR(1000) NOT NULL,
                location VARCHAR(100) NOT NULL,
                estimated_time VARCHAR(20) NOT NULL,
                delivery_instructions VARCHAR(500),
                status VARCHAR(20) NOT NULL DEFAULT 'Pending',
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_user_id ON orders(user_id);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_created_at ON orders(created_at DESC);
        """)


async def _bounded(op: str, coro, timeout: float):
    """Await a store call under `timeout`; map transient failures to StoreUnavailableError."""
    try:
        return await asyncio.wait_for(coro, timeout)
    except _UNAVAILABLE as e:
        logger.warning("Store call %s failed: %r", op, e)
        raise StoreUnavailableError(f"{op} failed: {e}") from e


def _row_to_order(row) -> Order:
    return Order(
        id=row["id"],
        owner_id=row["user_id"],
        description=row["description"],
        location=row["location"],
        estimated_time=row["estimated_time"],
        delivery_instructions=row["delivery_instructions"],
        status=OrderStatus(row["status"]),
        created_at=row["created_at"],
    )


class PostgresOrderStore:
    def __init__(self, pool: asyncpg.Pool, timeout: float = settings.store_timeout_seconds):
        self._pool = pool
        self._timeout = timeout

    async def insert(self, order: NewOrder) -> int:
        return await _bounded(
            "insert",
            self._pool.fetchval(
                """
                INSERT INTO orders (user_id, description, location, estimated_time,
                                    delivery_instructions, status, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING id;
                """,
                order.owner_id,
                order.description,
                order.location,
                order.estimated_time,
                order.delivery_instructions,
                order.status.value,
                order.created_at,
            ),
            self._timeout,
        )

    async def find_by_id(self, order_id: int) -> Order | None:
        row = await _bounded(
            "find_by_id",
            self._pool.fetchrow(f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = $1;", order_id),
            self._timeout,
        )
        return _row_to_order(row) if row is not None else None

    async def update_status_if_current(
        self, order_id: int, expected: OrderStatus, new: OrderStatus
    ) -> bool:
        updated = await _bounded(
            "update_status_if_current",
            self._pool.fetchval(
                """
                UPDATE orders SET status = $1
                WHERE id = $2 AND status = $3
                RETURNING id;
                """,
                new.value,
                order_id,
                expected.value,
            ),
            self._timeout,
        )
        return updated is not None

    async def query_by_owner(self, owner_id: str) -> list[Order]:
        rows = await _bounded(
            "query_by_owner",
            self._pool.fetch(
                f"""
                SELECT {_ORDER_COLUMNS} FROM orders
                WHERE user_id = $1
                ORDER BY created_at DESC, id DESC;
                """,
                owner_id,
            ),
            self._timeout,
        )
        return [_row_to_order(r) for r in rows]

    async def query_all(self, status: OrderStatus | None = None) -> list[Order]:
        if status is None:
            query = self._pool.fetch(
                f"SELECT {_ORDER_COLUMNS} FROM orders ORDER BY created_at DESC, id DESC;"
            )
        else:
            query = self._pool.fetch(
                f"""
                SELECT {_ORDER_COLUMNS} FROM orders
                WHERE status = $1
                ORDER BY created_at DESC, id DESC;
                """,
                status.value,
            )
        rows = await _bounded("query_all", query, self._timeout)
        return [_row_to_order(r) for r in rows]


class PostgresIdentityProvider:
    """Reads users provisioned by the account system. Roles live in users.roles."""

    def __init__(self, pool: asyncpg.Pool, timeout: float = settings.store_timeout_seconds):
        self._pool = pool
        self._timeout = timeout

    async def resolve(self, caller_id: str) -> Caller | None:
        row = await _bounded(
            "resolve",
            self._pool.fetchrow("SELECT id, roles FROM users WHERE id = $1;", caller_id),
            self._timeout,
        )
        if row is None:
            return None
        return Caller(user_id=row["id"], roles=frozenset(row["roles"] or ()))

    async def upsert_user(
        self, user_id: str, roles: Iterable[str] = (USER_ROLE,), email: str | None = None
    ) -> Caller:
        roles = sorted(set(roles))
        await _bounded(
            "upsert_user",
            self._pool.execute(
                """
                INSERT INTO users (id, email, roles) VALUES ($1, $2, $3)
                ON CONFLICT (id) DO UPDATE SET roles = EXCLUDED.roles,
                    email = COALESCE(EXCLUDED.email, users.email);
                """,
                user_id,
                email,
                roles,
            ),
            self._timeout,
        )
        return Caller(user_id=user_id, roles=frozenset(roles))
