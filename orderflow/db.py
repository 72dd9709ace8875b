"""
Async Postgres: orders (current record per order, with integer version) + activity_log (append-only).
Every commit runs in one transaction: compare-and-swap the order row on its version, then insert the
activity entry. A lost compare-and-swap writes nothing.
"""
import json
import uuid

import asyncpg

from orderflow.audit import AuditEntry
from orderflow.config import settings
from orderflow.models import Order, OrderFilters
from orderflow.order_state import status_flags

_pool: asyncpg.Pool | None = None

ORDER_COLUMNS = (
    "id",
    "customer_id",
    "contact_email",
    "items",
    "shipping_address",
    "payment_method",
    "subtotal",
    "tax",
    "shipping",
    "total",
    "is_paid",
    "paid_at",
    "is_shipped",
    "shipped_at",
    "is_delivered",
    "delivered_at",
    "is_cancelled",
    "cancelled_at",
    "cancellation_reason",
    "cancelled_by",
    "review_id",
    "created_at",
    "updated_at",
    "version",
)
JSONB_COLUMNS = {"items", "shipping_address"}
# Columns a transition may write; everything else is frozen at creation.
MUTABLE_COLUMNS = (
    "is_paid",
    "paid_at",
    "is_shipped",
    "shipped_at",
    "is_delivered",
    "delivered_at",
    "is_cancelled",
    "cancelled_at",
    "cancellation_reason",
    "cancelled_by",
    "review_id",
    "updated_at",
    "version",
)


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
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
            CREATE TABLE IF NOT EXISTS orders (
                id VARCHAR(64) PRIMARY KEY,
                customer_id VARCHAR(255) NOT NULL,
                contact_email VARCHAR(255),
                items JSONB NOT NULL,
                shipping_address JSONB NOT NULL,
                payment_method VARCHAR(50) NOT NULL,
                subtotal NUMERIC(12, 2) NOT NULL,
                tax NUMERIC(12, 2) NOT NULL,
                shipping NUMERIC(12, 2) NOT NULL,
                total NUMERIC(12, 2) NOT NULL,
                is_paid BOOLEAN NOT NULL DEFAULT FALSE,
                paid_at TIMESTAMPTZ,
                is_shipped BOOLEAN NOT NULL DEFAULT FALSE,
                shipped_at TIMESTAMPTZ,
                is_delivered BOOLEAN NOT NULL DEFAULT FALSE,
                delivered_at TIMESTAMPTZ,
                is_cancelled BOOLEAN NOT NULL DEFAULT FALSE,
                cancelled_at TIMESTAMPTZ,
                cancellation_reason VARCHAR(500),
                cancelled_by VARCHAR(255),
                review_id VARCHAR(255),
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                version INT NOT NULL DEFAULT 1,
                CHECK (total = subtotal + tax + shipping),
                CHECK (is_paid OR NOT is_shipped),
                CHECK (is_shipped OR NOT is_delivered),
                CHECK (NOT (is_cancelled AND is_delivered)),
                CHECK (review_id IS NULL OR is_delivered)
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_customer_created
            ON orders(customer_id, created_at DESC);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_created
            ON orders(created_at DESC);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS activity_log (
                id UUID PRIMARY KEY,
                seq BIGSERIAL NOT NULL,
                actor_id VARCHAR(255) NOT NULL,
                actor_role VARCHAR(20) NOT NULL,
                action VARCHAR(50) NOT NULL,
                target_order_id VARCHAR(64) NOT NULL,
                description TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL
            );
        """)
        # tables created before the append sequence existed
        await conn.execute("ALTER TABLE activity_log ADD COLUMN IF NOT EXISTS seq BIGSERIAL;")
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_activity_log_order
            ON activity_log(target_order_id);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_activity_log_created
            ON activity_log(created_at DESC, seq DESC);
        """)


async def drop_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("DROP TABLE IF EXISTS activity_log;")
        await conn.execute("DROP TABLE IF EXISTS orders;")


def _order_values(order: Order, columns: tuple[str, ...]) -> list:
    data = order.model_dump()
    data["items"] = json.dumps([item.model_dump(mode="json") for item in order.items])
    data["shipping_address"] = json.dumps(order.shipping_address.model_dump(mode="json"))
    return [data[c] for c in columns]


def _row_to_order(row: asyncpg.Record) -> Order:
    data = dict(row)
    for column in JSONB_COLUMNS:
        if isinstance(data[column], str):
            data[column] = json.loads(data[column])
    return Order.model_validate(data)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _where(filters: OrderFilters, params: list, customer_id: str | None = None) -> str:
    """Build a WHERE clause for filters, appending bind values to params."""
    clauses = []

    def bind(value) -> str:
        params.append(value)
        return f"${len(params)}"

    if customer_id is not None:
        clauses.append(f"customer_id = {bind(customer_id)}")
    if filters.search and filters.search.strip():
        term = filters.search.strip()
        exact = bind(term)
        like = bind(f"%{_escape_like(term.lower())}%")
        clauses.append(
            f"(id = {exact} OR lower(customer_id) LIKE {like} ESCAPE '\\'"
            f" OR lower(coalesce(contact_email, '')) LIKE {like} ESCAPE '\\')"
        )
    if filters.status is not None:
        for flag, value in status_flags(filters.status).items():
            clauses.append(f"{flag} = {bind(value)}")
    if filters.date_from is not None:
        clauses.append(f"created_at >= {bind(filters.date_from)}")
    if filters.date_to is not None:
        clauses.append(f"created_at <= {bind(filters.date_to)}")
    if filters.min_total is not None:
        clauses.append(f"total >= {bind(filters.min_total)}")
    if filters.max_total is not None:
        clauses.append(f"total <= {bind(filters.max_total)}")
    return f" WHERE {' AND '.join(clauses)}" if clauses else ""


async def _insert_entry(conn: asyncpg.Connection, entry: AuditEntry) -> None:
    await conn.execute(
        """
        INSERT INTO activity_log (id, actor_id, actor_role, action, target_order_id, description, created_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7);
        """,
        uuid.UUID(entry.id),
        entry.actor_id,
        entry.actor_role.value,
        entry.action.value,
        entry.target_order_id,
        entry.description,
        entry.timestamp,
    )


class PostgresActivityLog:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def record(self, entry: AuditEntry) -> None:
        async with self.pool.acquire() as conn:
            await _insert_entry(conn, entry)

    async def entries(
        self,
        target_order_id: str | None = None,
        actor_id: str | None = None,
    ) -> list[AuditEntry]:
        clauses, params = [], []
        if target_order_id is not None:
            params.append(target_order_id)
            clauses.append(f"target_order_id = ${len(params)}")
        if actor_id is not None:
            params.append(actor_id)
            clauses.append(f"actor_id = ${len(params)}")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT id, actor_id, actor_role, action, target_order_id, description, created_at
                FROM activity_log{where}
                ORDER BY created_at DESC, seq DESC;
                """,
                *params,
            )
        return [
            AuditEntry(
                id=str(r["id"]),
                actor_id=r["actor_id"],
                actor_role=r["actor_role"],
                action=r["action"],
                target_order_id=r["target_order_id"],
                description=r["description"],
                timestamp=r["created_at"],
            )
            for r in rows
        ]


class PostgresOrderStore:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool
        self.activity = PostgresActivityLog(pool)

    async def get(self, order_id: str) -> Order | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {', '.join(ORDER_COLUMNS)} FROM orders WHERE id = $1;",
                order_id,
            )
        return _row_to_order(row) if row is not None else None

    async def create(self, order: Order, entry: AuditEntry) -> None:
        placeholders = ", ".join(
            f"${i}::jsonb" if column in JSONB_COLUMNS else f"${i}"
            for i, column in enumerate(ORDER_COLUMNS, start=1)
        )
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    f"INSERT INTO orders ({', '.join(ORDER_COLUMNS)}) VALUES ({placeholders});",
                    *_order_values(order, ORDER_COLUMNS),
                )
                await _insert_entry(conn, entry)

    async def replace(self, order: Order, expected_version: int, entry: AuditEntry) -> bool:
        assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(MUTABLE_COLUMNS, start=3))
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                status = await conn.execute(
                    f"UPDATE orders SET {assignments} WHERE id = $1 AND version = $2;",
                    order.id,
                    expected_version,
                    *_order_values(order, MUTABLE_COLUMNS),
                )
                # "UPDATE <rowcount>"
                if status.split()[-1] != "1":
                    return False
                await _insert_entry(conn, entry)
        return True

    async def list_for_customer(self, customer_id: str, filters: OrderFilters) -> list[Order]:
        params: list = []
        where = _where(filters, params, customer_id=customer_id)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {', '.join(ORDER_COLUMNS)} FROM orders{where} ORDER BY created_at DESC;",
                *params,
            )
        return [_row_to_order(r) for r in rows]

    async def list_orders(self, filters: OrderFilters, offset: int, limit: int) -> tuple[list[Order], int]:
        params: list = []
        where = _where(filters, params)
        async with self.pool.acquire() as conn:
            total = await conn.fetchval(f"SELECT count(*) FROM orders{where};", *params)
            rows = await conn.fetch(
                f"SELECT {', '.join(ORDER_COLUMNS)} FROM orders{where}"
                f" ORDER BY created_at DESC LIMIT ${len(params) + 1} OFFSET ${len(params) + 2};",
                *params,
                limit,
                offset,
            )
        return [_row_to_order(r) for r in rows], total
