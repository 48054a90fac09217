"""
SupplementScribe Storage Backend
================================
Relational store contract used by the bulk writer and the orchestrator.

Every backend call returns a StorageResult (value or error). Backends convert
driver exceptions into `StorageResult.error`; callers still wrap each call in
their own exception boundary.

Usage:
    pool = await asyncpg.create_pool(DATABASE_URL)
    backend = AsyncpgBackend(pool)
    result = await backend.insert_many("user_biomarkers", rows)
    if result.ok:
        ...
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, Protocol, Sequence, Tuple, TypeVar

import asyncpg

from .models import Record

logger = logging.getLogger(__name__)

T = TypeVar("T")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass
class StorageResult(Generic[T]):
    """Discriminated storage outcome: exactly one of data / error is meaningful."""
    data: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T) -> "StorageResult[T]":
        return cls(data=data)

    @classmethod
    def failure(cls, error: str) -> "StorageResult[T]":
        return cls(error=error)


class StorageBackend(Protocol):
    """Operations the ingestion core needs from the relational store."""

    async def insert_many(self, table: str, rows: Sequence[Record]) -> StorageResult[List[Record]]:
        ...

    async def upsert_many(
        self, table: str, rows: Sequence[Record], conflict_key: str
    ) -> StorageResult[List[Record]]:
        ...

    async def insert_one(self, table: str, row: Record) -> StorageResult[Record]:
        ...

    async def select(
        self,
        table: str,
        columns: Sequence[str] = ("*",),
        filters: Optional[Dict[str, Any]] = None,
    ) -> StorageResult[List[Record]]:
        ...

    async def update(
        self, table: str, values: Record, filters: Dict[str, Any]
    ) -> StorageResult[List[Record]]:
        ...


# ============================================================
# SQL HELPERS
# ============================================================

def quote_identifier(name: str) -> str:
    """Validate and quote a table/column name."""
    name = name.strip()
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


def parse_conflict_key(conflict_key: str) -> List[str]:
    """'user_id, report_id,marker_name' -> ['user_id', 'report_id', 'marker_name']"""
    columns = [c.strip() for c in conflict_key.split(",") if c.strip()]
    if not columns:
        raise ValueError("Conflict key must name at least one column")
    return columns


def collect_columns(rows: Sequence[Record]) -> List[str]:
    """Union of keys across rows, in first-seen order."""
    columns: List[str] = []
    seen = set()
    for row in rows:
        for key in row:
            if key not in seen:
                seen.add(key)
                columns.append(key)
    return columns


def build_insert(
    table: str,
    rows: Sequence[Record],
    conflict_columns: Optional[List[str]] = None,
) -> Tuple[str, List[Any]]:
    """
    Build a multi-row INSERT ... RETURNING * statement.

    Rows with differing keys are padded with NULL for missing columns.
    With conflict_columns, adds ON CONFLICT ... DO UPDATE for the other columns.
    """
    if not rows:
        raise ValueError("Cannot build an INSERT for zero rows")

    columns = collect_columns(rows)
    if not columns:
        raise ValueError("Rows have no columns")

    params: List[Any] = []
    value_groups = []
    for row in rows:
        placeholders = []
        for column in columns:
            params.append(row.get(column))
            placeholders.append(f"${len(params)}")
        value_groups.append(f"({', '.join(placeholders)})")

    sql = (
        f"INSERT INTO {quote_identifier(table)} "
        f"({', '.join(quote_identifier(c) for c in columns)}) "
        f"VALUES {', '.join(value_groups)}"
    )

    if conflict_columns:
        conflict_sql = ", ".join(quote_identifier(c) for c in conflict_columns)
        updatable = [c for c in columns if c not in conflict_columns]
        if updatable:
            assignments = ", ".join(
                f"{quote_identifier(c)} = EXCLUDED.{quote_identifier(c)}" for c in updatable
            )
            sql += f" ON CONFLICT ({conflict_sql}) DO UPDATE SET {assignments}"
        else:
            # Nothing to update; touch the key so RETURNING still yields the row
            first = quote_identifier(conflict_columns[0])
            sql += f" ON CONFLICT ({conflict_sql}) DO UPDATE SET {first} = EXCLUDED.{first}"

    sql += " RETURNING *"
    return sql, params


def build_where(filters: Optional[Dict[str, Any]], start: int = 1) -> Tuple[str, List[Any]]:
    """Equality filters; a (op, value) tuple selects a range comparison."""
    if not filters:
        return "", []

    clauses = []
    params: List[Any] = []
    for column, value in filters.items():
        op = "="
        if isinstance(value, tuple):
            op, value = value
            if op not in ("=", "<", "<=", ">", ">=", "<>"):
                raise ValueError(f"Unsupported filter operator: {op}")
        if value is None and op == "=":
            clauses.append(f"{quote_identifier(column)} IS NULL")
            continue
        params.append(value)
        clauses.append(f"{quote_identifier(column)} {op} ${start + len(params) - 1}")
    return " WHERE " + " AND ".join(clauses), params


# ============================================================
# ASYNCPG BACKEND
# ============================================================

class AsyncpgBackend:
    """
    PostgreSQL backend on top of an asyncpg pool.

    Driver and SQL-building errors are returned as StorageResult.error.
    """

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def _fetch(self, sql: str, params: List[Any]) -> StorageResult[List[Record]]:
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(sql, *params)
            return StorageResult.success([dict(r) for r in rows])
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.warning(f"Storage query failed: {type(e).__name__}: {e}")
            return StorageResult.failure(f"{type(e).__name__}: {e}")

    async def insert_many(self, table: str, rows: Sequence[Record]) -> StorageResult[List[Record]]:
        try:
            sql, params = build_insert(table, rows)
        except ValueError as e:
            return StorageResult.failure(str(e))
        return await self._fetch(sql, params)

    async def upsert_many(
        self, table: str, rows: Sequence[Record], conflict_key: str
    ) -> StorageResult[List[Record]]:
        try:
            sql, params = build_insert(table, rows, parse_conflict_key(conflict_key))
        except ValueError as e:
            return StorageResult.failure(str(e))
        return await self._fetch(sql, params)

    async def insert_one(self, table: str, row: Record) -> StorageResult[Record]:
        result = await self.insert_many(table, [row])
        if not result.ok:
            return StorageResult.failure(result.error)
        if not result.data:
            return StorageResult.failure("Insert returned no row")
        return StorageResult.success(result.data[0])

    async def select(
        self,
        table: str,
        columns: Sequence[str] = ("*",),
        filters: Optional[Dict[str, Any]] = None,
    ) -> StorageResult[List[Record]]:
        try:
            column_sql = ", ".join(
                "*" if c == "*" else quote_identifier(c) for c in columns
            )
            where_sql, params = build_where(filters)
        except ValueError as e:
            return StorageResult.failure(str(e))
        return await self._fetch(
            f"SELECT {column_sql} FROM {quote_identifier(table)}{where_sql}", params
        )

    async def update(
        self, table: str, values: Record, filters: Dict[str, Any]
    ) -> StorageResult[List[Record]]:
        if not values:
            return StorageResult.failure("Nothing to update")
        if not filters:
            return StorageResult.failure("Refusing to update without filters")
        try:
            params = list(values.values())
            assignments = ", ".join(
                f"{quote_identifier(column)} = ${i}" for i, column in enumerate(values, start=1)
            )
            where_sql, where_params = build_where(filters, start=len(params) + 1)
        except ValueError as e:
            return StorageResult.failure(str(e))
        return await self._fetch(
            f"UPDATE {quote_identifier(table)} SET {assignments}{where_sql} RETURNING *",
            params + where_params,
        )
