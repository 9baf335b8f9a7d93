from __future__ import annotations

import asyncio
import json
from typing import Any

import asyncpg  # type: ignore[import-untyped]

from support_directory.services.row_store import (
    Partition,
    PartitionNotFoundError,
    PersistenceError,
    RowStore,
    RowStoreUnavailableError,
)

SCHEMA_STATEMENTS = (
    """
    create table if not exists row_store_partitions (
      document_key text not null,
      title text not null,
      position int not null default 0,
      primary key (document_key, title)
    )
    """,
    """
    create table if not exists row_store_rows (
      document_key text not null,
      title text not null,
      row_index int not null,
      cells jsonb not null default '[]'::jsonb,
      updated_at timestamptz not null default now(),
      primary key (document_key, title, row_index),
      foreign key (document_key, title)
        references row_store_partitions (document_key, title)
        on delete cascade
    )
    """,
)

# command_timeout surfaces as asyncio.TimeoutError; dropped connections as OSError.
DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, asyncio.TimeoutError, OSError)

_UPSERT_ROW = """
    insert into row_store_rows (document_key, title, row_index, cells)
    values ($1, $2, $3, $4::jsonb)
    on conflict (document_key, title, row_index)
    do update set cells = excluded.cells, updated_at = now()
"""


class PostgresPartition(Partition):
    def __init__(self, store: PostgresRowStore, document_key: str, title: str) -> None:
        super().__init__(document_key, title)
        self._store = store

    async def _fetch_grid(self) -> list[list[Any]]:
        pool = await self._store.get_pool()
        try:
            rows = await pool.fetch(
                """
                select row_index, cells
                from row_store_rows
                where document_key = $1 and title = $2
                order by row_index asc
                """,
                self.document_key,
                self.title,
            )
        except DRIVER_ERRORS as exc:
            raise RowStoreUnavailableError(f"failed to read partition {self.title!r}: {exc!r}") from exc

        grid: list[list[Any]] = []
        for row in rows:
            while len(grid) < row["row_index"]:
                grid.append([])
            grid.append(_decode_cells(row["cells"]))
        return grid

    async def _write_grid_rows(self, lines: dict[int, list[Any]]) -> None:
        pool = await self._store.get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(
                        _UPSERT_ROW,
                        [
                            (self.document_key, self.title, index, json.dumps(line))
                            for index, line in sorted(lines.items())
                        ],
                    )
        except DRIVER_ERRORS as exc:
            raise PersistenceError(f"failed to write rows to {self.title!r}: {exc!r}") from exc

    async def _update_grid_cells(self, row_number: int, updates: dict[int, Any]) -> list[Any]:
        pool = await self._store.get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    stored = await conn.fetchval(
                        """
                        select cells
                        from row_store_rows
                        where document_key = $1 and title = $2 and row_index = $3
                        for update
                        """,
                        self.document_key,
                        self.title,
                        row_number,
                    )
                    line = _decode_cells(stored)
                    for index, value in updates.items():
                        while len(line) <= index:
                            line.append(None)
                        line[index] = value
                    await conn.execute(_UPSERT_ROW, self.document_key, self.title, row_number, json.dumps(line))
                    return line
        except DRIVER_ERRORS as exc:
            raise PersistenceError(f"failed to update row {row_number} of {self.title!r}: {exc!r}") from exc

    async def _append_grid_rows(self, lines: list[list[Any]]) -> list[int]:
        pool = await self._store.get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    locked = await conn.fetchval(
                        """
                        select 1
                        from row_store_partitions
                        where document_key = $1 and title = $2
                        for update
                        """,
                        self.document_key,
                        self.title,
                    )
                    if not locked:
                        raise PartitionNotFoundError(
                            f"partition {self.title!r} not found in document {self.document_key!r}"
                        )
                    start = await conn.fetchval(
                        """
                        select coalesce(max(row_index), -1) + 1
                        from row_store_rows
                        where document_key = $1 and title = $2
                        """,
                        self.document_key,
                        self.title,
                    )
                    indexes = list(range(start, start + len(lines)))
                    await conn.executemany(
                        """
                        insert into row_store_rows (document_key, title, row_index, cells)
                        values ($1, $2, $3, $4::jsonb)
                        """,
                        [
                            (self.document_key, self.title, index, json.dumps(line))
                            for index, line in zip(indexes, lines)
                        ],
                    )
                    return indexes
        except DRIVER_ERRORS as exc:
            raise PersistenceError(f"failed to append rows to {self.title!r}: {exc!r}") from exc


class PostgresRowStore(RowStore):
    def __init__(self, database_url: str | None, min_pool_size: int = 1, max_pool_size: int = 10) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def open_partition(self, key: str, title: str | None = None) -> Partition:
        pool = await self.get_pool()
        try:
            if title is None:
                resolved = await pool.fetchval(
                    """
                    select title
                    from row_store_partitions
                    where document_key = $1
                    order by position asc, title asc
                    limit 1
                    """,
                    key,
                )
            else:
                resolved = await pool.fetchval(
                    "select title from row_store_partitions where document_key = $1 and title = $2",
                    key,
                    title,
                )
        except DRIVER_ERRORS as exc:
            raise RowStoreUnavailableError(f"failed to open partition {title!r} of {key!r}: {exc!r}") from exc
        if resolved is None:
            raise PartitionNotFoundError(f"partition {title!r} not found in document {key!r}")
        return PostgresPartition(self, key, resolved)

    async def list_partitions(self, key: str) -> list[Partition]:
        pool = await self.get_pool()
        try:
            titles = await pool.fetch(
                """
                select title
                from row_store_partitions
                where document_key = $1
                order by position asc, title asc
                """,
                key,
            )
        except DRIVER_ERRORS as exc:
            raise RowStoreUnavailableError(f"failed to list partitions of {key!r}: {exc!r}") from exc
        if not titles:
            raise PartitionNotFoundError(f"document {key!r} not found")
        return [PostgresPartition(self, key, row["title"]) for row in titles]

    async def get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RowStoreUnavailableError("SD_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RowStoreUnavailableError("database unavailable") from exc

        try:
            async with pool.acquire() as conn:
                for statement in SCHEMA_STATEMENTS:
                    await conn.execute(statement)
        except DRIVER_ERRORS as exc:
            await pool.close()
            raise RowStoreUnavailableError(f"failed to prepare row store tables: {exc!r}") from exc
        self._pool = pool
        return self._pool


def _decode_cells(raw: Any) -> list[Any]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return []
    if isinstance(raw, list):
        return raw
    return []
