from __future__ import annotations

import asyncio
import json
import os
import uuid
from contextlib import asynccontextmanager
from typing import Any

import pytest

from support_directory.services.directory import DirectoryBuilder
from support_directory.services.postgres_store import PostgresRowStore
from support_directory.services.records import CanonicalRecord
from support_directory.services.row_store import (
    PartitionNotFoundError,
    PersistenceError,
    RowStoreUnavailableError,
)

DATABASE_URL = os.getenv("SD_DATABASE_URL")
HEADER = ["title", "description", "donateUrl", "state", "city", "logo", "source", "hide"]


class FakeConnection:
    def __init__(self, pool: FakePool) -> None:
        self.pool = pool

    @asynccontextmanager
    async def transaction(self):
        yield

    async def fetchval(self, query: str, *args: Any) -> Any:
        if self.pool.write_error is not None:
            raise self.pool.write_error
        return json.dumps(self.pool.grids[args[1]][args[2]])

    async def execute(self, query: str, *args: Any) -> None:
        self.pool.grids[args[1]][args[2]] = json.loads(args[3])


class FakePool:
    """Answers the store's queries from in-process grids, failing on demand."""

    def __init__(self, grids: dict[str, list[list[Any]]]) -> None:
        self.grids = grids
        self.timed_out: set[str] = set()
        self.write_error: BaseException | None = None

    async def fetch(self, query: str, *args: Any) -> list[dict[str, Any]]:
        if "row_index, cells" in query:
            title = args[1]
            if title in self.timed_out:
                raise asyncio.TimeoutError()
            return [
                {"row_index": index, "cells": json.dumps(line)}
                for index, line in enumerate(self.grids[title])
            ]
        return [{"title": title} for title in self.grids]

    async def fetchval(self, query: str, *args: Any) -> Any:
        title = args[1] if len(args) > 1 else next(iter(self.grids))
        return title if title in self.grids else None

    @asynccontextmanager
    async def acquire(self):
        yield FakeConnection(self)

    async def close(self) -> None:
        return None


def _fake_store(pool: FakePool) -> PostgresRowStore:
    store = PostgresRowStore("postgresql://fake/support")
    store._pool = pool
    return store


def _grids() -> dict[str, list[list[Any]]]:
    return {
        "AU": [HEADER, ["Org A", None, "https://a.org", None, None, "(none)", "https://docs.example/s1", None]],
        "UK": [HEADER, ["Org U", None, "https://u.org", None, None, "(none)", "https://docs.example/s2", None]],
        "About": [["Last updated"]],
    }


def test_store_requires_database_url() -> None:
    store = PostgresRowStore(None)
    with pytest.raises(RowStoreUnavailableError):
        asyncio.run(store.list_partitions("main"))


def test_region_read_timeout_only_drops_that_region() -> None:
    pool = FakePool(_grids())
    pool.timed_out.add("UK")

    response = asyncio.run(DirectoryBuilder(_fake_store(pool), document_key="main").build())

    assert list(response.data) == ["AU"]
    assert response.data["AU"][0].donate_url == "https://a.org"


def test_read_timeout_is_reported_as_unavailable_store() -> None:
    pool = FakePool(_grids())
    pool.timed_out.add("AU")

    async def run() -> None:
        partition = await _fake_store(pool).open_partition("main", "AU")
        await partition.get_rows()

    with pytest.raises(RowStoreUnavailableError) as excinfo:
        asyncio.run(run())
    assert isinstance(excinfo.value.__cause__, asyncio.TimeoutError)


def test_write_timeout_is_reported_as_persistence_error() -> None:
    pool = FakePool(_grids())

    async def run() -> None:
        partition = await _fake_store(pool).open_partition("main", "AU")
        record = CanonicalRecord.from_row((await partition.get_rows())[0])
        record.source = ""
        pool.write_error = asyncio.TimeoutError()
        await record.save()

    with pytest.raises(PersistenceError):
        asyncio.run(run())
    assert pool.grids["AU"][1][6] == "https://docs.example/s1"


def test_record_save_merges_engine_columns_into_stored_line() -> None:
    pool = FakePool(_grids())

    async def run() -> None:
        partition = await _fake_store(pool).open_partition("main", "AU")
        record = CanonicalRecord.from_row((await partition.get_rows())[0])
        pool.grids["AU"][1][7] = "yes"
        record.source = ""
        await record.save()

    asyncio.run(run())
    assert pool.grids["AU"][1][5:] == ["(none)", "", "yes"]


@pytest.mark.skipif(not DATABASE_URL, reason="SD_DATABASE_URL is not set")
def test_partition_round_trip_against_postgres() -> None:
    document_key = f"test-{uuid.uuid4().hex}"

    async def run() -> tuple[list[str], list[CanonicalRecord], str]:
        store = PostgresRowStore(DATABASE_URL)
        try:
            pool = await store.get_pool()
            await pool.execute(
                "insert into row_store_partitions (document_key, title, position) values ($1, 'AU', 0), ($1, 'About', 1)",
                document_key,
            )
            await pool.execute(
                "insert into row_store_rows (document_key, title, row_index, cells) values ($1, 'AU', 0, $2::jsonb)",
                document_key,
                json.dumps(HEADER),
            )

            titles = [partition.title for partition in await store.list_partitions(document_key)]

            partition = await store.open_partition(document_key, "AU")
            await partition.get_rows()
            inserted = await partition.add_rows([{"title": "Org A", "donateUrl": "https://a.org"}])
            record = CanonicalRecord.from_row(inserted[0])
            record.source = "https://docs.example/s1"
            record.logo = "(none)"
            await record.save()

            reread = await store.open_partition(document_key, "AU")
            records = [CanonicalRecord.from_row(row) for row in await reread.get_rows()]

            about = await store.open_partition(document_key, "About")
            await about.load_cells("A20:B20")
            about.get_cell_by_a1("B20").value = "2026-03-01T12:00:00+00:00"
            await about.save_updated_cells()
            await about.load_cells("A20:B20")
            stamp = about.get_cell_by_a1("B20").value

            with pytest.raises(PartitionNotFoundError):
                await store.open_partition(document_key, "US")

            await pool.execute("delete from row_store_partitions where document_key = $1", document_key)
            return titles, records, stamp
        finally:
            await store.close()

    titles, records, stamp = asyncio.run(run())
    assert titles == ["AU", "About"]
    assert len(records) == 1
    assert records[0].donate_url == "https://a.org"
    assert records[0].source == "https://docs.example/s1"
    assert records[0].logo == "(none)"
    assert stamp == "2026-03-01T12:00:00+00:00"
