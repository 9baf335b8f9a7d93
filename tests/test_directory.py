from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import pytest

from support_directory.services.directory import DirectoryBuildError, DirectoryBuilder, SourceRef
from support_directory.services.row_store import InMemoryPartition, InMemoryRowStore, Partition, PersistenceError

BUILT_AT = datetime(2026, 3, 1, tzinfo=timezone.utc)
HEADER = ["title", "description", "donateUrl", "state", "city", "logo", "source", "hide"]


class UnreadablePartition(InMemoryPartition):
    async def _fetch_grid(self) -> list[list[Any]]:
        raise PersistenceError(f"read quota exceeded for {self.title}")


class PartlyUnreadableStore(InMemoryRowStore):
    def __init__(self, unreadable: set[str]) -> None:
        super().__init__()
        self.unreadable = unreadable

    async def list_partitions(self, key: str) -> list[Partition]:
        partitions = await super().list_partitions(key)
        return [
            UnreadablePartition(self, key, partition.title) if partition.title in self.unreadable else partition
            for partition in partitions
        ]


def _builder(store: InMemoryRowStore) -> DirectoryBuilder:
    return DirectoryBuilder(store, document_key="main", clock=lambda: BUILT_AT)


def _seed(store: InMemoryRowStore, canonical_row) -> None:
    store.put_partition(
        "main",
        "AU",
        [
            HEADER,
            canonical_row(title="A", donateUrl="https://a.org", source="https://docs.example/s1"),
            canonical_row(title="Hidden", donateUrl="https://h.org", source="https://docs.example/s9", hide="TRUE"),
            canonical_row(title="B", donateUrl="https://b.org", source="https://docs.example/s2", hide="false"),
            canonical_row(title="C", donateUrl="https://c.org", source="https://docs.example/s1"),
            canonical_row(title="Orphan", donateUrl="https://o.org"),
            canonical_row(title="No link"),
        ],
    )
    store.put_partition(
        "main",
        "US",
        [HEADER, canonical_row(title="D", donateUrl="https://d.org", source="https://docs.example/s1")],
    )
    store.put_partition("main", "About", [["Directory notes"], ["Last updated", "2026-01-01T00:00:00+00:00"]])


def test_build_reads_regions_and_collects_sources(store, canonical_row) -> None:
    _seed(store, canonical_row)

    response = asyncio.run(_builder(store).build())

    assert list(response.data) == ["AU", "US"]
    assert [record.title for record in response.data["AU"]] == ["A", "B", "C", "Orphan"]
    assert response.sources == [
        SourceRef(region="AU", url="https://docs.example/s1"),
        SourceRef(region="AU", url="https://docs.example/s2"),
        SourceRef(region="US", url="https://docs.example/s1"),
    ]
    assert response.built_at == BUILT_AT


def test_build_omits_unreadable_region(canonical_row) -> None:
    store = PartlyUnreadableStore({"US"})
    _seed(store, canonical_row)

    response = asyncio.run(_builder(store).build())

    assert list(response.data) == ["AU"]


def test_build_fails_when_every_region_is_unreadable(canonical_row) -> None:
    store = PartlyUnreadableStore({"AU", "US"})
    _seed(store, canonical_row)

    with pytest.raises(DirectoryBuildError):
        asyncio.run(_builder(store).build())


def test_build_fails_when_document_is_missing(store) -> None:
    with pytest.raises(DirectoryBuildError):
        asyncio.run(_builder(store).build())
