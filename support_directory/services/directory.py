from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from support_directory.services.records import CanonicalRecord
from support_directory.services.row_store import Partition, RowStore, RowStoreError

logger = logging.getLogger(__name__)


class DirectoryBuildError(Exception):
    """Raised when no canonical partition could be read."""


@dataclass(slots=True)
class SourceRef:
    region: str
    url: str


@dataclass(slots=True)
class CachedResponse:
    data: dict[str, list[CanonicalRecord]]
    sources: list[SourceRef]
    built_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DirectoryBuilder:
    """Reads every region's canonical partition into one response."""

    def __init__(
        self,
        store: RowStore,
        *,
        document_key: str,
        metadata_partition_title: str = "About",
        concurrency: int = 2,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._document_key = document_key
        self._metadata_partition_title = metadata_partition_title
        self._concurrency = max(1, concurrency)
        self._clock = clock

    async def build(self) -> CachedResponse:
        logger.info("loading entries from canonical document key=%s", self._document_key)
        try:
            partitions = await self._store.list_partitions(self._document_key)
        except RowStoreError as exc:
            raise DirectoryBuildError(f"canonical document unavailable: {exc}") from exc

        regions = [partition for partition in partitions if partition.title != self._metadata_partition_title]
        semaphore = asyncio.Semaphore(self._concurrency)

        async def load(partition: Partition) -> list[CanonicalRecord] | None:
            async with semaphore:
                try:
                    rows = await partition.get_rows()
                except RowStoreError as exc:
                    logger.error("failed to read region=%s error=%s", partition.title, exc)
                    return None
            records = [CanonicalRecord.from_row(row) for row in rows]
            return [record for record in records if record.donate_url and not record.hide]

        loaded = await asyncio.gather(*(load(partition) for partition in regions))

        data: dict[str, list[CanonicalRecord]] = {}
        for partition, records in zip(regions, loaded):
            if records is not None:
                data[partition.title] = records
        if regions and not data:
            raise DirectoryBuildError("no region of the canonical document could be read")

        return CachedResponse(data=data, sources=collect_sources(data), built_at=self._clock())


def collect_sources(data: dict[str, list[CanonicalRecord]]) -> list[SourceRef]:
    sources: list[SourceRef] = []
    for region, records in data.items():
        seen: set[str] = set()
        for record in records:
            if record.source and record.source not in seen:
                seen.add(record.source)
                sources.append(SourceRef(region=region, url=record.source))
    return sources
