from __future__ import annotations

import logging

from support_directory.core.urls import normalize_donate_url
from support_directory.services.records import CandidateRecord, SourceDescriptor, as_text
from support_directory.services.row_store import Partition, RowStore

logger = logging.getLogger(__name__)


class HeaderNotFoundError(Exception):
    """Raised when a source partition has no row carrying the donate URL header."""


class SourceIngestor:
    """Reads candidate records out of community-edited source partitions.

    Source documents cannot be read with header-keyed row access because many
    of them carry banner or instruction rows above the real header. The
    ingestor works cell by cell: it scans down until the donate URL header has
    been seen, then treats every row below it as data.
    """

    def __init__(self, store: RowStore) -> None:
        self._store = store

    async def extract(self, descriptor: SourceDescriptor) -> list[CandidateRecord]:
        partition = await self._store.open_partition(descriptor.partition_key, descriptor.partition_title)
        await partition.load_cells()

        header_row, columns = locate_header(partition, descriptor.field_map)

        candidates: list[CandidateRecord] = []
        invalid_urls = 0
        for row_index in range(header_row + 1, partition.row_count):
            values = {
                name: as_text(partition.get_cell(row_index, column).value)
                for name, column in columns.items()
            }
            raw_url = values.pop("donate_url", None)
            if not raw_url:
                continue

            donate_url = normalize_donate_url(raw_url)
            if donate_url is None:
                invalid_urls += 1
                continue
            candidates.append(CandidateRecord(donate_url=donate_url, **values))

        logger.info(
            "extracted source rows region=%s source=%s header_row=%s candidates=%s invalid_urls=%s",
            descriptor.region,
            descriptor.url,
            header_row,
            len(candidates),
            invalid_urls,
        )
        return candidates


def locate_header(partition: Partition, field_map: dict[str, str]) -> tuple[int, dict[str, int]]:
    labels = {name: label.strip() for name, label in field_map.items()}
    columns: dict[str, int] = {}

    for row_index in range(partition.row_count):
        for column in range(partition.column_count):
            text = as_text(partition.get_cell(row_index, column).value)
            if text is None:
                continue
            for name, label in labels.items():
                if text == label:
                    columns[name] = column
        if "donate_url" in columns:
            return row_index, columns

    raise HeaderNotFoundError(
        f"could not find header {field_map.get('donate_url')!r} in partition {partition.title!r}"
    )
