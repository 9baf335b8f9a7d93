from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from opentelemetry import trace

from support_directory.services.enricher import Enricher
from support_directory.services.ingest import HeaderNotFoundError, SourceIngestor
from support_directory.services.records import CandidateRecord, CanonicalRecord, SourceDescriptor
from support_directory.services.row_store import Partition, RowStoreError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class SourceReport:
    source: str
    candidates: int = 0
    inserted: int = 0
    adopted: int = 0
    retired: int = 0
    logos_attempted: int = 0
    logos_found: int = 0
    failed_saves: int = 0
    error: str | None = None


@dataclass(slots=True)
class RegionReport:
    region: str
    sources: list[SourceReport] = field(default_factory=list)

    @property
    def failed_sources(self) -> list[str]:
        return [report.source for report in self.sources if report.error is not None]


class Reconciler:
    """Merges a region's source candidates into its canonical partition.

    Sources are applied one after another in configured order: two sources
    writing the same partition at once could both insert a new donate URL.
    Records a source no longer lists are retired (``source`` cleared), never
    deleted, so operator curation on the row survives.
    """

    def __init__(self, ingestor: SourceIngestor, enricher: Enricher, *, save_concurrency: int = 3) -> None:
        self._ingestor = ingestor
        self._enricher = enricher
        self._save_concurrency = max(1, save_concurrency)

    async def reconcile(
        self,
        region: str,
        sources: list[SourceDescriptor],
        canonical_partition: Partition,
    ) -> RegionReport:
        report = RegionReport(region=region)
        with tracer.start_as_current_span("reconcile.region") as span:
            span.set_attribute("region", region)
            span.set_attribute("source_count", len(sources))

            records = [CanonicalRecord.from_row(row) for row in await canonical_partition.get_rows()]
            index: dict[str, CanonicalRecord] = {}
            for record in records:
                if record.donate_url:
                    index.setdefault(record.identity, record)

            for position, source in enumerate(sources, start=1):
                logger.info(
                    "processing source region=%s position=%s/%s source=%s",
                    region,
                    position,
                    len(sources),
                    source.url,
                )
                source_report = SourceReport(source=source.url)
                report.sources.append(source_report)
                try:
                    candidates = await self._ingestor.extract(source)
                except (HeaderNotFoundError, RowStoreError) as exc:
                    logger.error("skipping source region=%s source=%s error=%s", region, source.url, exc)
                    source_report.error = str(exc)
                    continue

                await self._apply_source(
                    source=source,
                    candidates=candidates,
                    records=records,
                    index=index,
                    partition=canonical_partition,
                    report=source_report,
                )
        return report

    async def _apply_source(
        self,
        *,
        source: SourceDescriptor,
        candidates: list[CandidateRecord],
        records: list[CanonicalRecord],
        index: dict[str, CanonicalRecord],
        partition: Partition,
        report: SourceReport,
    ) -> None:
        source_id = source.url
        report.candidates = len(candidates)

        # Starts as everything this source owned; whatever is left after the
        # candidates are matched is no longer listed by the source.
        to_delete: dict[int, CanonicalRecord] = {
            id(record): record for record in records if record.source == source_id
        }
        to_adopt: list[CanonicalRecord] = []
        to_insert: dict[str, CandidateRecord] = {}
        needs_logo: dict[int, CanonicalRecord] = {}

        for candidate in candidates:
            existing = index.get(candidate.donate_url)
            if existing is None:
                to_insert.setdefault(candidate.donate_url, candidate)
                continue

            if not existing.source:
                existing.source = source_id
                to_adopt.append(existing)
            to_delete.pop(id(existing), None)
            if existing.needs_logo:
                needs_logo.setdefault(id(existing), existing)

        if to_insert:
            logger.info("inserting rows region=%s source=%s count=%s", source.region, source_id, len(to_insert))
            try:
                new_rows = await partition.add_rows(
                    [candidate.to_cells(source=source_id) for candidate in to_insert.values()]
                )
            except RowStoreError as exc:
                logger.error("inserting rows failed region=%s source=%s error=%s", source.region, source_id, exc)
                report.error = str(exc)
                new_rows = []
            for row in new_rows:
                record = CanonicalRecord.from_row(row)
                records.append(record)
                index.setdefault(record.identity, record)
                if record.needs_logo:
                    needs_logo.setdefault(id(record), record)
            report.inserted = len(new_rows)

        if to_adopt:
            logger.info("adopting rows region=%s source=%s count=%s", source.region, source_id, len(to_adopt))
            report.failed_saves += await self._save_all(to_adopt)
            report.adopted = len(to_adopt)

        if to_delete:
            logger.info(
                "retiring rows no longer in source region=%s source=%s count=%s",
                source.region,
                source_id,
                len(to_delete),
            )
            retired = list(to_delete.values())
            for record in retired:
                record.source = ""
            report.failed_saves += await self._save_all(retired)
            report.retired = len(retired)

        report.logos_attempted = len(needs_logo)
        report.logos_found = await self._enricher.enrich_many(list(needs_logo.values()))

    async def _save_all(self, records: list[CanonicalRecord]) -> int:
        semaphore = asyncio.Semaphore(self._save_concurrency)

        async def save(record: CanonicalRecord) -> bool:
            async with semaphore:
                return await save_with_retry(record.save, description=record.donate_url)

        results = await asyncio.gather(*(save(record) for record in records))
        return sum(1 for saved in results if not saved)


async def save_with_retry(save: Callable[[], Awaitable[None]], *, description: str, attempts: int = 2) -> bool:
    for attempt in range(1, attempts + 1):
        try:
            await save()
            return True
        except RowStoreError as exc:
            if attempt < attempts:
                logger.warning("row save failed, retrying row=%s error=%s", description, exc)
                continue
            logger.error("row save failed row=%s attempts=%s error=%s", description, attempts, exc)
    return False
