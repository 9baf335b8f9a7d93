from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache

from support_directory.core.config import Settings, get_settings
from support_directory.core.sources import parse_source_descriptors
from support_directory.services.cache import ReadThroughCache
from support_directory.services.directory import CachedResponse, DirectoryBuilder
from support_directory.services.enricher import Enricher, HtmlLogoFinder, HttpImageValidator, HttpPageFetcher
from support_directory.services.ingest import SourceIngestor
from support_directory.services.orchestrator import ReconciliationRunner
from support_directory.services.postgres_store import PostgresRowStore
from support_directory.services.reconciler import Reconciler
from support_directory.services.row_store import InMemoryRowStore, RowStore
from support_directory.services.schedule import ScheduleGate

logger = logging.getLogger(__name__)


class DirectoryEngine:
    """Wires the directory cache and the reconciliation runner over one row store."""

    def __init__(
        self,
        *,
        store: RowStore,
        cache: ReadThroughCache[CachedResponse],
        runner: ReconciliationRunner,
        reconcile_on_cache_refresh: bool = True,
    ) -> None:
        self.store = store
        self.cache = cache
        self.runner = runner
        self._reconcile_on_cache_refresh = reconcile_on_cache_refresh

    @classmethod
    def from_settings(cls, settings: Settings, store: RowStore | None = None) -> DirectoryEngine:
        if store is None:
            if settings.database_url:
                store = PostgresRowStore(
                    settings.database_url,
                    min_pool_size=settings.database_pool_min_size,
                    max_pool_size=settings.database_pool_max_size,
                )
            else:
                logger.warning("SD_DATABASE_URL not set; using an empty in-memory row store")
                store = InMemoryRowStore()

        sources = parse_source_descriptors(settings.sources_json, url_template=settings.source_url_template)
        page_fetcher = HttpPageFetcher(timeout_seconds=settings.http_timeout_seconds)
        enricher = Enricher(
            logo_finder=HtmlLogoFinder(page_fetcher),
            page_fetcher=page_fetcher,
            image_validator=HttpImageValidator(timeout_seconds=settings.http_timeout_seconds),
            avatar_url_template=settings.avatar_url_template,
            concurrency=settings.enrichment_concurrency,
        )
        reconciler = Reconciler(SourceIngestor(store), enricher, save_concurrency=settings.save_concurrency)
        gate = ScheduleGate(
            store,
            document_key=settings.canonical_document_key,
            partition_title=settings.metadata_partition_title,
            cell=settings.last_reconciled_cell,
            interval=timedelta(minutes=settings.reconcile_interval_minutes),
        )
        builder = DirectoryBuilder(
            store,
            document_key=settings.canonical_document_key,
            metadata_partition_title=settings.metadata_partition_title,
            concurrency=settings.directory_read_concurrency,
        )
        cache: ReadThroughCache[CachedResponse] = ReadThroughCache(
            builder.build,
            ttl_seconds=settings.cache_ttl_seconds,
        )
        runner = ReconciliationRunner(
            store=store,
            sources=sources,
            gate=gate,
            reconciler=reconciler,
            document_key=settings.canonical_document_key,
            region_concurrency=settings.region_concurrency,
            on_completed=cache.invalidate,
        )
        return cls(
            store=store,
            cache=cache,
            runner=runner,
            reconcile_on_cache_refresh=settings.reconcile_on_cache_refresh,
        )

    async def get_directory(self, *, bypass: bool = False) -> tuple[CachedResponse, bool]:
        response, refreshed = await self.cache.get(bypass=bypass)
        if refreshed and self._reconcile_on_cache_refresh:
            # Gate-checked: at most one real pass per interval however often the cache turns over.
            self.runner.trigger(force=False)
        return response, refreshed

    async def close(self) -> None:
        await self.runner.join()
        await self.store.close()


@lru_cache
def get_engine() -> DirectoryEngine:
    return DirectoryEngine.from_settings(get_settings())
