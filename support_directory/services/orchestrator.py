from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from opentelemetry import trace

from support_directory.services.reconciler import Reconciler, RegionReport
from support_directory.services.records import SourceDescriptor
from support_directory.services.row_store import RowStore
from support_directory.services.schedule import ScheduleGate

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ReconciliationInProgressError(Exception):
    """Raised when a run is requested while another one holds the run lock."""


@dataclass(slots=True)
class RunReport:
    executed: bool
    regions: list[RegionReport] = field(default_factory=list)
    failed_regions: dict[str, str] = field(default_factory=dict)


def group_by_region(sources: list[SourceDescriptor]) -> dict[str, list[SourceDescriptor]]:
    grouped: dict[str, list[SourceDescriptor]] = {}
    for source in sources:
        grouped.setdefault(source.region, []).append(source)
    return grouped


class ReconciliationRunner:
    """Runs reconciliation passes over every region, one pass at a time."""

    def __init__(
        self,
        *,
        store: RowStore,
        sources: list[SourceDescriptor],
        gate: ScheduleGate,
        reconciler: Reconciler,
        document_key: str,
        region_concurrency: int = 1,
        on_completed: Callable[[], None] | None = None,
    ) -> None:
        self._store = store
        self._sources = list(sources)
        self._gate = gate
        self._reconciler = reconciler
        self._document_key = document_key
        self._region_concurrency = max(1, region_concurrency)
        self._on_completed = on_completed
        self._running = False
        self._task: asyncio.Task[RunReport] | None = None

    @property
    def in_progress(self) -> bool:
        return self._running

    def trigger(self, *, force: bool = False) -> bool:
        """Start a run in the background. Returns False when one is already running."""
        if self._running:
            logger.info("reconciliation already in progress, not starting another")
            return False
        # Taken before the task is scheduled so a second trigger in the same tick sees it.
        self._running = True
        self._task = asyncio.ensure_future(self._run_locked(force))
        self._task.add_done_callback(self._finish_background_run)
        return True

    async def run(self, *, force: bool = False) -> RunReport:
        if self._running:
            raise ReconciliationInProgressError("Reconciliation already in progress")
        self._running = True
        return await self._run_locked(force)

    async def join(self) -> None:
        """Wait for the current background run, if any."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait([task])

    def _finish_background_run(self, task: asyncio.Task[RunReport]) -> None:
        if self._task is task:
            self._task = None
        if task.cancelled():
            logger.warning("background reconciliation was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background reconciliation failed", exc_info=exc)

    async def _run_locked(self, force: bool) -> RunReport:
        try:
            return await self._execute(force)
        finally:
            self._running = False

    async def _execute(self, force: bool) -> RunReport:
        with tracer.start_as_current_span("reconcile.run") as span:
            span.set_attribute("force", force)
            if not await self._gate.is_due(force=force):
                return RunReport(executed=False)

            by_region = group_by_region(self._sources)
            logger.info("starting reconciliation regions=%s sources=%s", len(by_region), len(self._sources))
            report = RunReport(executed=True)
            semaphore = asyncio.Semaphore(self._region_concurrency)

            async def reconcile_region(region: str, sources: list[SourceDescriptor]) -> None:
                async with semaphore:
                    try:
                        partition = await self._store.open_partition(self._document_key, region)
                        region_report = await self._reconciler.reconcile(region, sources, partition)
                    except Exception as exc:
                        logger.exception("region reconciliation failed region=%s", region)
                        report.failed_regions[region] = str(exc)
                        return
                    report.regions.append(region_report)
                    if region_report.failed_sources:
                        logger.warning(
                            "region finished with failed sources region=%s failed=%s",
                            region,
                            len(region_report.failed_sources),
                        )

            await asyncio.gather(*(reconcile_region(region, sources) for region, sources in by_region.items()))

            await self._gate.mark_completed()
            span.set_attribute("failed_regions", len(report.failed_regions))
            logger.info(
                "finished reconciliation regions=%s failed_regions=%s",
                len(report.regions),
                len(report.failed_regions),
            )

        if self._on_completed is not None:
            self._on_completed()
        return report
