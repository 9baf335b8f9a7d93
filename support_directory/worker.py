from __future__ import annotations

import asyncio
import logging
import random

from opentelemetry import trace

from support_directory.core.config import get_settings
from support_directory.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from support_directory.services.engine import DirectoryEngine
from support_directory.services.orchestrator import ReconciliationInProgressError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_worker() -> None:
    settings = get_settings()
    configure_logging(settings)
    telemetry_runtime = setup_telemetry(settings)
    engine = DirectoryEngine.from_settings(settings)

    backoff = settings.worker_poll_interval_seconds

    try:
        while True:
            try:
                with tracer.start_as_current_span("worker.poll_cycle"):
                    try:
                        report = await engine.runner.run(force=False)
                    except ReconciliationInProgressError:
                        logger.info("reconciliation already running, skipping cycle")
                    else:
                        if report.executed and report.failed_regions:
                            logger.warning("reconciliation finished with failed regions: %s", sorted(report.failed_regions))

                backoff = settings.worker_poll_interval_seconds
                await asyncio.sleep(settings.worker_poll_interval_seconds)
            except Exception as exc:  # pragma: no cover - bootstrap robustness
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.worker_max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        await engine.close()
        shutdown_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
