from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from support_directory.services.row_store import RowStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleGate:
    """Throttles reconciliation runs through a timestamp cell in the canonical document.

    Reads never consult the gate; it only bounds how often the expensive
    multi-source reconciliation may run.
    """

    def __init__(
        self,
        store: RowStore,
        *,
        document_key: str,
        partition_title: str = "About",
        cell: str = "B20",
        interval: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._document_key = document_key
        self._partition_title = partition_title
        self._cell = cell
        self._interval = interval
        self._clock = clock

    async def last_completed(self) -> datetime | None:
        partition = await self._store.open_partition(self._document_key, self._partition_title)
        await partition.load_cells(f"{self._cell}:{self._cell}")
        return parse_timestamp(partition.get_cell_by_a1(self._cell).value)

    async def is_due(self, *, force: bool = False) -> bool:
        if force:
            logger.info("reconciliation forced")
            return True

        last_completed = await self.last_completed()
        if last_completed is None:
            return True

        next_due = last_completed + self._interval
        if self._clock() < next_due:
            logger.info("reconciliation not due yet next_due=%s", next_due.isoformat())
            return False
        return True

    async def mark_completed(self) -> None:
        partition = await self._store.open_partition(self._document_key, self._partition_title)
        await partition.load_cells(f"{self._cell}:{self._cell}")
        partition.get_cell_by_a1(self._cell).value = self._clock().isoformat()
        await partition.save_updated_cells()


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
