from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from support_directory.services.schedule import ScheduleGate, parse_timestamp

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _gate(store, clock: Clock) -> ScheduleGate:
    return ScheduleGate(store, document_key="main", interval=timedelta(minutes=30), clock=clock)


def test_gate_is_due_when_never_completed(store) -> None:
    store.put_partition("main", "About", [["About this directory"]])
    gate = _gate(store, Clock(START))

    assert asyncio.run(gate.last_completed()) is None
    assert asyncio.run(gate.is_due())


def test_gate_throttles_until_interval_elapses(store) -> None:
    store.put_partition("main", "About", [])
    clock = Clock(START)
    gate = _gate(store, clock)

    asyncio.run(gate.mark_completed())
    assert store.grid("main", "About")[19][1] == START.isoformat()

    clock.now = START + timedelta(minutes=29)
    assert not asyncio.run(gate.is_due())
    assert asyncio.run(gate.is_due(force=True))

    clock.now = START + timedelta(minutes=30)
    assert asyncio.run(gate.is_due())


def test_gate_treats_unparseable_timestamp_as_due(store) -> None:
    grid: list[list[object]] = [[] for _ in range(19)]
    grid.append([None, "last tuesday"])
    store.put_partition("main", "About", grid)

    assert asyncio.run(_gate(store, Clock(START)).is_due())


def test_parse_timestamp_normalises_to_utc() -> None:
    assert parse_timestamp("2026-03-01T12:00:00Z") == START
    assert parse_timestamp("2026-03-01T23:00:00+11:00") == START
    assert parse_timestamp("2026-03-01T12:00:00") == START
    assert parse_timestamp(START) == START
    assert parse_timestamp("") is None
    assert parse_timestamp(42) is None
