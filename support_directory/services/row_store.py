from __future__ import annotations

import asyncio
import copy
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

_A1_RE = re.compile(r"^([A-Za-z]+)([1-9][0-9]*)$")


class RowStoreError(Exception):
    """Base row store error."""


class RowStoreUnavailableError(RowStoreError):
    """Raised when the backing store is unavailable or not configured."""


class PartitionNotFoundError(RowStoreError):
    """Raised when a document or one of its partitions does not exist."""


class PersistenceError(RowStoreError):
    """Raised when a row or cell write is rejected by the backing store."""


def parse_a1(reference: str) -> tuple[int, int]:
    """Return zero-based ``(row, column)`` for an A1 reference such as ``B20``."""
    match = _A1_RE.match(reference.strip())
    if not match:
        raise ValueError(f"invalid A1 reference: {reference!r}")
    letters, digits = match.groups()
    column = 0
    for letter in letters.upper():
        column = column * 26 + (ord(letter) - ord("A") + 1)
    return int(digits) - 1, column - 1


def to_a1(row: int, column: int) -> str:
    letters = ""
    index = column + 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return f"{letters}{row + 1}"


class Cell:
    __slots__ = ("row", "column", "_value", "dirty")

    def __init__(self, row: int, column: int, value: Any = None) -> None:
        self.row = row
        self.column = column
        self._value = value
        self.dirty = False

    @property
    def value(self) -> Any:
        return self._value

    @value.setter
    def value(self, new_value: Any) -> None:
        self._value = new_value
        self.dirty = True

    @property
    def a1(self) -> str:
        return to_a1(self.row, self.column)


class Row:
    """A header-keyed record backed by one line of a partition."""

    def __init__(self, partition: Partition, row_number: int, values: dict[str, Any]) -> None:
        self.partition = partition
        self.row_number = row_number
        self.values = values

    def get(self, header: str, default: Any = None) -> Any:
        return self.values.get(header, default)

    def __getitem__(self, header: str) -> Any:
        return self.values[header]

    def __setitem__(self, header: str, value: Any) -> None:
        self.values[header] = value

    async def save(self, columns: Iterable[str] | None = None) -> None:
        await self.partition.save_row(self, columns)


class Partition(ABC):
    """One sheet-like grid of cells. Row 0 is the header for record access."""

    def __init__(self, document_key: str, title: str) -> None:
        self.document_key = document_key
        self.title = title
        self._grid: list[list[Any]] | None = None
        self._cells: dict[tuple[int, int], Cell] = {}

    @property
    def row_count(self) -> int:
        return len(self._require_grid())

    @property
    def column_count(self) -> int:
        grid = self._require_grid()
        return max((len(line) for line in grid), default=0)

    async def load_cells(self, a1_range: str | None = None) -> None:
        # Both backends materialise the whole grid; a range is only validated.
        if a1_range:
            for reference in a1_range.split(":"):
                parse_a1(reference)
        self._grid = await self._fetch_grid()
        self._cells.clear()

    def get_cell(self, row: int, column: int) -> Cell:
        grid = self._require_grid()
        key = (row, column)
        cell = self._cells.get(key)
        if cell is None:
            value = None
            if row < len(grid) and column < len(grid[row]):
                value = grid[row][column]
            cell = Cell(row, column, value)
            self._cells[key] = cell
        return cell

    def get_cell_by_a1(self, reference: str) -> Cell:
        row, column = parse_a1(reference)
        return self.get_cell(row, column)

    async def save_updated_cells(self) -> None:
        grid = self._require_grid()
        dirty = [cell for cell in self._cells.values() if cell.dirty]
        if not dirty:
            return
        changed: dict[int, list[Any]] = {}
        for cell in dirty:
            while len(grid) <= cell.row:
                grid.append([])
            line = grid[cell.row]
            while len(line) <= cell.column:
                line.append(None)
            line[cell.column] = cell.value
            changed[cell.row] = list(line)
        await self._write_grid_rows(changed)
        for cell in dirty:
            cell.dirty = False

    async def get_rows(self) -> list[Row]:
        self._grid = await self._fetch_grid()
        self._cells.clear()
        header = self._header()
        rows: list[Row] = []
        for row_number, line in enumerate(self._grid[1:], start=1):
            if not any(_has_value(value) for value in line):
                continue
            values = {
                name: line[index] if index < len(line) else None
                for index, name in header
            }
            rows.append(Row(self, row_number, values))
        return rows

    async def add_rows(self, records: list[Mapping[str, Any]]) -> list[Row]:
        if not records:
            return []
        if self._grid is None:
            self._grid = await self._fetch_grid()
        header = self._header()
        if not header:
            raise PersistenceError(f"partition {self.title!r} has no header row")
        width = max(index for index, _ in header) + 1
        lines: list[list[Any]] = []
        for record in records:
            line: list[Any] = [None] * width
            for index, name in header:
                line[index] = record.get(name)
            lines.append(line)
        row_numbers = await self._append_grid_rows(lines)
        rows: list[Row] = []
        for row_number, line in zip(row_numbers, lines):
            while len(self._grid) <= row_number:
                self._grid.append([])
            self._grid[row_number] = list(line)
            rows.append(Row(self, row_number, {name: line[index] for index, name in header}))
        return rows

    async def save_row(self, row: Row, columns: Iterable[str] | None = None) -> None:
        """Persist a row.

        With ``columns`` only those cells are written, merged into the stored
        line, so concurrent edits to other columns survive. Without it every
        header column held by the row is written.
        """
        grid = self._require_grid()
        header = self._header()
        if columns is not None:
            wanted = set(columns)
            updates = {
                index: row.values.get(name)
                for index, name in header
                if name in wanted
            }
            line = await self._update_grid_cells(row.row_number, updates)
            for index, name in header:
                row.values[name] = line[index] if index < len(line) else None
        else:
            line = list(grid[row.row_number]) if row.row_number < len(grid) else []
            for index, name in header:
                if name not in row.values:
                    continue
                while len(line) <= index:
                    line.append(None)
                line[index] = row.values[name]
            await self._write_grid_rows({row.row_number: line})
        while len(grid) <= row.row_number:
            grid.append([])
        grid[row.row_number] = list(line)

    def _header(self) -> list[tuple[int, str]]:
        grid = self._require_grid()
        if not grid:
            return []
        return [
            (index, str(value).strip())
            for index, value in enumerate(grid[0])
            if _has_value(value)
        ]

    def _require_grid(self) -> list[list[Any]]:
        if self._grid is None:
            raise RowStoreError(f"partition {self.title!r} has not been loaded")
        return self._grid

    @abstractmethod
    async def _fetch_grid(self) -> list[list[Any]]:
        """Return every stored line of the partition, index 0 being the header."""

    @abstractmethod
    async def _write_grid_rows(self, lines: dict[int, list[Any]]) -> None:
        """Replace the given lines, creating them when missing."""

    @abstractmethod
    async def _update_grid_cells(self, row_number: int, updates: dict[int, Any]) -> list[Any]:
        """Set the given column indexes on the stored line and return the merged line."""

    @abstractmethod
    async def _append_grid_rows(self, lines: list[list[Any]]) -> list[int]:
        """Append lines after the last stored line and return their indexes."""


class RowStore(ABC):
    @abstractmethod
    async def open_partition(self, key: str, title: str | None = None) -> Partition:
        """Open a partition by title, or the first partition when no title is given."""

    @abstractmethod
    async def list_partitions(self, key: str) -> list[Partition]:
        """Return every partition of a document in document order."""

    async def close(self) -> None:
        return None


class InMemoryPartition(Partition):
    def __init__(self, store: InMemoryRowStore, document_key: str, title: str) -> None:
        super().__init__(document_key, title)
        self._store = store

    async def _fetch_grid(self) -> list[list[Any]]:
        await asyncio.sleep(0)
        return copy.deepcopy(self._store.grid(self.document_key, self.title))

    async def _write_grid_rows(self, lines: dict[int, list[Any]]) -> None:
        await asyncio.sleep(0)
        grid = self._store.grid(self.document_key, self.title)
        for index, line in lines.items():
            while len(grid) <= index:
                grid.append([])
            grid[index] = list(line)

    async def _update_grid_cells(self, row_number: int, updates: dict[int, Any]) -> list[Any]:
        await asyncio.sleep(0)
        grid = self._store.grid(self.document_key, self.title)
        while len(grid) <= row_number:
            grid.append([])
        line = grid[row_number]
        for index, value in updates.items():
            while len(line) <= index:
                line.append(None)
            line[index] = value
        return list(line)

    async def _append_grid_rows(self, lines: list[list[Any]]) -> list[int]:
        await asyncio.sleep(0)
        grid = self._store.grid(self.document_key, self.title)
        start = len(grid)
        grid.extend(list(line) for line in lines)
        return list(range(start, start + len(lines)))


class InMemoryRowStore(RowStore):
    """Process-local row store used for tests and local development."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, list[list[Any]]]] = {}

    def put_partition(self, key: str, title: str, grid: list[list[Any]]) -> None:
        self.documents.setdefault(key, {})[title] = [list(line) for line in grid]

    def grid(self, key: str, title: str) -> list[list[Any]]:
        try:
            return self.documents[key][title]
        except KeyError as exc:
            raise PartitionNotFoundError(f"partition {title!r} not found in document {key!r}") from exc

    async def open_partition(self, key: str, title: str | None = None) -> Partition:
        document = self.documents.get(key)
        if not document:
            raise PartitionNotFoundError(f"document {key!r} not found")
        if title is None:
            title = next(iter(document))
        elif title not in document:
            raise PartitionNotFoundError(f"partition {title!r} not found in document {key!r}")
        return InMemoryPartition(self, key, title)

    async def list_partitions(self, key: str) -> list[Partition]:
        document = self.documents.get(key)
        if document is None:
            raise PartitionNotFoundError(f"document {key!r} not found")
        return [InMemoryPartition(self, key, title) for title in document]


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True
