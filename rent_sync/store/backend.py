"""
Store Backend Module
====================

Abstract interface to a persistent, human-editable table plus an
in-memory implementation.

Positions are 0-based grid rows: row 0 is the header, data starts at 1.
Implementations only move cells around; retries, timeouts and the
meaning of columns live in the writer and layout modules.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from rent_sync.core.exceptions import BackendError
from rent_sync.core.schema import QueryConfig
from rent_sync.ingestion.registry import StoreConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Formula:
    """A formula cell. ``display`` is what the formula evaluates to."""

    text: str
    display: str = ""


@dataclass(frozen=True)
class CellWrite:
    """One pending cell write at a grid position."""

    row: int
    col: int
    value: Any
    number_format: str | None = None


class StoreHandle(ABC):
    """A connected store: one config surface and one data table."""

    title: str = ""

    @abstractmethod
    async def read_queries(self) -> list[QueryConfig]:
        """
        Read the configured queries, creating the config surface if absent.

        Returns:
            Every configured query, enabled or not, in configured order
        """

    @abstractmethod
    async def read_header(self) -> list[Any]:
        """Read the data table's header row (grid row 0)."""

    @abstractmethod
    async def list_rows(self) -> list[list[Any]]:
        """
        Read all data rows below the header.

        Returns:
            Raw cell values per row; element 0 is grid row 1
        """

    @abstractmethod
    async def insert_rows(self, position: int, count: int) -> None:
        """
        Insert ``count`` empty rows before grid row ``position``.

        Not idempotent: callers must not retry it blindly.
        """

    @abstractmethod
    async def write_cells(self, cells: list[CellWrite]) -> None:
        """Apply a batch of cell writes in one round trip."""


class StoreBackend(ABC):
    """Factory for store handles."""

    @abstractmethod
    async def connect(self, store: StoreConfig) -> StoreHandle:
        """
        Open a store.

        Raises:
            ConfigurationError: Credentials or settings are missing
            BackendError: The store cannot be reached
        """


@dataclass
class InMemoryTable:
    """State of one in-memory store."""

    headers: list[str]
    queries: list[QueryConfig] = field(default_factory=list)
    grid: list[list[Any]] = field(default_factory=list)
    formats: dict[tuple[int, int], str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.grid:
            self.grid = [list(self.headers)]

    def values(self) -> list[list[Any]]:
        """Data rows as a spreadsheet would render them."""
        return [
            [cell.display if isinstance(cell, Formula) else cell for cell in row]
            for row in self.grid[1:]
        ]


class InMemoryHandle(StoreHandle):
    """Handle over an InMemoryTable."""

    def __init__(self, name: str, table: InMemoryTable) -> None:
        self.title = name
        self.table = table

    async def read_queries(self) -> list[QueryConfig]:
        return list(self.table.queries)

    async def read_header(self) -> list[Any]:
        return list(self.table.grid[0])

    async def list_rows(self) -> list[list[Any]]:
        return copy.deepcopy(self.table.values())

    async def insert_rows(self, position: int, count: int) -> None:
        if position < 1 or position > len(self.table.grid):
            raise BackendError(f"Cannot insert rows at position {position}")
        width = len(self.table.headers)
        for _ in range(count):
            self.table.grid.insert(position, [""] * width)
        self.table.formats = {
            (row + count if row >= position else row, col): fmt
            for (row, col), fmt in self.table.formats.items()
        }

    async def write_cells(self, cells: list[CellWrite]) -> None:
        for cell in cells:
            if cell.row < 1 or cell.row >= len(self.table.grid):
                raise BackendError(f"Row {cell.row} is outside the table")
            row = self.table.grid[cell.row]
            if cell.col >= len(row):
                row.extend([""] * (cell.col + 1 - len(row)))
            row[cell.col] = cell.value
            if cell.number_format:
                self.table.formats[(cell.row, cell.col)] = cell.number_format


class InMemoryBackend(StoreBackend):
    """
    Non-persistent backend keyed by store id.

    Unknown store ids get an empty table with no queries.
    """

    def __init__(self, headers: list[str] | None = None) -> None:
        from rent_sync.store.layout import DATA_HEADERS

        self.headers = list(headers or DATA_HEADERS)
        self.tables: dict[str, InMemoryTable] = {}

    def table(self, store_id: str) -> InMemoryTable:
        """Get or create the table for ``store_id``."""
        if store_id not in self.tables:
            self.tables[store_id] = InMemoryTable(headers=self.headers)
        return self.tables[store_id]

    async def connect(self, store: StoreConfig) -> StoreHandle:
        logger.debug(f"Connecting to in-memory store {store.name}")
        return InMemoryHandle(store.name, self.table(store.store_id))
