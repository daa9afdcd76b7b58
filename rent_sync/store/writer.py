"""
Store Writer Module
===================

Reads a store's queries and snapshot, and applies reconcile plans to it.

Writing happens in two phases. ``build_write_plan`` computes every cell
write against the row positions of the snapshot as it was read. New rows
go in at the top, which pushes every existing row down, so
``shift_positions`` then moves the pre-computed writes by the number of
inserted rows. That shift is the only place row arithmetic happens.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from rent_sync.core.exceptions import BackendError
from rent_sync.core.schema import QueryConfig, StoreRow
from rent_sync.ingestion.reconcile import ReconcilePlan
from rent_sync.ingestion.registry import PipelineConfig
from rent_sync.ingestion.retry import RetryPolicy, with_retry
from rent_sync.store.backend import CellWrite, StoreHandle
from rent_sync.store.layout import (
    check_header,
    insert_cells,
    retire_cells,
    row_from_values,
    update_cells,
)

logger = logging.getLogger(__name__)

# New rows go directly under the header
INSERT_POSITION = 1


def store_retry_policy(config: PipelineConfig) -> RetryPolicy:
    """Retry policy for store API calls."""
    return RetryPolicy(
        attempts=config.retry.store_attempts,
        timeout=config.timeouts.store_operation,
        backoff=config.retry.store_backoff_seconds,
        retry_on=(BackendError,),
    )


@dataclass
class WritePlan:
    """Backend operations for one reconcile plan."""

    insert_at: int = INSERT_POSITION
    insert_count: int = 0
    insert_cells: list[CellWrite] = field(default_factory=list)
    change_cells: list[CellWrite] = field(default_factory=list)

    @property
    def cells(self) -> list[CellWrite]:
        """Every cell write of the plan, for a single batch."""
        return self.insert_cells + self.change_cells


def shift_positions(cells: list[CellWrite], at: int, count: int) -> list[CellWrite]:
    """Move writes at or below grid row ``at`` down by ``count`` rows."""
    if count == 0:
        return list(cells)
    return [
        CellWrite(row=c.row + count, col=c.col, value=c.value, number_format=c.number_format)
        if c.row >= at
        else c
        for c in cells
    ]


def _require_position(row: StoreRow) -> int:
    if row.position is None:
        raise ValueError(f"Row {row.id} has no store position")
    return row.position


def build_write_plan(plan: ReconcilePlan, insert_at: int = INSERT_POSITION) -> WritePlan:
    """
    Turn a reconcile plan into positional cell writes.

    Args:
        plan: Decisions from the reconcile engine; updated and retired rows
            carry the positions they were read from
        insert_at: Grid row where new rows are inserted

    Returns:
        WritePlan with change cells already shifted past the inserted rows
    """
    inserted = [
        cell
        for offset, row in enumerate(plan.inserts)
        for cell in insert_cells(row, insert_at + offset)
    ]

    changes: list[CellWrite] = []
    for update in plan.updates:
        changes.extend(update_cells(update.after, _require_position(update.before)))
    for row in plan.retirements:
        changes.extend(retire_cells(row, _require_position(row)))

    count = len(plan.inserts)
    return WritePlan(
        insert_at=insert_at,
        insert_count=count,
        insert_cells=inserted,
        change_cells=shift_positions(changes, insert_at, count),
    )


class StoreWriter:
    """
    All pipeline traffic to one store handle, under the store retry policy.

    Every call except row insertion is retried. Inserting rows is not
    idempotent, so it gets a single attempt with the same timeout.
    """

    def __init__(self, handle: StoreHandle, config: PipelineConfig) -> None:
        self.handle = handle
        self.policy = store_retry_policy(config)

    async def load_queries(self) -> list[QueryConfig]:
        """Read every configured query, enabled or not."""
        return await with_retry(self.handle.read_queries, "read queries", self.policy)

    async def load_snapshot(self) -> dict[str, StoreRow]:
        """
        Read persisted rows keyed by id.

        Should an id appear twice, the upper row wins and the other is
        left alone.
        """
        header = await with_retry(self.handle.read_header, "read header", self.policy)
        check_header(header)
        values = await with_retry(self.handle.list_rows, "list rows", self.policy)
        snapshot: dict[str, StoreRow] = {}
        for index, row_values in enumerate(values):
            row = row_from_values(row_values, position=index + 1)
            if row is None:
                continue
            if row.id in snapshot:
                logger.warning(
                    f"Duplicate Property ID {row.id} at row {index + 1}, "
                    f"keeping row {snapshot[row.id].position}"
                )
                continue
            snapshot[row.id] = row
        logger.info(f"Loaded {len(snapshot)} existing row(s)")
        return snapshot

    async def apply(self, plan: ReconcilePlan) -> WritePlan:
        """
        Write a reconcile plan to the store.

        Args:
            plan: Plan computed against this store's snapshot

        Returns:
            The WritePlan that was executed
        """
        write_plan = build_write_plan(plan)
        if plan.is_empty:
            logger.info("Nothing to write")
            return write_plan

        if write_plan.insert_count:
            await with_retry(
                lambda: self.handle.insert_rows(write_plan.insert_at, write_plan.insert_count),
                "insert rows",
                self.policy.with_attempts(1),
            )

        if write_plan.cells:
            await with_retry(
                lambda: self.handle.write_cells(write_plan.cells),
                "write cells",
                self.policy,
            )
        logger.info(
            f"Inserted {write_plan.insert_count} new row(s), updated {len(plan.updates)} row(s), "
            f"retired {len(plan.retirements)} row(s)"
        )

        return write_plan
