"""
Reconciliation Module
=====================

Decides how a freshly crawled batch changes a store's persisted rows.

The engine is a pure function of its inputs: it never touches a backend,
and owned cells and first-seen timestamps pass through it untouched. The
store writer turns the resulting plan into backend operations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from rent_sync.core.enums import RowStatus
from rent_sync.core.schema import ListingRecord, StoreRow, format_timestamp

logger = logging.getLogger(__name__)


@dataclass
class RowUpdate:
    """An existing row refreshed from a newly crawled record."""

    before: StoreRow
    after: StoreRow
    changed_fields: list[str] = field(default_factory=list)

    @property
    def reactivated(self) -> bool:
        """Whether the row was inactive before this run."""
        return self.before.status == RowStatus.INACTIVE


@dataclass
class ReconcilePlan:
    """Inserts, updates and retirements for one store, plus what stays as is."""

    inserts: list[StoreRow] = field(default_factory=list)
    updates: list[RowUpdate] = field(default_factory=list)
    retirements: list[StoreRow] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when nothing needs writing."""
        return not (self.inserts or self.updates or self.retirements)

    def counts(self) -> dict[str, int]:
        """Number of rows per decision."""
        return {
            "added": len(self.inserts),
            "updated": len(self.updates),
            "unchanged": len(self.unchanged),
            "retired": len(self.retirements),
        }


def deduplicate(records: Iterable[ListingRecord]) -> list[ListingRecord]:
    """
    Collapse records sharing an id; the last occurrence wins.

    Order follows each id's first appearance so the batch stays in
    crawl order.
    """
    latest: dict[str, ListingRecord] = {}
    for record in records:
        latest[record.id] = record
    return list(latest.values())


def reconcile(
    batch: Iterable[ListingRecord],
    snapshot: Mapping[str, StoreRow],
    crawled_queries: Iterable[str],
    now: str | None = None,
) -> ReconcilePlan:
    """
    Compute the changes that bring ``snapshot`` in line with ``batch``.

    Args:
        batch: Crawled records (deduplicated here, last occurrence wins)
        snapshot: Persisted rows keyed by id
        crawled_queries: Ids of the queries whose crawl may retire rows;
            an active row sourced from one of these and missing from the
            batch is retired
        now: Timestamp for new and touched rows (defaults to current UTC)

    Returns:
        ReconcilePlan
    """
    now = now or format_timestamp()
    retiring_queries = set(crawled_queries)
    plan = ReconcilePlan()

    records = deduplicate(batch)
    seen_ids = {record.id for record in records}

    for record in records:
        existing = snapshot.get(record.id)
        if existing is None:
            plan.inserts.append(StoreRow.from_record(record, now))
            continue

        changed = record.changed_fields(existing)
        if changed or not existing.is_active:
            plan.updates.append(
                RowUpdate(
                    before=existing,
                    after=existing.refreshed_from(record, now),
                    changed_fields=changed,
                )
            )
        else:
            plan.unchanged.append(record.id)

    for row_id, row in snapshot.items():
        if row_id in seen_ids or not row.is_active:
            continue
        if row.source_query_id in retiring_queries:
            plan.retirements.append(row.retired(now))

    logger.debug(f"Reconcile plan: {plan.counts()}")
    return plan


def apply_plan(snapshot: Mapping[str, StoreRow], plan: ReconcilePlan) -> dict[str, StoreRow]:
    """Snapshot as it will look once ``plan`` has been written."""
    result = dict(snapshot)
    for row in plan.inserts:
        result[row.id] = row
    for update in plan.updates:
        result[update.after.id] = update.after
    for row in plan.retirements:
        result[row.id] = row
    return result
