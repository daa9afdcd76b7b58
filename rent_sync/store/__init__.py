"""Persistent store backends and the writer that applies reconcile plans."""

from rent_sync.store.backend import (
    CellWrite,
    Formula,
    InMemoryBackend,
    StoreBackend,
    StoreHandle,
)
from rent_sync.store.writer import StoreWriter, WritePlan, build_write_plan, shift_positions

__all__ = [
    "CellWrite",
    "Formula",
    "InMemoryBackend",
    "StoreBackend",
    "StoreHandle",
    "StoreWriter",
    "WritePlan",
    "build_write_plan",
    "shift_positions",
]
