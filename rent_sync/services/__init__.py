"""Application services for rent-sync."""

from rent_sync.services.export_service import ExportService

__all__ = [
    "ExportService",
]
