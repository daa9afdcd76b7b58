"""Export service for crawled listings (CSV, JSON)."""

import csv
import io
import json
from datetime import UTC, datetime
from typing import Iterable

from rent_sync.core.schema import ListingRecord

CSV_HEADERS = [
    "ID",
    "Title",
    "Price",
    "PriceNumber",
    "Type",
    "Size",
    "Floor",
    "Location",
    "AgentType",
    "AgentName",
    "UpdateInfo",
    "Views",
    "Tags",
    "URL",
]


def display_price(record: ListingRecord) -> str:
    """Price as shown on the site, e.g. '12,000元/月'."""
    return f"{record.price_amount:,}{record.price_unit}"


class ExportService:
    """Service for exporting listing records from a crawl."""

    def __init__(self, source: str = ""):
        """
        Initialize the export service.

        Args:
            source: Query URL the records came from, recorded in JSON exports.
        """
        self.source = source

    def export_csv(self, records: Iterable[ListingRecord]) -> str:
        """
        Export records as CSV (one row per listing).

        Args:
            records: Listing records in crawl order.

        Returns:
            CSV string.
        """
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(CSV_HEADERS)

        for record in records:
            writer.writerow(
                [
                    record.id,
                    record.title,
                    display_price(record),
                    record.price_amount,
                    record.property_kind,
                    record.size,
                    record.floor_info,
                    record.location,
                    record.agent_role.value,
                    record.agent_name,
                    record.freshness_note,
                    record.view_count,
                    "; ".join(record.tags),
                    record.canonical_url,
                ]
            )

        return output.getvalue()

    def export_json(self, records: Iterable[ListingRecord]) -> str:
        """
        Export records as full structured JSON.

        Args:
            records: Listing records in crawl order.

        Returns:
            JSON string.
        """
        records_data = [record.model_dump(mode="json") for record in records]

        return json.dumps(
            {
                "export_version": "1.0",
                "export_date": datetime.now(UTC).isoformat(),
                "source": self.source,
                "count": len(records_data),
                "listings": records_data,
            },
            indent=2,
            ensure_ascii=False,
        )
