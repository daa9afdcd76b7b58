"""
Store Layout Module
===================

Maps StoreRows to and from the columns of the data worksheet.

Columns A-C belong to the curator and are never written after a row is
created. Every other column is owned by the pipeline.
"""

from __future__ import annotations

from typing import Any

from rent_sync.core.enums import AgentRole, RowStatus
from rent_sync.core.exceptions import ConfigurationError
from rent_sync.core.schema import StoreRow, comparable, join_tags, split_tags
from rent_sync.store.backend import CellWrite, Formula

DATA_HEADERS: list[str] = [
    "★ Mark",
    "★ Rating",
    "★ Remarks",
    "Property ID",
    "Title",
    "Price",
    "Price Unit",
    "Property Type",
    "Size (坪)",
    "Floor",
    "Location",
    "Metro Distance",
    "Tags",
    "Agent Type",
    "Agent Name",
    "Update Info",
    "Views",
    "URL",
    "Source URL",
    "First Seen",
    "Last Updated",
    "Status",
]

OWNED_COLUMN_COUNT = 3

COL_ID = DATA_HEADERS.index("Property ID")
COL_TITLE = DATA_HEADERS.index("Title")
COL_PRICE = DATA_HEADERS.index("Price")
COL_FIRST_SEEN = DATA_HEADERS.index("First Seen")
COL_LAST_UPDATED = DATA_HEADERS.index("Last Updated")
COL_STATUS = DATA_HEADERS.index("Status")

CONFIG_HEADERS: list[str] = ["URL", "Description", "Status"]

PRICE_NUMBER_FORMAT = '#,##0"元/月"'


def check_header(header: list[Any]) -> None:
    """
    Make sure the data worksheet still has the expected columns.

    Rows are read and written by position, so a moved, inserted or renamed
    column would put values under the wrong headings. Columns to the right
    of Status are ignored.

    Raises:
        ConfigurationError: A header cell differs from DATA_HEADERS
    """
    found = [comparable(v) for v in header[: len(DATA_HEADERS)]]
    found += [""] * (len(DATA_HEADERS) - len(found))
    for index, (expected, actual) in enumerate(zip(DATA_HEADERS, found)):
        if actual != expected:
            raise ConfigurationError(
                f"Data sheet column {index + 1} is {actual!r}, expected {expected!r}"
            )


def hyperlink(url: str, title: str) -> Formula:
    """Title cell linking to the listing; quotes are doubled for the formula."""
    if not url:
        return Formula(text=title, display=title)
    safe_url = url.replace('"', '""')
    safe_title = title.replace('"', '""')
    return Formula(text=f'=HYPERLINK("{safe_url}", "{safe_title}")', display=title)


def listing_values(row: StoreRow) -> list[Any]:
    """Values of the pipeline-owned listing columns, Property ID through Source URL."""
    return [
        row.id,
        hyperlink(row.canonical_url, row.title),
        row.price_amount,
        row.price_unit,
        row.property_kind,
        row.size,
        row.floor_info,
        row.location,
        row.proximity_note,
        join_tags(row.tags),
        row.agent_role.value,
        row.agent_name,
        row.freshness_note,
        row.view_count,
        row.canonical_url,
        row.source_query_id,
    ]


def _cells(grid_row: int, start_col: int, values: list[Any]) -> list[CellWrite]:
    return [
        CellWrite(
            row=grid_row,
            col=start_col + offset,
            value=value,
            number_format=PRICE_NUMBER_FORMAT if start_col + offset == COL_PRICE else None,
        )
        for offset, value in enumerate(values)
    ]


def insert_cells(row: StoreRow, grid_row: int) -> list[CellWrite]:
    """Cells for a freshly inserted row. Owned columns are left empty."""
    values = listing_values(row) + [row.first_seen_at, row.last_updated_at, row.status.value]
    return _cells(grid_row, COL_ID, values)


def update_cells(row: StoreRow, grid_row: int) -> list[CellWrite]:
    """Cells refreshed on update. Id and First Seen keep their stored values."""
    refreshed = _cells(grid_row, COL_ID, listing_values(row))[1:]
    return refreshed + retire_cells(row, grid_row)


def retire_cells(row: StoreRow, grid_row: int) -> list[CellWrite]:
    """Last Updated and Status, the only cells a status change touches."""
    return [
        CellWrite(row=grid_row, col=COL_LAST_UPDATED, value=row.last_updated_at),
        CellWrite(row=grid_row, col=COL_STATUS, value=row.status.value),
    ]


def _as_amount(value: Any) -> int:
    if isinstance(value, (int, float)):
        return int(value)
    text = comparable(value).replace(",", "")
    try:
        return int(float(text))
    except ValueError:
        return 0


def row_from_values(values: list[Any], position: int) -> StoreRow | None:
    """
    Parse one data row as read back from the store.

    Args:
        values: Raw cell values, possibly shorter than the header
        position: Grid row the values came from

    Returns:
        StoreRow, or None when the row has no Property ID
    """
    cells = list(values) + [""] * (len(DATA_HEADERS) - len(values))
    cell = dict(zip(DATA_HEADERS, cells))

    row_id = comparable(cell["Property ID"])
    if not row_id:
        return None

    return StoreRow(
        id=row_id,
        title=comparable(cell["Title"]),
        price_amount=_as_amount(cell["Price"]),
        price_unit=comparable(cell["Price Unit"]),
        property_kind=comparable(cell["Property Type"]),
        size=comparable(cell["Size (坪)"]),
        floor_info=comparable(cell["Floor"]),
        location=comparable(cell["Location"]),
        proximity_note=comparable(cell["Metro Distance"]),
        tags=split_tags(comparable(cell["Tags"])),
        agent_role=AgentRole.parse(comparable(cell["Agent Type"])),
        agent_name=comparable(cell["Agent Name"]),
        freshness_note=comparable(cell["Update Info"]),
        view_count=_as_amount(cell["Views"]),
        canonical_url=comparable(cell["URL"]),
        source_query_id=comparable(cell["Source URL"]),
        owned_fields=cells[:OWNED_COLUMN_COUNT],
        first_seen_at=comparable(cell["First Seen"]),
        last_updated_at=comparable(cell["Last Updated"]),
        status=RowStatus.parse(comparable(cell["Status"])),
        position=position,
    )
