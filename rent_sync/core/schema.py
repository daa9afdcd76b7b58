"""Pydantic v2 models for harvested listings and persisted store rows.

Field classification drives change detection. Every ListingRecord field
must appear in exactly one of IDENTITY_FIELDS, TRACKED_FIELDS or
VOLATILE_FIELDS; adding a field without classifying it is a bug.
"""

from datetime import UTC, datetime
from typing import Any, Iterable

from pydantic import BaseModel, Field, field_validator

from rent_sync.core.enums import AgentRole, RowStatus

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def format_timestamp(moment: datetime | None = None) -> str:
    """Format a moment as the UTC 'YYYY-MM-DD HH:MM:SS' string stored in rows."""
    moment = moment or _utc_now()
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    return moment.strftime(TIMESTAMP_FORMAT)


TAG_SEPARATOR = ", "


def join_tags(tags: Iterable[Any]) -> str:
    """
    Tags as one cell of text.

    A comma inside a tag reads back as a separator, so tags are split on
    commas here too. Joined text is therefore the same before and after a
    trip through the store.
    """
    parts = (part.strip() for tag in tags for part in str(tag).split(","))
    return TAG_SEPARATOR.join(part for part in parts if part)


def split_tags(text: str) -> list[str]:
    """Inverse of join_tags."""
    return [part.strip() for part in text.split(",") if part.strip()]


def comparable(value: Any) -> str:
    """Reduce a field value to the text form used for change detection."""
    if value is None:
        return ""
    if isinstance(value, AgentRole):
        return value.value
    if isinstance(value, (list, tuple)):
        return join_tags(comparable(v) for v in value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


class ListingRecord(BaseModel):
    """One harvested catalog item with normalized fields."""

    id: str = Field(min_length=1)
    title: str = ""
    price_amount: int = 0
    price_unit: str = ""
    property_kind: str = ""
    size: str = ""
    floor_info: str = ""
    location: str = ""
    proximity_note: str = ""
    tags: list[str] = Field(default_factory=list)
    agent_role: AgentRole = AgentRole.UNKNOWN
    agent_name: str = ""
    freshness_note: str = ""
    view_count: int = 0
    canonical_url: str = ""
    source_query_id: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v: Any) -> str:
        """Source ids arrive as numbers or strings."""
        return str(v).strip() if v is not None else ""

    def tracked_values(self) -> dict[str, str]:
        """Comparable text of every tracked field."""
        return {name: comparable(getattr(self, name)) for name in TRACKED_FIELDS}

    def changed_fields(self, other: "ListingRecord") -> list[str]:
        """Names of tracked fields whose values differ from ``other``."""
        mine = self.tracked_values()
        theirs = other.tracked_values()
        return [name for name in TRACKED_FIELDS if mine[name] != theirs[name]]


IDENTITY_FIELDS: tuple[str, ...] = ("id",)

# Fluctuates on every crawl; refreshed on update but never compared.
VOLATILE_FIELDS: tuple[str, ...] = ("view_count",)

TRACKED_FIELDS: tuple[str, ...] = (
    "title",
    "price_amount",
    "price_unit",
    "property_kind",
    "size",
    "floor_info",
    "location",
    "proximity_note",
    "tags",
    "agent_role",
    "agent_name",
    "freshness_note",
    "canonical_url",
    "source_query_id",
)

LISTING_FIELDS: set[str] = set(IDENTITY_FIELDS + TRACKED_FIELDS + VOLATILE_FIELDS)


class StoreRow(ListingRecord):
    """
    One persisted record: a listing plus pipeline bookkeeping and owned cells.

    ``owned_fields`` are curated by people and only ever carried along.
    ``position`` is the row's grid index in the backing store (header is 0);
    it is bookkeeping for the writer and plays no part in comparisons.
    """

    owned_fields: list[Any] = Field(default_factory=list)
    first_seen_at: str = ""
    last_updated_at: str = ""
    status: RowStatus = RowStatus.ACTIVE
    position: int | None = Field(default=None, exclude=True)

    @classmethod
    def from_record(cls, record: ListingRecord, now: str) -> "StoreRow":
        """Create a brand new active row for a first observation."""
        return cls(
            **record.model_dump(include=LISTING_FIELDS),
            first_seen_at=now,
            last_updated_at=now,
            status=RowStatus.ACTIVE,
        )

    def refreshed_from(self, record: ListingRecord, now: str) -> "StoreRow":
        """Copy of this row with listing fields taken from ``record``."""
        listing = record.model_dump(include=LISTING_FIELDS - {"id"})
        return self.model_copy(
            update={**listing, "last_updated_at": now, "status": RowStatus.ACTIVE}
        )

    def retired(self, now: str) -> "StoreRow":
        """Copy of this row marked inactive."""
        return self.model_copy(
            update={"last_updated_at": now, "status": RowStatus.INACTIVE}
        )

    @property
    def is_active(self) -> bool:
        return self.status == RowStatus.ACTIVE


class QueryConfig(BaseModel):
    """One configured source query, read fresh from the config surface each run."""

    query_url: str
    label: str = ""
    enabled: bool = True

    @field_validator("query_url")
    @classmethod
    def _strip_url(cls, v: str) -> str:
        return v.strip()

    @property
    def query_id(self) -> str:
        """Identifier stamped on records produced by this query."""
        return self.query_url
