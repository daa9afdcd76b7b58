"""
Adapter Base Module
===================

Defines the abstract base class for source-specific adapters.
Adapters are responsible for:
1. Building page URLs for a configured query
2. Locating the embedded data object in a rendered page
3. Decoding that object into canonical ListingRecords
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterator
from urllib.parse import urlparse

from rent_sync.core.schema import ListingRecord


@dataclass
class PagePayload:
    """The decoded embedded-data object of one listing page."""

    items: list[dict[str, Any]] = field(default_factory=list)


class BaseAdapter(ABC):
    """
    Abstract base class for source-specific adapters.

    Subclasses must implement:
    - decode: Turn the raw evaluated payload into a PagePayload
    - build_record: Map one raw item to a ListingRecord
    - canonical_url: Deterministic listing URL for an id
    """

    # Adapter identification (override in subclasses)
    ADAPTER_NAME: str = "base"

    # Expected origin of every page; anything else counts as a redirect away
    origin: str = ""

    # CSS selector that appears once listings are rendered
    ready_selector: str = ""

    # JavaScript evaluated in the page; returns the embedded data or null
    payload_script: str = "() => null"

    page_param: str = "page"

    def page_url(self, base_url: str, page_number: int) -> str:
        """URL of ``page_number`` (1-based) for a query URL."""
        if page_number <= 1:
            return base_url
        separator = "&" if urlparse(base_url).query else "?"
        return f"{base_url}{separator}{self.page_param}={page_number}"

    def is_expected_origin(self, url: str) -> bool:
        """Whether ``url`` is still on the source site."""
        return not self.origin or url.startswith(self.origin)

    @abstractmethod
    def decode(self, payload: Any) -> PagePayload | None:
        """
        Decode the evaluated page payload.

        Args:
            payload: Whatever ``payload_script`` returned

        Returns:
            PagePayload, or None when the payload has an unsupported shape
        """

    @abstractmethod
    def build_record(self, item: dict[str, Any], source_query_id: str) -> ListingRecord | None:
        """
        Map one raw item to a ListingRecord.

        Returns:
            The record, or None if the item has no usable id
        """

    @abstractmethod
    def canonical_url(self, listing_id: str) -> str:
        """Deterministic public URL for a listing id."""

    def extract(self, payload: Any, source_query_id: str) -> Iterator[ListingRecord]:
        """
        Yield the listing records of one page.

        Yields nothing, rather than raising, when the payload shape is not
        recognised; callers inspect the page separately to tell "no data"
        from "structure changed".
        """
        decoded = self.decode(payload)
        if decoded is None:
            return
        for item in decoded.items:
            if not isinstance(item, dict):
                continue
            record = self.build_record(item, source_query_id)
            if record is not None:
                yield record

    def get_info(self) -> dict[str, str]:
        """Get adapter information."""
        return {
            "name": self.ADAPTER_NAME,
            "class": self.__class__.__name__,
        }
