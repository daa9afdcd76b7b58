"""
591 Rental Adapter
==================

Reads the Nuxt state object that rent.591.com.tw embeds in every rendered
listing page. The list lives at ``__NUXT__.data[<key>].data.items`` where
the key varies between deployments, so the first entry carrying ``items``
wins.
"""

from __future__ import annotations

from typing import Any

from rent_sync.core.enums import AgentRole
from rent_sync.core.schema import ListingRecord
from rent_sync.ingestion.adapters.base import BaseAdapter, PagePayload

NUXT_PAYLOAD_SCRIPT = """
() => {
  const nuxt = window.__NUXT__;
  if (!nuxt || !nuxt.data) return null;
  for (const key of Object.keys(nuxt.data)) {
    const entry = nuxt.data[key];
    if (entry && entry.data && entry.data.items) {
      return { items: entry.data.items };
    }
  }
  return null;
}
"""

# Free-text role label markers, checked in order
ROLE_MARKERS: tuple[tuple[str, AgentRole], ...] = (
    ("仲介", AgentRole.BROKER),
    ("屋主", AgentRole.OWNER),
)

DEFAULT_PRICE_UNIT = "元/月"


def parse_price(value: Any) -> int:
    """Parse '12,500' / 12500 / None into an integer amount (0 when unusable)."""
    if value is None or value == "":
        return 0
    text = str(value).replace(",", "").strip()
    try:
        return int(float(text))
    except ValueError:
        return 0


def split_role(label: str | None) -> tuple[AgentRole, str]:
    """Split a role label like '仲介王先生' into (BROKER, '王先生')."""
    name = (label or "").strip()
    for marker, role in ROLE_MARKERS:
        if marker in name:
            return role, name.replace(marker, "", 1).strip()
    return AgentRole.UNKNOWN, name


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class Rent591Adapter(BaseAdapter):
    """Adapter for rent.591.com.tw search result pages."""

    ADAPTER_NAME = "rent591"

    origin = "https://rent.591.com.tw/"
    ready_selector = ".item-info-title, .item-title"
    payload_script = NUXT_PAYLOAD_SCRIPT

    def decode(self, payload: Any) -> PagePayload | None:
        if not isinstance(payload, dict):
            return None
        items = payload.get("items")
        if not isinstance(items, list):
            return None
        return PagePayload(items=items)

    def build_record(self, item: dict[str, Any], source_query_id: str) -> ListingRecord | None:
        listing_id = _as_text(item.get("id"))
        if not listing_id:
            return None

        role, agent_name = split_role(item.get("role_name"))
        surrounding = item.get("surrounding") or {}
        tags = item.get("tags") or []

        return ListingRecord(
            id=listing_id,
            title=_as_text(item.get("title")),
            price_amount=parse_price(item.get("price")),
            price_unit=_as_text(item.get("price_unit")) or DEFAULT_PRICE_UNIT,
            property_kind=_as_text(item.get("kind_name")),
            size=_as_text(item.get("area")),
            floor_info=_as_text(item.get("floor_name")),
            location=_as_text(item.get("address")),
            proximity_note=_as_text(surrounding.get("desc")) if isinstance(surrounding, dict) else "",
            tags=[_as_text(t) for t in tags if _as_text(t)] if isinstance(tags, list) else [],
            agent_role=role,
            agent_name=agent_name,
            freshness_note=_as_text(item.get("refresh_time")),
            view_count=_as_int(item.get("browse_count")),
            canonical_url=self.canonical_url(listing_id),
            source_query_id=source_query_id,
        )

    def canonical_url(self, listing_id: str) -> str:
        return f"{self.origin}{listing_id}"
