"""Tests for the ingestion adapters module."""

import pytest

from fakes import listing_payload, raw_item
from rent_sync.core.enums import AgentRole
from rent_sync.core.exceptions import ConfigurationError
from rent_sync.ingestion.adapters import (
    ADAPTER_REGISTRY,
    get_adapter,
    list_adapters,
    register_adapter,
    require_adapter,
)
from rent_sync.ingestion.adapters.base import BaseAdapter
from rent_sync.ingestion.adapters.rent591 import Rent591Adapter, parse_price, split_role

QUERY = "https://rent.591.com.tw/list?region=1"


class TestAdapterRegistry:
    """Tests for the adapter registry functions."""

    def test_list_adapters(self) -> None:
        """Test listing available adapters."""
        assert "rent591" in list_adapters()

    def test_get_adapter(self) -> None:
        """Test getting an adapter by name."""
        adapter = get_adapter("rent591")
        assert isinstance(adapter, Rent591Adapter)
        assert adapter.get_info() == {"name": "rent591", "class": "Rent591Adapter"}

    def test_get_adapter_not_found(self) -> None:
        """Test getting a non-existent adapter."""
        assert get_adapter("non-existent") is None

    def test_require_adapter_unknown(self) -> None:
        """Test that requiring an unknown adapter is a configuration error."""
        with pytest.raises(ConfigurationError, match="rent591"):
            require_adapter("nope")

    def test_register_adapter_requires_base(self) -> None:
        """Test that only BaseAdapter subclasses can be registered."""
        with pytest.raises(TypeError):
            register_adapter("bogus", dict)  # type: ignore[arg-type]

    def test_register_adapter(self) -> None:
        """Test registering a custom adapter."""

        class OtherAdapter(Rent591Adapter):
            ADAPTER_NAME = "other"

        register_adapter("other", OtherAdapter)
        try:
            assert isinstance(get_adapter("other"), OtherAdapter)
        finally:
            del ADAPTER_REGISTRY["other"]


class TestParsing:
    """Tests for field parsing helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [("12,500", 12500), (18000, 18000), ("9500.0", 9500), (None, 0), ("", 0), ("面議", 0)],
    )
    def test_parse_price(self, value, expected) -> None:
        """Test price parsing across the shapes the site emits."""
        assert parse_price(value) == expected

    def test_split_role_broker(self) -> None:
        """Test that a broker label is split into role and name."""
        assert split_role("仲介王先生") == (AgentRole.BROKER, "王先生")

    def test_split_role_owner(self) -> None:
        """Test that an owner label is recognised."""
        assert split_role("屋主 陳小姐") == (AgentRole.OWNER, "陳小姐")

    def test_split_role_unknown(self) -> None:
        """Test that an unrecognised label keeps its text as the name."""
        assert split_role("代理人") == (AgentRole.UNKNOWN, "代理人")
        assert split_role(None) == (AgentRole.UNKNOWN, "")


class TestRent591Adapter:
    """Tests for Rent591Adapter."""

    @pytest.fixture
    def adapter(self) -> Rent591Adapter:
        return Rent591Adapter()

    def test_build_record(self, adapter: Rent591Adapter) -> None:
        """Test mapping a raw item to a ListingRecord."""
        record = adapter.build_record(raw_item(17800001), QUERY)

        assert record is not None
        assert record.id == "17800001"
        assert record.price_amount == 12000
        assert record.price_unit == "元/月"
        assert record.proximity_note == "距科技大樓站350公尺"
        assert record.tags == ["近捷運", "可養寵物"]
        assert record.agent_role == AgentRole.BROKER
        assert record.agent_name == "王先生"
        assert record.view_count == 42
        assert record.canonical_url == "https://rent.591.com.tw/17800001"
        assert record.source_query_id == QUERY

    def test_build_record_without_id(self, adapter: Rent591Adapter) -> None:
        """Test that an item without id is dropped."""
        assert adapter.build_record(raw_item(None), QUERY) is None

    def test_build_record_sparse_item(self, adapter: Rent591Adapter) -> None:
        """Test that missing optional fields fall back to defaults."""
        record = adapter.build_record({"id": 5, "tags": None, "surrounding": "n/a"}, QUERY)

        assert record is not None
        assert record.price_amount == 0
        assert record.price_unit == "元/月"
        assert record.tags == []
        assert record.proximity_note == ""
        assert record.agent_role == AgentRole.UNKNOWN

    def test_decode_unsupported(self, adapter: Rent591Adapter) -> None:
        """Test that unknown payload shapes decode to None."""
        assert adapter.decode(None) is None
        assert adapter.decode({"list": []}) is None
        assert adapter.decode([1, 2]) is None

    def test_extract(self, adapter: Rent591Adapter) -> None:
        """Test extracting records, skipping unusable items."""
        payload = listing_payload(1, 2)
        payload["items"].extend(["garbage", {"title": "no id"}])

        records = list(adapter.extract(payload, QUERY))
        assert [r.id for r in records] == ["1", "2"]

    def test_extract_unsupported_yields_nothing(self, adapter: Rent591Adapter) -> None:
        """Test that an unsupported payload yields no records."""
        assert list(adapter.extract(None, QUERY)) == []

    def test_page_url(self, adapter: Rent591Adapter) -> None:
        """Test page URLs with and without an existing query string."""
        assert adapter.page_url(QUERY, 1) == QUERY
        assert adapter.page_url(QUERY, 2) == QUERY + "&page=2"
        assert adapter.page_url("https://rent.591.com.tw/list", 4) == (
            "https://rent.591.com.tw/list?page=4"
        )

    def test_expected_origin(self, adapter: Rent591Adapter) -> None:
        """Test the origin check used for redirect detection."""
        assert adapter.is_expected_origin("https://rent.591.com.tw/list?region=3")
        assert not adapter.is_expected_origin("https://www.591.com.tw/")

    def test_is_base_adapter(self, adapter: Rent591Adapter) -> None:
        """Test that the adapter implements the base interface."""
        assert isinstance(adapter, BaseAdapter)
