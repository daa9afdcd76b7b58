"""Tests for the ingestion registry module."""

import tempfile
from pathlib import Path

import pytest
import yaml

from rent_sync.core.exceptions import ConfigurationError
from rent_sync.ingestion.registry import (
    CONFIG_PATH_ENV,
    BlockSignatureConfig,
    CrawlConfig,
    PipelineConfig,
    RetryConfig,
    StoreConfig,
    TimeoutConfig,
    discover_stores,
    load_config,
)


@pytest.fixture(autouse=True)
def _no_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)


class TestCrawlConfig:
    """Tests for CrawlConfig."""

    def test_default_values(self) -> None:
        """Test default budgets and cadence."""
        config = CrawlConfig()
        assert config.max_pages_per_query == 10
        assert config.max_items_per_query == 30
        assert config.request_delay_seconds == 2.0

    def test_from_dict(self) -> None:
        """Test creating from dictionary."""
        config = CrawlConfig.from_dict({"max_pages_per_query": "4", "max_items_per_query": 0})
        assert config.max_pages_per_query == 4
        assert config.max_items_per_query == 0
        assert config.request_jitter_seconds == 4.0

    def test_from_dict_none(self) -> None:
        """Test creating from None returns defaults."""
        assert CrawlConfig.from_dict(None) == CrawlConfig()


class TestTimeoutAndRetryConfig:
    """Tests for TimeoutConfig and RetryConfig."""

    def test_timeouts_partial(self) -> None:
        """Test that unspecified timeouts keep their defaults."""
        config = TimeoutConfig.from_dict({"page": 90})
        assert config.page == 90.0
        assert config.navigation == 30.0
        assert config.store_operation == 30.0

    def test_attempts_at_least_one(self) -> None:
        """Test that attempt counts below one are raised to one."""
        config = RetryConfig.from_dict({"page_attempts": 0, "store_attempts": -2})
        assert config.page_attempts == 1
        assert config.store_attempts == 1


class TestBlockSignatureConfig:
    """Tests for BlockSignatureConfig."""

    def test_default_statuses(self) -> None:
        """Test that 403 and 429 are block statuses by default."""
        assert BlockSignatureConfig().statuses == [403, 429]

    def test_match_title_case_insensitive(self) -> None:
        """Test title matching ignores case."""
        config = BlockSignatureConfig()
        assert config.match_title("Just A Moment...") == "just a moment"
        assert config.match_title("台北市租屋") is None

    def test_match_body_custom_patterns(self) -> None:
        """Test that configured body patterns replace the defaults."""
        config = BlockSignatureConfig.from_dict({"body_patterns": [r"訪問過於頻繁"]})
        assert config.match_body("您的訪問過於頻繁") == r"訪問過於頻繁"
        assert config.match_body("captcha") is None


class TestLoadConfig:
    """Tests for load_config."""

    def test_load_from_file(self) -> None:
        """Test loading a YAML configuration file."""
        data = {
            "crawl": {"max_pages_per_query": 3},
            "timeouts": {"page": 45},
            "reconcile": {"retire_on_partial_crawl": True},
            "stores": [{"name": "taipei", "sheet_id": "abc123"}],
        }
        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            yaml.dump(data, f)
            temp_path = Path(f.name)

        try:
            config = load_config(temp_path)
            assert config.crawl.max_pages_per_query == 3
            assert config.timeouts.page == 45.0
            assert config.reconcile.retire_on_partial_crawl is True
            assert config.stores == [StoreConfig(name="taipei", store_id="abc123")]
            assert config.source_path == temp_path.resolve()
        finally:
            temp_path.unlink()

    def test_explicit_missing_file(self, tmp_path: Path) -> None:
        """Test that a named file that does not exist is an error."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_env_missing_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a path named by the environment must exist."""
        monkeypatch.setenv(CONFIG_PATH_ENV, str(tmp_path / "missing.yaml"))
        with pytest.raises(ConfigurationError):
            load_config()

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Test that malformed YAML is reported as a configuration error."""
        path = tmp_path / "pipeline.yaml"
        path.write_text("crawl: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(path)

    def test_non_mapping(self, tmp_path: Path) -> None:
        """Test that a top-level list is rejected."""
        path = tmp_path / "pipeline.yaml"
        path.write_text("- one\n- two\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(path)

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        """Test that an empty file yields the built-in defaults."""
        path = tmp_path / "pipeline.yaml"
        path.write_text("", encoding="utf-8")
        config = load_config(path)
        assert config.crawl == CrawlConfig()
        assert config.stores == []


class TestDiscoverStores:
    """Tests for discover_stores."""

    def test_env_default_and_named(self) -> None:
        """Test that the plain and suffixed variables both become stores."""
        environ = {
            "GOOGLE_SHEETS_ID": "sheet-a",
            "GOOGLE_SHEETS_ID_NEW_TAIPEI": "sheet-b",
            "HOME": "/root",
        }
        stores = discover_stores(PipelineConfig(), environ)
        assert stores == [
            StoreConfig(name="default", store_id="sheet-a"),
            StoreConfig(name="new_taipei", store_id="sheet-b"),
        ]

    def test_yaml_first_and_no_duplicates(self) -> None:
        """Test that YAML stores come first and a repeated id is listed once."""
        config = PipelineConfig(stores=[StoreConfig(name="main", store_id="sheet-a")])
        environ = {"GOOGLE_SHEETS_ID": "sheet-a", "GOOGLE_SHEETS_ID_2": "sheet-c"}
        stores = discover_stores(config, environ)
        assert [s.name for s in stores] == ["main", "2"]

    def test_ignores_blank_and_lookalike_variables(self) -> None:
        """Test that empty values and unrelated names are skipped."""
        environ = {"GOOGLE_SHEETS_ID": "  ", "GOOGLE_SHEETS_IDX": "sheet-x"}
        assert discover_stores(PipelineConfig(), environ) == []
