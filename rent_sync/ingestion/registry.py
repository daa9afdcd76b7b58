"""
Pipeline Configuration Module
=============================

Loads pipeline settings from a YAML file and discovers the persistent
stores to sync from the environment. The resulting PipelineConfig is an
explicit value handed to each component at construction time.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from rent_sync.core.exceptions import ConfigurationError

CONFIG_PATH_ENV = "RENT_SYNC_CONFIG"
SHEETS_ID_ENV = "GOOGLE_SHEETS_ID"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


@dataclass
class CrawlConfig:
    """Pagination caps and request cadence."""

    max_pages_per_query: int = 10
    max_items_per_query: int = 30  # 0 = unlimited
    request_delay_seconds: float = 2.0
    request_jitter_seconds: float = 4.0
    adapter: str = "rent591"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CrawlConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            max_pages_per_query=int(data.get("max_pages_per_query", 10)),
            max_items_per_query=int(data.get("max_items_per_query", 30)),
            request_delay_seconds=float(data.get("request_delay_seconds", 2.0)),
            request_jitter_seconds=float(data.get("request_jitter_seconds", 4.0)),
            adapter=data.get("adapter", "rent591"),
        )


@dataclass
class TimeoutConfig:
    """Timeout per layer, in seconds."""

    navigation: float = 30.0
    selector: float = 10.0
    network_idle: float = 15.0
    page: float = 60.0
    dispose: float = 5.0
    browser_close: float = 10.0
    store_operation: float = 30.0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TimeoutConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        defaults = cls()
        return cls(
            **{
                name: float(data.get(name, getattr(defaults, name)))
                for name in defaults.__dataclass_fields__
            }
        )


@dataclass
class RetryConfig:
    """Attempt counts and backoff bases for pages and store calls."""

    page_attempts: int = 3
    page_backoff_seconds: float = 2.0
    page_jitter_seconds: float = 4.0
    store_attempts: int = 3
    store_backoff_seconds: float = 2.0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RetryConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            page_attempts=max(1, int(data.get("page_attempts", 3))),
            page_backoff_seconds=float(data.get("page_backoff_seconds", 2.0)),
            page_jitter_seconds=float(data.get("page_jitter_seconds", 4.0)),
            store_attempts=max(1, int(data.get("store_attempts", 3))),
            store_backoff_seconds=float(data.get("store_backoff_seconds", 2.0)),
        )


DEFAULT_TITLE_PATTERNS = [
    r"just a moment",
    r"checking your browser",
    r"cloudflare",
    r"attention required",
    r"please wait",
]

DEFAULT_BODY_PATTERNS = [
    r"cloudflare",
    r"ray id",
    r"captcha",
    r"human verification",
    r"enable javascript and cookies",
]


@dataclass
class BlockSignatureConfig:
    """
    Anti-bot and rate-limit signatures.

    These track one site's current behaviour and are expected to change,
    so they live in configuration rather than in the fetch logic.
    """

    statuses: list[int] = field(default_factory=lambda: [403, 429])
    title_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_TITLE_PATTERNS))
    body_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_BODY_PATTERNS))
    body_prefix_chars: int = 2000

    # Compiled regex patterns (populated lazily)
    _title_compiled: list[re.Pattern[str]] | None = field(
        default=None, repr=False, compare=False
    )
    _body_compiled: list[re.Pattern[str]] | None = field(
        default=None, repr=False, compare=False
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BlockSignatureConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            statuses=[int(s) for s in data.get("statuses", [403, 429])],
            title_patterns=list(data.get("title_patterns", DEFAULT_TITLE_PATTERNS)),
            body_patterns=list(data.get("body_patterns", DEFAULT_BODY_PATTERNS)),
            body_prefix_chars=int(data.get("body_prefix_chars", 2000)),
        )

    def _compile_patterns(self) -> None:
        if self._title_compiled is None:
            self._title_compiled = [re.compile(p, re.IGNORECASE) for p in self.title_patterns]
        if self._body_compiled is None:
            self._body_compiled = [re.compile(p, re.IGNORECASE) for p in self.body_patterns]

    def match_title(self, title: str) -> str | None:
        """Return the first title pattern found in ``title``, if any."""
        self._compile_patterns()
        for pattern in self._title_compiled or []:
            if pattern.search(title):
                return pattern.pattern
        return None

    def match_body(self, text: str) -> str | None:
        """Return the first body pattern found in ``text``, if any."""
        self._compile_patterns()
        for pattern in self._body_compiled or []:
            if pattern.search(text):
                return pattern.pattern
        return None


@dataclass
class BrowserConfig:
    """Browser launch and context settings."""

    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "zh-TW"
    timezone_id: str = "Asia/Taipei"
    viewport: dict[str, int] = field(default_factory=lambda: {"width": 1920, "height": 1080})
    extra_headers: dict[str, str] = field(
        default_factory=lambda: {
            "Accept-Language": "zh-TW,zh;q=0.9,en-US;q=0.8,en;q=0.7",
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8",
            "Upgrade-Insecure-Requests": "1",
        }
    )
    launch_args: list[str] = field(
        default_factory=lambda: ["--disable-blink-features=AutomationControlled"]
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BrowserConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        defaults = cls()
        return cls(
            headless=bool(data.get("headless", True)),
            user_agent=data.get("user_agent", DEFAULT_USER_AGENT),
            locale=data.get("locale", defaults.locale),
            timezone_id=data.get("timezone_id", defaults.timezone_id),
            viewport=dict(data.get("viewport", defaults.viewport)),
            extra_headers=dict(data.get("extra_headers", defaults.extra_headers)),
            launch_args=list(data.get("launch_args", defaults.launch_args)),
        )


@dataclass
class SheetsConfig:
    """Worksheet names and paging for the spreadsheet backend."""

    data_sheet: str = "Data"
    config_sheet: str = "Config"
    page_rows: int = 500

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SheetsConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            data_sheet=data.get("data_sheet", "Data"),
            config_sheet=data.get("config_sheet", "Config"),
            page_rows=max(1, int(data.get("page_rows", 500))),
        )


@dataclass
class ReconcileConfig:
    """Reconciliation policy switches."""

    retire_on_partial_crawl: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ReconcileConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(retire_on_partial_crawl=bool(data.get("retire_on_partial_crawl", False)))


@dataclass
class StoreConfig:
    """One persistent store (spreadsheet) to sync."""

    name: str
    store_id: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoreConfig:
        """Create from dictionary."""
        return cls(name=str(data["name"]), store_id=str(data["sheet_id"]))


@dataclass
class PipelineConfig:
    """Complete pipeline configuration."""

    crawl: CrawlConfig = field(default_factory=CrawlConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    block_signatures: BlockSignatureConfig = field(default_factory=BlockSignatureConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    sheets: SheetsConfig = field(default_factory=SheetsConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    stores: list[StoreConfig] = field(default_factory=list)
    source_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PipelineConfig:
        """Create from dictionary."""
        data = data or {}
        return cls(
            crawl=CrawlConfig.from_dict(data.get("crawl")),
            timeouts=TimeoutConfig.from_dict(data.get("timeouts")),
            retry=RetryConfig.from_dict(data.get("retry")),
            block_signatures=BlockSignatureConfig.from_dict(data.get("block_signatures")),
            browser=BrowserConfig.from_dict(data.get("browser")),
            sheets=SheetsConfig.from_dict(data.get("sheets")),
            reconcile=ReconcileConfig.from_dict(data.get("reconcile")),
            stores=[StoreConfig.from_dict(s) for s in data.get("stores") or []],
        )


def default_config_path() -> Path:
    """
    Resolve the configuration file location.

    Uses the RENT_SYNC_CONFIG environment variable when set, otherwise
    config/pipeline.yaml relative to the project root.
    """
    configured = os.environ.get(CONFIG_PATH_ENV)
    if configured:
        return Path(configured).expanduser()
    module_dir = Path(__file__).parent
    project_root = module_dir.parent.parent
    return project_root / "config" / "pipeline.yaml"


def load_config(config_path: Path | str | None = None) -> PipelineConfig:
    """
    Load pipeline configuration from a YAML file.

    An explicitly given path must exist. When no path is given and the
    default file is missing, built-in defaults are used.

    Args:
        config_path: Path to the pipeline.yaml file

    Returns:
        PipelineConfig
    """
    explicit = config_path is not None or CONFIG_PATH_ENV in os.environ
    path = Path(config_path).expanduser() if config_path else default_config_path()

    if not path.exists():
        if explicit:
            raise ConfigurationError(f"Configuration file not found: {path}")
        return PipelineConfig()

    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping at the top of {path}")

    config = PipelineConfig.from_dict(data)
    config.source_path = path.resolve()
    return config


def discover_stores(
    config: PipelineConfig,
    environ: Mapping[str, str] | None = None,
) -> list[StoreConfig]:
    """
    List stores to sync, in discovery order.

    YAML ``stores`` come first, then GOOGLE_SHEETS_ID (named "default") and
    GOOGLE_SHEETS_ID_<NAME> (named "<name>") in environment order. A store
    id already listed is not repeated.

    Args:
        config: Loaded pipeline configuration
        environ: Environment mapping (defaults to os.environ)

    Returns:
        List of StoreConfig
    """
    environ = os.environ if environ is None else environ
    stores: list[StoreConfig] = list(config.stores)
    seen = {s.store_id for s in stores}

    for key, value in environ.items():
        if not key.startswith(SHEETS_ID_ENV) or not value.strip():
            continue
        suffix = key[len(SHEETS_ID_ENV):]
        if suffix and not suffix.startswith("_"):
            continue
        name = suffix.lstrip("_").lower() if suffix else "default"
        store_id = value.strip()
        if store_id in seen:
            continue
        seen.add(store_id)
        stores.append(StoreConfig(name=name, store_id=store_id))

    return stores
