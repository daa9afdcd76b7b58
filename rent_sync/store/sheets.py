"""
Google Sheets Backend Module
============================

StoreBackend over a Google spreadsheet, using gspread with a
google-auth service account.

gspread is synchronous, so every call runs in a worker thread via
asyncio.to_thread. Library and transport failures surface as
BackendError; missing credentials surface as ConfigurationError.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable, Mapping, TypeVar

import gspread
from gspread.exceptions import GSpreadException, WorksheetNotFound
from gspread.utils import DateTimeOption, ValueRenderOption, rowcol_to_a1
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials

from rent_sync.core.enums import RowStatus
from rent_sync.core.exceptions import BackendError, ConfigurationError
from rent_sync.core.schema import QueryConfig
from rent_sync.ingestion.registry import SheetsConfig, StoreConfig
from rent_sync.store.backend import CellWrite, Formula, StoreBackend, StoreHandle
from rent_sync.store.layout import CONFIG_HEADERS, DATA_HEADERS

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
TOKEN_URI = "https://oauth2.googleapis.com/token"

SERVICE_ACCOUNT_FILE_ENV = "GOOGLE_SERVICE_ACCOUNT_FILE"
SERVICE_ACCOUNT_EMAIL_ENV = "GOOGLE_SERVICE_ACCOUNT_EMAIL"
PRIVATE_KEY_ENV = "GOOGLE_PRIVATE_KEY"

HEADER_BACKGROUND = {"red": 0.89, "green": 0.95, "blue": 0.99}
HELPER_BACKGROUND = {"red": 0.95, "green": 0.95, "blue": 0.95}

CONFIG_HEADER_NOTES = [
    "Enter 591.com.tw search URLs here. You can modify these URLs anytime.",
    "Optional: A friendly description for this search",
    "Set to 'Active' to crawl this URL, or 'Inactive' to skip it",
]

EXAMPLE_QUERY_URL = (
    "https://rent.591.com.tw/list?region=1&kind=1&price=15000$_40000$&sort=posttime_desc"
)

# (row, col, text, bold) of the instructions block beside the config table
CONFIG_INSTRUCTIONS: list[tuple[int, int, str, bool]] = [
    (0, 4, "📖 Instructions", True),
    (1, 4, "Example:", True),
    (2, 4, "URL:", False),
    (2, 5, EXAMPLE_QUERY_URL, False),
    (3, 4, "Description:", False),
    (3, 5, "Taipei < 40k", False),
    (4, 4, "Status:", False),
    (4, 5, RowStatus.ACTIVE.value, False),
    (5, 4, "💡 Tips:", True),
    (6, 4, "• Set Status to 'Inactive' to skip a URL", False),
    (6, 5, "• Get URLs from 591.com.tw search page", False),
]


def load_credentials(environ: Mapping[str, str] | None = None) -> Credentials:
    """
    Build service account credentials from the environment.

    GOOGLE_SERVICE_ACCOUNT_FILE (a JSON key file) takes precedence over
    GOOGLE_SERVICE_ACCOUNT_EMAIL plus GOOGLE_PRIVATE_KEY. Literal ``\\n``
    sequences in the private key are turned into newlines.

    Raises:
        ConfigurationError: No usable credentials
    """
    environ = os.environ if environ is None else environ

    key_file = environ.get(SERVICE_ACCOUNT_FILE_ENV, "").strip()
    if key_file:
        try:
            return Credentials.from_service_account_file(key_file, scopes=SCOPES)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Cannot load service account file {key_file}: {e}") from e

    email = environ.get(SERVICE_ACCOUNT_EMAIL_ENV, "").strip()
    private_key = environ.get(PRIVATE_KEY_ENV, "").replace("\\n", "\n").strip()
    if not email or not private_key:
        raise ConfigurationError(
            "Missing credentials. Set GOOGLE_SERVICE_ACCOUNT_FILE, or both "
            "GOOGLE_SERVICE_ACCOUNT_EMAIL and GOOGLE_PRIVATE_KEY"
        )

    info = {
        "type": "service_account",
        "client_email": email,
        "private_key": private_key,
        "token_uri": TOKEN_URI,
    }
    try:
        return Credentials.from_service_account_info(info, scopes=SCOPES)
    except ValueError as e:
        raise ConfigurationError(f"Invalid service account private key: {e}") from e


def has_credentials(environ: Mapping[str, str] | None = None) -> bool:
    """Whether the environment names some form of service account credentials."""
    environ = os.environ if environ is None else environ
    if environ.get(SERVICE_ACCOUNT_FILE_ENV, "").strip():
        return True
    return bool(
        environ.get(SERVICE_ACCOUNT_EMAIL_ENV, "").strip()
        and environ.get(PRIVATE_KEY_ENV, "").strip()
    )


async def _call(label: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking gspread call in a thread, mapping failures to BackendError."""
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except (GSpreadException, GoogleAuthError, OSError) as e:
        raise BackendError(f"{label} failed: {e}") from e


def cell_data(value: Any, number_format: str | None = None) -> dict[str, Any]:
    """Typed CellData for an updateCells request."""
    if isinstance(value, Formula):
        entered: dict[str, Any] = {"formulaValue": value.text}
    elif isinstance(value, bool):
        entered = {"boolValue": value}
    elif isinstance(value, (int, float)):
        entered = {"numberValue": value}
    else:
        entered = {"stringValue": "" if value is None else str(value)}

    data: dict[str, Any] = {"userEnteredValue": entered}
    if number_format:
        data["userEnteredFormat"] = {"numberFormat": {"type": "NUMBER", "pattern": number_format}}
    return data


def update_cells_requests(sheet_id: int, cells: list[CellWrite]) -> list[dict[str, Any]]:
    """
    Group cell writes into one updateCells request per contiguous run.

    Runs are maximal sequences of adjacent columns in the same row.
    """
    ordered = sorted(cells, key=lambda c: (c.row, c.col))
    runs: list[list[CellWrite]] = []
    for cell in ordered:
        last = runs[-1][-1] if runs else None
        if last is not None and last.row == cell.row and last.col + 1 == cell.col:
            runs[-1].append(cell)
        else:
            runs.append([cell])

    requests = []
    for run in runs:
        first = run[0]
        fields = "userEnteredValue"
        if any(c.number_format for c in run):
            fields += ",userEnteredFormat.numberFormat"
        requests.append(
            {
                "updateCells": {
                    "range": {
                        "sheetId": sheet_id,
                        "startRowIndex": first.row,
                        "endRowIndex": first.row + 1,
                        "startColumnIndex": first.col,
                        "endColumnIndex": first.col + len(run),
                    },
                    "rows": [{"values": [cell_data(c.value, c.number_format) for c in run]}],
                    "fields": fields,
                }
            }
        )
    return requests


def config_sheet_requests(sheet_id: int) -> list[dict[str, Any]]:
    """Header styling, header notes and the instructions block of a new config sheet."""
    header = {
        "updateCells": {
            "range": {
                "sheetId": sheet_id,
                "startRowIndex": 0,
                "endRowIndex": 1,
                "startColumnIndex": 0,
                "endColumnIndex": len(CONFIG_HEADERS),
            },
            "rows": [
                {
                    "values": [
                        {
                            "userEnteredValue": {"stringValue": title},
                            "userEnteredFormat": {
                                "backgroundColor": HEADER_BACKGROUND,
                                "textFormat": {"bold": True},
                            },
                            "note": note,
                        }
                        for title, note in zip(CONFIG_HEADERS, CONFIG_HEADER_NOTES)
                    ]
                }
            ],
            "fields": "userEnteredValue,userEnteredFormat,note",
        }
    }

    helpers = []
    for row, col, text, bold in CONFIG_INSTRUCTIONS:
        helpers.append(
            {
                "updateCells": {
                    "range": {
                        "sheetId": sheet_id,
                        "startRowIndex": row,
                        "endRowIndex": row + 1,
                        "startColumnIndex": col,
                        "endColumnIndex": col + 1,
                    },
                    "rows": [
                        {
                            "values": [
                                {
                                    "userEnteredValue": {"stringValue": text},
                                    "userEnteredFormat": {
                                        "backgroundColor": HELPER_BACKGROUND,
                                        "textFormat": {"bold": bold},
                                    },
                                }
                            ]
                        }
                    ],
                    "fields": "userEnteredValue,userEnteredFormat",
                }
            }
        )
    return [header, *helpers]


def parse_query_rows(values: list[list[Any]]) -> list[QueryConfig]:
    """Turn config sheet values (header included) into QueryConfigs."""
    queries = []
    for row in values[1:]:
        cells = [str(v).strip() for v in row[: len(CONFIG_HEADERS)]]
        cells += [""] * (len(CONFIG_HEADERS) - len(cells))
        url, label, status = cells
        if not url:
            continue
        queries.append(
            QueryConfig(
                query_url=url,
                label=label,
                enabled=RowStatus.parse(status) == RowStatus.ACTIVE,
            )
        )
    return queries


class GoogleSheetsHandle(StoreHandle):
    """One spreadsheet: a config worksheet and a data worksheet."""

    def __init__(self, spreadsheet: gspread.Spreadsheet, config: SheetsConfig) -> None:
        self.spreadsheet = spreadsheet
        self.config = config
        self.title = spreadsheet.title
        self._data_sheet: gspread.Worksheet | None = None

    async def _find_worksheet(self, title: str) -> gspread.Worksheet | None:
        try:
            return await asyncio.to_thread(self.spreadsheet.worksheet, title)
        except WorksheetNotFound:
            return None
        except (GSpreadException, GoogleAuthError, OSError) as e:
            raise BackendError(f"Reading worksheet {title!r} failed: {e}") from e

    async def _data_worksheet(self) -> gspread.Worksheet:
        if self._data_sheet is not None:
            return self._data_sheet

        title = self.config.data_sheet
        sheet = await self._find_worksheet(title)
        if sheet is None:
            logger.info(f'Creating "{title}" sheet...')
            sheet = await _call(
                "add data sheet",
                self.spreadsheet.add_worksheet,
                title=title,
                rows=1000,
                cols=len(DATA_HEADERS),
            )
            await _call(
                "write data header",
                sheet.update,
                range_name="A1",
                values=[DATA_HEADERS],
                value_input_option="RAW",
            )
            await _call("freeze data header", sheet.freeze, rows=1)
        self._data_sheet = sheet
        return sheet

    async def read_queries(self) -> list[QueryConfig]:
        title = self.config.config_sheet
        sheet = await self._find_worksheet(title)
        if sheet is None:
            logger.info(f'Creating "{title}" sheet...')
            sheet = await _call(
                "add config sheet",
                self.spreadsheet.add_worksheet,
                title=title,
                rows=100,
                cols=6,
            )
            await _call(
                "format config sheet",
                self.spreadsheet.batch_update,
                {"requests": config_sheet_requests(sheet.id)},
            )
            logger.info("Config sheet formatted with header notes and instructions")

        values = await _call("read config sheet", sheet.get_all_values)
        return parse_query_rows(values)

    async def read_header(self) -> list[Any]:
        sheet = await self._data_worksheet()
        return await _call("read data header", sheet.row_values, 1)

    async def list_rows(self) -> list[list[Any]]:
        sheet = await self._data_worksheet()
        page_rows = self.config.page_rows
        width = len(DATA_HEADERS)

        rows: list[list[Any]] = []
        start = 2
        while start <= sheet.row_count:
            end = min(start + page_rows - 1, sheet.row_count)
            cell_range = f"{rowcol_to_a1(start, 1)}:{rowcol_to_a1(end, width)}"
            page = await _call(
                f"read rows {start}-{end}",
                sheet.get,
                cell_range,
                value_render_option=ValueRenderOption.unformatted,
                date_time_render_option=DateTimeOption.formatted_string,
            )
            # The API drops trailing empty rows; pad so list index maps to grid row
            page = list(page)
            page += [[] for _ in range(end - start + 1 - len(page))]
            rows.extend(page)
            start = end + 1

        while rows and not any(str(v).strip() for v in rows[-1]):
            rows.pop()
        return rows

    async def insert_rows(self, position: int, count: int) -> None:
        sheet = await self._data_worksheet()
        request = {
            "insertDimension": {
                "range": {
                    "sheetId": sheet.id,
                    "dimension": "ROWS",
                    "startIndex": position,
                    "endIndex": position + count,
                },
                "inheritFromBefore": False,
            }
        }
        await _call("insert rows", self.spreadsheet.batch_update, {"requests": [request]})

    async def write_cells(self, cells: list[CellWrite]) -> None:
        if not cells:
            return
        sheet = await self._data_worksheet()
        requests = update_cells_requests(sheet.id, cells)
        await _call("write cells", self.spreadsheet.batch_update, {"requests": requests})


class GoogleSheetsBackend(StoreBackend):
    """Connects to spreadsheets by key with service account credentials."""

    def __init__(
        self,
        config: SheetsConfig,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.environ = environ
        self._client: gspread.Client | None = None

    async def _get_client(self) -> gspread.Client:
        if self._client is None:
            credentials = load_credentials(self.environ)
            self._client = await _call("authorize", gspread.authorize, credentials)
        return self._client

    async def connect(self, store: StoreConfig) -> StoreHandle:
        client = await self._get_client()
        spreadsheet = await _call(f"open spreadsheet {store.name}", client.open_by_key, store.store_id)
        logger.info(f"Connected to: {spreadsheet.title}")
        return GoogleSheetsHandle(spreadsheet, self.config)
