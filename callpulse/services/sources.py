"""
Upstream Row Sources

The pipeline treats upstream data as "rows of strings given an opaque source
handle". Anything implementing RowSource can feed SyncOrchestrator.

Implementations:
- GoogleSheetsSource: spreadsheets shared with a service account. Listing
  goes through the Drive v3 API and values through Sheets v4
  spreadsheets.values.get.
- StaticRowSource: in-memory grids (uploaded CSVs, fixtures).

Authentication uses the service account JSON at GOOGLE_APPLICATION_CREDENTIALS
with read-only scopes. The Google client is blocking, so every request runs
in a worker thread and upstream timeouts can fire while it is in flight.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from callpulse.core.config import Settings, get_settings
from callpulse.models import RawRow, SourceInfo

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

SHEETS_SCOPES: List[str] = [
    'https://www.googleapis.com/auth/spreadsheets.readonly',
    'https://www.googleapis.com/auth/drive.metadata.readonly',
]

SPREADSHEET_MIME_TYPE = 'application/vnd.google-apps.spreadsheet'


@runtime_checkable
class RowSource(Protocol):
    """Upstream collaborator consumed by SyncOrchestrator."""

    async def list_sources(self) -> List[SourceInfo]:
        ...

    async def get_rows(self, source_id: str) -> List[RawRow]:
        ...

    async def check_connectivity(self) -> bool:
        ...


def pad_rows(values: Sequence[Sequence[Any]]) -> List[RawRow]:
    """
    Stringify cells and pad ragged rows to the header width.

    The Sheets API omits trailing empty cells, so rows can be shorter than
    the header.
    """
    if not values:
        return []
    width = max(len(row) for row in values)
    return [
        [('' if cell is None else str(cell)) for cell in row] + [''] * (width - len(row))
        for row in values
    ]


# =============================================================================
# Google Sheets
# =============================================================================


class GoogleSheetsSource:
    """
    RowSource backed by Google Sheets.

    Args:
        settings: Provides credentials path, default spreadsheet and range.
        sheets_service: Prebuilt Sheets v4 resource (tests inject a mock).
        drive_service: Prebuilt Drive v3 resource (tests inject a mock).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        sheets_service: Any = None,
        drive_service: Any = None,
    ):
        self.settings = settings or get_settings()
        self._sheets = sheets_service
        self._drive = drive_service

    def _credentials(self):
        if not self.settings.google_application_credentials:
            raise ValueError(
                "GOOGLE_APPLICATION_CREDENTIALS environment variable not configured. "
                "Please set it to the path of your service account JSON file."
            )
        return service_account.Credentials.from_service_account_file(
            self.settings.google_application_credentials,
            scopes=SHEETS_SCOPES,
        )

    @property
    def sheets(self):
        if self._sheets is None:
            self._sheets = build('sheets', 'v4', credentials=self._credentials(), cache_discovery=False)
        return self._sheets

    @property
    def drive(self):
        if self._drive is None:
            self._drive = build('drive', 'v3', credentials=self._credentials(), cache_discovery=False)
        return self._drive

    async def list_sources(self) -> List[SourceInfo]:
        """Spreadsheets visible to the service account, newest first."""
        request = self.drive.files().list(
            q=f"mimeType='{SPREADSHEET_MIME_TYPE}' and trashed=false",
            fields='files(id, name, modifiedTime)',
            orderBy='modifiedTime desc',
            pageSize=100,
        )
        response = await asyncio.to_thread(request.execute)

        sources = [
            SourceInfo(
                id=item['id'],
                name=item.get('name', ''),
                modified_at=_parse_rfc3339(item.get('modifiedTime')),
            )
            for item in response.get('files', [])
        ]
        if self.settings.spreadsheet_id and all(s.id != self.settings.spreadsheet_id for s in sources):
            sources.insert(0, SourceInfo(id=self.settings.spreadsheet_id, name='configured'))
        return sources

    async def get_rows(self, source_id: str) -> List[RawRow]:
        """Read the configured range of a spreadsheet; the first row is the header."""
        request = self.sheets.spreadsheets().values().get(
            spreadsheetId=source_id,
            range=self.settings.spreadsheet_range,
            valueRenderOption='FORMATTED_VALUE',
        )
        response = await asyncio.to_thread(request.execute)
        rows = pad_rows(response.get('values', []))
        logger.info(f"Fetched {len(rows)} rows from spreadsheet {source_id}")
        return rows

    async def check_connectivity(self) -> bool:
        """Cheap authenticated call; False on any HTTP or credential failure."""
        try:
            await asyncio.to_thread(self.drive.about().get(fields='user').execute)
            return True
        except (HttpError, ValueError, OSError) as e:
            logger.warning(f"Google API connectivity check failed: {e}")
            return False


def _parse_rfc3339(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None


# =============================================================================
# In-memory
# =============================================================================


class StaticRowSource:
    """
    RowSource over grids held in memory.

    Args:
        grids: source id -> grid (header row first).
        names: Optional display names per source id.
    """

    def __init__(self, grids: Optional[Dict[str, List[RawRow]]] = None, names: Optional[Dict[str, str]] = None):
        self.grids: Dict[str, List[RawRow]] = dict(grids or {})
        self.names: Dict[str, str] = dict(names or {})
        self.available = True

    def put(self, source_id: str, grid: List[RawRow], name: str = '') -> None:
        self.grids[source_id] = grid
        if name:
            self.names[source_id] = name

    async def list_sources(self) -> List[SourceInfo]:
        return [
            SourceInfo(id=source_id, name=self.names.get(source_id, source_id))
            for source_id in self.grids
        ]

    async def get_rows(self, source_id: str) -> List[RawRow]:
        if source_id not in self.grids:
            raise KeyError(f"Unknown source: {source_id}")
        return pad_rows(self.grids[source_id])

    async def check_connectivity(self) -> bool:
        return self.available
