"""Google Sheets API integration.

Provides :class:`SheetsClient`, the narrow repository interface the services use to read and
write spreadsheet rows, authorized with a service account.

Requests are throttled per process: at most ``sheets_max_concurrency`` calls run at once,
each call waits ``sheets_request_delay`` seconds before it is sent, and an HTTP 429 from the
API backs off for ``sheets_rate_limit_backoff`` seconds before the error is raised. The
throttle does not coordinate between processes.
"""

import logging
import re
import socket
import ssl
import threading
import time
from typing import Any, Callable, List, Optional, Sequence

import google.auth.exceptions
import google.auth.transport.requests
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..settings.lib import Settings
from ..status import status

SCOPES: List[str] = [
    'https://www.googleapis.com/auth/spreadsheets',
    'https://www.googleapis.com/auth/drive',
]

# Raw strings in, raw strings out
VALUE_INPUT_OPTION = 'RAW'


def idx_to_col(idx: int) -> str:
    """Convert zero-based column index to spreadsheet letter(s).

    Args:
        idx: The zero-based column index.

    Returns:
        The spreadsheet column letter(s) (e.g., A, B, AA).
    """
    letters = ''
    while idx >= 0:
        letters = chr((idx % 26) + ord('A')) + letters
        idx = idx // 26 - 1
    return letters


def a1_range(tab: str, cells: str) -> str:
    """Build an A1 range for ``tab``, quoting the tab name when it is not a plain identifier.

    Args:
        tab: The worksheet title, e.g. ``Access Request``.
        cells: The cell range, e.g. ``A:I`` or ``A5:N5``.

    Returns:
        str: E.g. ``'Access Request'!A:I``.
    """
    if re.fullmatch(r'[A-Za-z0-9_]+', tab):
        return f'{tab}!{cells}'
    escaped = tab.replace("'", "''")
    return f"'{escaped}'!{cells}"


class SheetsClient:
    """Service-account authorized access to one spreadsheet.

    The repository methods are :meth:`get_rows`, :meth:`append_row`, :meth:`update_row` and
    :meth:`ensure_worksheet`. Reading rows and then writing one back is not atomic: a
    concurrent edit to the same row between the read and the write is lost, and row numbers
    can shift if rows are inserted in the meantime. Callers creating rows rely on randomized
    ids rather than a uniqueness check.

    Args:
        settings: Service settings providing the spreadsheet id, the service-account info and
            the throttle parameters.
    """

    def __init__(self, settings: Settings) -> None:
        self.spreadsheet_id = settings.sheet_id
        self._service_account_info = settings.service_account_info
        self._request_delay = settings.sheets_request_delay
        self._backoff = settings.sheets_rate_limit_backoff

        self._semaphore = threading.BoundedSemaphore(settings.sheets_max_concurrency)
        self._creds_lock = threading.Lock()
        self._creds: Optional[service_account.Credentials] = None
        self._local = threading.local()

    def get_credentials(self) -> service_account.Credentials:
        """Return service-account credentials with a valid access token.

        The token is cached and only re-fetched once it has expired.

        Raises:
            status.ServiceUnavailableException: If the service-account info is unusable or the
                token exchange fails.
        """
        with self._creds_lock:
            if self._creds is None:
                try:
                    self._creds = service_account.Credentials.from_service_account_info(
                        self._service_account_info, scopes=SCOPES
                    )
                except (ValueError, KeyError) as ex:
                    raise status.ServiceUnavailableException(
                        f'Invalid service account credentials: {ex}'
                    ) from ex

            if not self._creds.valid:
                logging.debug('Fetching a new service account access token.')
                try:
                    self._creds.refresh(google.auth.transport.requests.Request())
                except google.auth.exceptions.RefreshError as ex:
                    raise status.ServiceUnavailableException(
                        f'Failed to get a service account access token: {ex}'
                    ) from ex
                logging.debug(f'Service account token valid until {self._creds.expiry}.')

            return self._creds

    def get_service(self) -> Any:
        """
        Builds (or returns the cached) Google Sheets service client for the current thread.

        The discovery resource is not thread-safe, so each request thread gets its own.
        """
        creds = self.get_credentials()
        service = getattr(self._local, 'service', None)
        if service is not None:
            return service
        try:
            service = build('sheets', 'v4', credentials=creds, cache_discovery=False)
        except Exception as ex:
            raise status.ServiceUnavailableException(f'Could not build the Sheets client: {ex}') from ex
        logging.debug('Google Sheets service client created successfully.')
        self._local.service = service
        return service

    def clear_service(self) -> None:
        """Drop the current thread's cached Sheets client."""
        service = getattr(self._local, 'service', None)
        self._local.service = None
        if service is None:
            return
        try:
            service.close()
        except Exception as ex:
            logging.debug(f'Failed closing cached Sheets service client: {ex}')

    def _execute(self, description: str, make_request: Callable[[Any], Any]) -> Any:
        """Run one throttled API request.

        Args:
            description: Short description used in logs and error messages.
            make_request: Receives the Sheets resource and returns an executable request.

        Returns:
            The decoded API response.

        Raises:
            status.SheetsRateLimitedException: After backing off on HTTP 429.
            status.ServiceUnavailableException: On any other API or transport error.
        """
        with self._semaphore:
            time.sleep(self._request_delay)
            service = self.get_service()
            try:
                return make_request(service).execute()
            except HttpError as ex:
                stat: Optional[int] = ex.resp.status if ex.resp else None
                if stat == 429:
                    logging.warning(f'Sheets API rate limited during {description}; backing off {self._backoff}s.')
                    time.sleep(self._backoff)
                    raise status.SheetsRateLimitedException(f'{description} (HTTP 429).') from ex
                if stat in (401, 403):
                    raise status.ServiceUnavailableException(
                        f'Access denied (HTTP {stat}) during {description}. '
                        'Is the spreadsheet shared with the service account?'
                    ) from ex
                if stat == 404:
                    raise status.ServiceUnavailableException(
                        f'Spreadsheet "{self.spreadsheet_id}" not found (HTTP 404).'
                    ) from ex
                raise status.ServiceUnavailableException(f'Error during {description}: {ex}') from ex
            except socket.timeout as ex:
                raise status.ServiceUnavailableException(f'Timeout error during {description}: {ex}') from ex
            except ssl.SSLError as ex:
                raise status.ServiceUnavailableException(f'SSL error during {description}: {ex}') from ex

    def get_rows(self, tab: str) -> List[List[Any]]:
        """Read every row of ``tab``. Row 0 is the header.

        Args:
            tab: Worksheet title.

        Returns:
            list[list]: The rows as returned by the API. Trailing empty cells are omitted by
            the API, so rows can be shorter than the header.
        """
        result = self._execute(
            f'reading "{tab}"',
            lambda s: s.spreadsheets().values().get(
                spreadsheetId=self.spreadsheet_id,
                range=a1_range(tab, 'A:Z'),
            )
        )
        rows = result.get('values', []) if result else []
        logging.debug(f'Read {len(rows)} rows from "{tab}".')
        return rows

    def append_row(self, tab: str, row: Sequence[Any]) -> None:
        """Append ``row`` after the last row of ``tab``."""
        self._execute(
            f'appending to "{tab}"',
            lambda s: s.spreadsheets().values().append(
                spreadsheetId=self.spreadsheet_id,
                range=a1_range(tab, f'A:{idx_to_col(max(len(row), 1) - 1)}'),
                valueInputOption=VALUE_INPUT_OPTION,
                insertDataOption='INSERT_ROWS',
                body={'values': [list(row)]},
            )
        )
        logging.debug(f'Appended a row to "{tab}".')

    def update_row(self, tab: str, row_number: int, row: Sequence[Any]) -> None:
        """Overwrite the row at 1-based ``row_number`` of ``tab`` with ``row``."""
        if row_number < 2:
            raise ValueError(f'Refusing to overwrite header row {row_number} of "{tab}".')
        last_col = idx_to_col(max(len(row), 1) - 1)
        self._execute(
            f'updating row {row_number} of "{tab}"',
            lambda s: s.spreadsheets().values().update(
                spreadsheetId=self.spreadsheet_id,
                range=a1_range(tab, f'A{row_number}:{last_col}{row_number}'),
                valueInputOption=VALUE_INPUT_OPTION,
                body={'values': [list(row)]},
            )
        )
        logging.debug(f'Updated row {row_number} of "{tab}".')

    def worksheet_titles(self) -> List[str]:
        """List the worksheet titles of the spreadsheet."""
        result = self._execute(
            'listing worksheets',
            lambda s: s.spreadsheets().get(
                spreadsheetId=self.spreadsheet_id,
                fields='sheets(properties(title))',
            )
        )
        return [s.get('properties', {}).get('title', '') for s in (result or {}).get('sheets', [])]

    def ensure_worksheet(self, tab: str, header: Sequence[str]) -> bool:
        """Create ``tab`` with ``header`` as its first row if it does not exist yet.

        Returns:
            bool: True if the worksheet was created.
        """
        if tab in self.worksheet_titles():
            return False

        logging.info(f'Creating worksheet "{tab}".')
        self._execute(
            f'creating "{tab}"',
            lambda s: s.spreadsheets().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={'requests': [{'addSheet': {'properties': {'title': tab}}}]},
            )
        )
        self._execute(
            f'writing the header of "{tab}"',
            lambda s: s.spreadsheets().values().update(
                spreadsheetId=self.spreadsheet_id,
                range=a1_range(tab, f'A1:{idx_to_col(len(header) - 1)}1'),
                valueInputOption=VALUE_INPUT_OPTION,
                body={'values': [list(header)]},
            )
        )
        return True
