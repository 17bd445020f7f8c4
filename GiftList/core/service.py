"""Google Sheets and Drive integration with asynchronous operations.

Provides the remote client used to back up the person list: sign-in, finding or creating
the backup spreadsheet, and reading and writing the person rows.

Every remote call runs on a worker thread while the caller waits in a nested event loop,
bounded by the configured remote timeout.
"""

import contextlib
import json
import logging
import socket
import ssl
import threading
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

import google.auth.exceptions
import google_auth_httplib2
import httplib2
import pandas as pd
from PySide6 import QtCore
from googleapiclient import discovery_cache
from googleapiclient.discovery import build_from_document
from googleapiclient.errors import HttpError

from . import model
from .auth import auth_manager, AuthExpiredError
from .readiness import Readiness
from ..status import status

TOTAL_TIMEOUT: int = 20
MAX_RETRIES: int = 1

SPREADSHEET_MIME_TYPE = 'application/vnd.google-apps.spreadsheet'

HEADER: List[str] = ['ID', 'NAME', 'BIRTHDAY', 'YEAR', 'COLOR', 'FAVORITE', 'GIFT_SUMMARY', 'FULL_JSON']

TRUE_VALUES = {'true', '1', 'yes', 'si', 'sí', 'x'}

APIS: Dict[str, str] = {
    'sheets': 'v4',
    'drive': 'v3',
}

# Discovery documents loaded by RemoteSyncClient.initialize()
_discovery_docs: Dict[str, str] = {}

# Cached API clients to avoid repeated discovery/auth costs
_cached_services: Dict[str, Any] = {}

# Workers still running after their caller stopped waiting
_workers: Set['AsyncWorker'] = set()


class AsyncWorker(QtCore.QThread):
    """
    Generic worker thread with retry logic for blocking functions.

    Status exceptions are never retried.

    Signals:
        resultReady (object): Emitted with the function's result on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        super().__init__()
        self.func = func
        self.args = args

        self.max_attempts = kwargs.pop('max_attempts', MAX_RETRIES)
        self.wait_seconds = kwargs.pop('wait_seconds', 2.0)
        self.kwargs = kwargs

    def run(self) -> None:
        attempts = 0
        last_exception = None
        while attempts < self.max_attempts:
            attempts += 1
            try:
                result = self.func(*self.args, **self.kwargs)
                self.resultReady.emit(result)
                return
            except (status.BaseStatusException, AuthExpiredError) as ex:
                self.errorOccurred.emit(ex)
                return
            except Exception as ex:
                logging.debug(f'Attempt {attempts}/{self.max_attempts} of {self.func.__name__} failed: {ex}')
                last_exception = ex
                if attempts < self.max_attempts:
                    time.sleep(self.wait_seconds)
        # All retries exhausted
        self.errorOccurred.emit(last_exception)


def clear_service() -> None:
    """
    Clears the cached API clients.
    """
    for name, service in list(_cached_services.items()):
        try:
            service.close()
        except Exception as ex:
            logging.debug(f'Failed closing cached {name} service client: {ex}')
    _cached_services.clear()


def load_discovery_documents() -> Dict[str, str]:
    """Load the discovery documents bundled with google-api-python-client.

    Raises:
        status.ServicesNotReadyException: If a document is not available.
    """
    docs: Dict[str, str] = {}
    for name, version in APIS.items():
        doc = discovery_cache.get_static_doc(name, version)
        if not doc:
            raise status.ServicesNotReadyException(f'No discovery document for {name} {version}.')
        docs[name] = doc
    logging.debug(f'Loaded discovery documents: {", ".join(docs)}.')
    return docs


def get_service(name: str) -> Any:
    """
    Builds (or returns cached) Google API client.

    Args:
        name: 'sheets' or 'drive'.

    Raises:
        AuthExpiredError: If no valid credentials are stored.
        status.ServicesNotReadyException: If the discovery documents were not loaded.
    """
    from ..settings import lib

    creds: Any = auth_manager.get_valid_credentials()
    if name in _cached_services:
        return _cached_services[name]

    if name not in _discovery_docs:
        raise status.ServicesNotReadyException(f'The {name} API is not loaded.')

    timeout = lib.settings['remote_timeout'] or TOTAL_TIMEOUT
    http = google_auth_httplib2.AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))
    service: Any = build_from_document(_discovery_docs[name], http=http)
    logging.debug(f'Google {name} service client created successfully.')
    _cached_services[name] = service
    return service


@contextlib.contextmanager
def _translate_errors(context: str) -> Iterator[None]:
    """Translate Google API, auth and network failures into status exceptions.

    Raises:
        status.SessionExpiredException: On HTTP 401 or when credentials cannot be refreshed.
        status.DocumentAccessDeniedException: On HTTP 403 and 404.
        status.RemoteUnreachableException: On other HTTP and network failures.
    """
    try:
        yield
    except status.BaseStatusException:
        raise
    except HttpError as ex:
        stat: Optional[int] = ex.resp.status if ex.resp else None
        if stat == 401:
            raise status.SessionExpiredException(f'{context}: HTTP 401.') from ex
        if stat in (403, 404):
            raise status.DocumentAccessDeniedException(f'{context}: HTTP {stat}.') from ex
        raise status.RemoteUnreachableException(f'{context}: {ex}') from ex
    except (AuthExpiredError, google.auth.exceptions.RefreshError) as ex:
        raise status.SessionExpiredException(f'{context}: {ex}') from ex
    except (socket.timeout, ssl.SSLError, google.auth.exceptions.TransportError,
            httplib2.HttpLib2Error, OSError) as ex:
        raise status.RemoteUnreachableException(f'{context}: {ex}') from ex


def _a1(worksheet: str, cells: str = '') -> str:
    """A1 notation for a worksheet, quoting the title."""
    title = "'" + worksheet.replace("'", "''") + "'"
    return f'{title}!{cells}' if cells else title


def _resolve_worksheet(service: Any, spreadsheet_id: str, worksheet: Optional[str]) -> str:
    """Return worksheet if the spreadsheet has it, otherwise the title of its first worksheet."""
    result: Dict[str, Any] = service.spreadsheets().get(
        spreadsheetId=spreadsheet_id,
        fields='sheets(properties(title))'
    ).execute()
    titles: List[str] = [s.get('properties', {}).get('title', '') for s in result.get('sheets', [])]
    if not titles:
        raise status.DocumentAccessDeniedException(f'Spreadsheet "{spreadsheet_id}" has no worksheets.')
    if worksheet in titles:
        return worksheet
    logging.debug(f'Using worksheet "{titles[0]}" of spreadsheet "{spreadsheet_id}".')
    return titles[0]


def _escape_query(value: str) -> str:
    return value.replace('\\', '\\\\').replace("'", "\\'")


def _find_or_create_document(document_name: str, worksheet: str) -> Tuple[str, str]:
    """
    Search Drive for the backup spreadsheet by name, creating it when missing.

    The oldest match wins when several clients created a copy.

    Returns:
        tuple: The spreadsheet id and the title of its data worksheet.
    """
    with _translate_errors('Finding the backup spreadsheet'):
        drive: Any = get_service('drive')
        query = (
            f"name = '{_escape_query(document_name)}' and "
            f"mimeType = '{SPREADSHEET_MIME_TYPE}' and trashed = false"
        )
        logging.debug(f'Searching Drive: {query}')
        result: Dict[str, Any] = drive.files().list(
            q=query,
            spaces='drive',
            orderBy='createdTime',
            pageSize=10,
            fields='files(id, name)'
        ).execute()
        files: List[Dict[str, Any]] = result.get('files', [])

        sheets: Any = get_service('sheets')
        if files:
            spreadsheet_id: str = files[0]['id']
            if len(files) > 1:
                logging.warning(f'Found {len(files)} spreadsheets named "{document_name}", using the oldest.')
            logging.debug(f'Found existing spreadsheet "{spreadsheet_id}".')
            return spreadsheet_id, _resolve_worksheet(sheets, spreadsheet_id, worksheet)

        logging.info(f'Creating spreadsheet "{document_name}".')
        created: Dict[str, Any] = sheets.spreadsheets().create(
            body={
                'properties': {'title': document_name},
                'sheets': [{'properties': {'title': worksheet}}],
            },
            fields='spreadsheetId'
        ).execute()
        spreadsheet_id = created['spreadsheetId']

        sheets.spreadsheets().values().update(
            spreadsheetId=spreadsheet_id,
            range=_a1(worksheet, 'A1'),
            valueInputOption='RAW',
            body={'values': [HEADER]}
        ).execute()
        logging.debug(f'Created spreadsheet "{spreadsheet_id}" with header row.')
        return spreadsheet_id, worksheet


def _is_true(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUE_VALUES


def _fallback_person(record: Dict[str, Any]) -> Optional[model.Person]:
    """Rebuild a minimal person from the structured columns. Gifts are lost."""
    person_id = str(record.get('ID', '') or '').strip()
    name = str(record.get('NAME', '') or '').strip()
    if not person_id and not name:
        return None

    color = str(record.get('COLOR', '') or '').strip().lower()
    if color not in model.PersonColor._value2member_map_:
        color = model.PersonColor.Slate.value

    return model.Person(
        id=person_id or model.new_id(),
        name=name or 'Unnamed',
        birthday=str(record.get('BIRTHDAY', '') or ''),
        color=model.PersonColor(color),
        birth_year=model.parse_birth_year(record.get('YEAR')),
        is_favorite=_is_true(record.get('FAVORITE', False)),
    )


def _record_to_person(record: Dict[str, Any], row_number: int) -> model.Person:
    """
    Raises:
        status.MalformedRemoteRowException: If the FULL_JSON cell holds no valid person.
    """
    try:
        return model.Person.from_dict(json.loads(record.get('FULL_JSON', '')))
    except (TypeError, ValueError) as ex:
        raise status.MalformedRemoteRowException(f'Row {row_number}: {ex}') from ex


def _parse_legacy(cell: Any) -> Optional[List[model.Person]]:
    """A single cell holding the whole JSON list, as written by the first web version."""
    if not isinstance(cell, str) or not cell.lstrip().startswith('['):
        return None
    try:
        items = json.loads(cell)
    except ValueError as ex:
        logging.debug(f'{status.get_message(status.Status.MalformedRemoteRow)} Legacy payload: {ex}')
        return []
    if not isinstance(items, list):
        return []
    logging.info('Reading legacy single-cell payload.')
    return model.people_from_json_list(items)


def values_to_people(values: List[List[Any]]) -> List[model.Person]:
    """Decode the value grid of the data worksheet.

    Never raises on bad rows: undecodable ``FULL_JSON`` cells fall back to the structured
    columns, and rows with neither id nor name are skipped.
    """
    if not values or not values[0]:
        return []

    legacy = _parse_legacy(values[0][0])
    if legacy is not None:
        return legacy

    header: List[str] = [str(h).strip().upper() for h in values[0]]
    width = max(len(header), len(HEADER))
    header += [f'_{i}' for i in range(len(header), width)]

    rows = [list(r[:width]) + [''] * (width - len(r)) for r in values[1:]]
    if not rows:
        return []
    df: pd.DataFrame = pd.DataFrame(rows, columns=header)
    logging.debug(f'Constructed DataFrame: {df.shape[0]} rows x {df.shape[1]} columns.')

    people: List[model.Person] = []
    seen: Set[str] = set()
    for idx, record in enumerate(df.to_dict(orient='records'), start=2):
        try:
            person = _record_to_person(record, idx)
        except status.MalformedRemoteRowException:
            person = _fallback_person(record)
        if person is None:
            logging.debug(f'Skipping empty row {idx}.')
            continue
        if person.id in seen:
            logging.warning(f'Skipping row {idx}: duplicate id "{person.id}".')
            continue
        seen.add(person.id)
        people.append(person)
    return people


def people_to_values(people: List[model.Person]) -> List[List[Any]]:
    """Header plus one row per person."""
    rows: List[List[Any]] = [list(HEADER)]
    for person in people:
        rows.append([
            person.id,
            person.name,
            person.birthday,
            person.birth_year if person.birth_year is not None else '',
            person.color.value,
            person.is_favorite,
            model.gift_summary(person),
            json.dumps(person.to_dict(), ensure_ascii=False),
        ])
    return rows


def _pull(spreadsheet_id: str, worksheet: Optional[str]) -> Tuple[List[model.Person], str]:
    with _translate_errors(f'Reading spreadsheet "{spreadsheet_id}"'):
        service: Any = get_service('sheets')
        worksheet = _resolve_worksheet(service, spreadsheet_id, worksheet)
        result: Dict[str, Any] = service.spreadsheets().values().get(
            spreadsheetId=spreadsheet_id,
            range=_a1(worksheet),
            valueRenderOption='UNFORMATTED_VALUE'
        ).execute()
    values: List[List[Any]] = result.get('values', [])
    logging.debug(f'Fetched {len(values)} rows from "{worksheet}".')
    return values_to_people(values), worksheet


def _push(spreadsheet_id: str, worksheet: Optional[str], people: List[model.Person]) -> str:
    values = people_to_values(people)
    with _translate_errors(f'Writing spreadsheet "{spreadsheet_id}"'):
        service: Any = get_service('sheets')
        worksheet = _resolve_worksheet(service, spreadsheet_id, worksheet)
        # Clear first so a shorter list leaves no stale rows behind
        service.spreadsheets().values().clear(
            spreadsheetId=spreadsheet_id,
            range=_a1(worksheet),
            body={}
        ).execute()
        service.spreadsheets().values().update(
            spreadsheetId=spreadsheet_id,
            range=_a1(worksheet, 'A1'),
            valueInputOption='RAW',
            body={'values': values}
        ).execute()
    logging.debug(f'Wrote {len(values) - 1} people to "{worksheet}".')
    return worksheet


def _release_worker(worker: AsyncWorker) -> None:
    _workers.discard(worker)
    worker.deleteLater()


def start_asynchronous(func: Callable[..., Any], *args: Any, total_timeout: Optional[int] = None,
                       **kwargs: Any) -> Any:
    """
    Generic asynchronous operation wrapper.

    Runs func on an AsyncWorker and waits for it in a nested event loop. A worker that outlives
    the timeout is left to finish on its own; its socket timeout bounds it.

    Args:
        func: The blocking function to run.
        *args, **kwargs: Arguments passed to func.
        total_timeout (int): Seconds to wait. Defaults to the configured remote timeout.

    Returns:
        The result of the function on success.

    Raises:
        status.RemoteUnreachableException: If the operation times out or fails unexpectedly.
        status.BaseStatusException: Errors raised by func are propagated.
    """
    from ..settings import lib

    if total_timeout is None:
        total_timeout = lib.settings['remote_timeout'] or TOTAL_TIMEOUT

    worker: AsyncWorker = AsyncWorker(func, *args, **kwargs)
    _workers.add(worker)
    worker.finished.connect(lambda: _release_worker(worker))

    result: Dict[str, Any] = {'data': None, 'error': None, 'outcome': None}
    loop: QtCore.QEventLoop = QtCore.QEventLoop()

    def _finish(outcome: str, **values: Any) -> None:
        if result['outcome'] is not None:
            return
        result['outcome'] = outcome
        result.update(values)
        loop.quit()

    worker.resultReady.connect(lambda d: _finish('done', data=d))
    worker.errorOccurred.connect(lambda err: _finish('error', error=err))

    timer: QtCore.QTimer = QtCore.QTimer()
    timer.setSingleShot(True)
    timer.setInterval(int(total_timeout * 1000))
    timer.timeout.connect(lambda: _finish('timeout'))

    logging.debug(f'[Thread-{threading.get_ident()}] start_asynchronous: {func.__name__}')
    worker.start()
    timer.start()
    if result['outcome'] is None:
        loop.exec()
    timer.stop()

    if result['outcome'] == 'timeout':
        # The stale client may still be in use by the abandoned worker
        clear_service()
        raise status.RemoteUnreachableException(f'No response within {total_timeout} seconds.')

    if result['outcome'] == 'error':
        err = result['error']
        if isinstance(err, status.SessionExpiredException):
            clear_service()
            auth_manager.clear()
            raise err
        if isinstance(err, status.BaseStatusException):
            raise err
        if isinstance(err, AuthExpiredError):
            clear_service()
            auth_manager.clear()
            raise status.SessionExpiredException(str(err)) from err
        raise status.RemoteUnreachableException(str(err)) from err

    return result['data']


class RemoteSyncClient(QtCore.QObject):
    """
    Backs the person list up to a spreadsheet in the user's Google Drive.

    The client becomes ready once the OAuth client configuration ('identity') and the
    API discovery documents ('api') are loaded. See :meth:`initialize`.
    """

    def __init__(self, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self.readiness = Readiness(('identity', 'api'), parent=self)
        self._loader: Optional[AsyncWorker] = None
        self._connect_signals()

    def _connect_signals(self) -> None:
        from ..ui.actions import signals
        signals.configSectionChanged.connect(self._on_config_changed)

    @QtCore.Slot(str)
    def _on_config_changed(self, section: str) -> None:
        if section != 'client_secret':
            return
        logging.debug('Clearing cached Google service clients due to client_secret change')
        clear_service()
        self._check_identity()

    def is_ready(self) -> bool:
        return self.readiness.ready()

    def initialize(self) -> None:
        """Start loading the client configuration and the API discovery documents.

        Returns immediately. ``readiness.becameReady`` fires once both have loaded.
        """
        self._check_identity()

        if self.readiness.is_loaded('api') or self._loader is not None:
            return
        if all(name in _discovery_docs for name in APIS):
            self.readiness.mark_loaded('api')
            return

        loader = AsyncWorker(load_discovery_documents)
        _workers.add(loader)
        loader.resultReady.connect(self._on_discovery_loaded)
        loader.errorOccurred.connect(self._on_discovery_failed)
        loader.finished.connect(lambda: _release_worker(loader))
        self._loader = loader
        loader.start()

    def _check_identity(self) -> None:
        from ..settings import lib
        if self.readiness.is_loaded('identity'):
            return
        if lib.settings.is_client_secret_configured():
            self.readiness.mark_loaded('identity')
        else:
            logging.debug('Google client secret is not configured yet.')

    @QtCore.Slot(object)
    def _on_discovery_loaded(self, docs: Dict[str, str]) -> None:
        self._loader = None
        _discovery_docs.update(docs)
        self.readiness.mark_loaded('api')

    @QtCore.Slot(object)
    def _on_discovery_failed(self, err: Exception) -> None:
        self._loader = None
        logging.error(f'Failed to load the Google API discovery documents: {err}')

    def authenticate(self, force: bool = False) -> str:
        """Run the consent flow and return the access token.

        Raises:
            status.ServicesNotReadyException: If called before the client is ready.
            status.PopupCancelledException, status.AuthTimeoutException,
            status.AuthenticationExceptionException: See :func:`auth.authenticate`.
        """
        if not self.is_ready():
            raise status.ServicesNotReadyException
        from ..settings import lib
        if force:
            creds = auth_manager.force_reauthenticate(timeout_seconds=lib.settings['auth_timeout'])
        else:
            creds = auth_manager.authenticate(timeout_seconds=lib.settings['auth_timeout'])
        clear_service()
        return creds.token

    def sign_out(self) -> None:
        from . import auth
        auth_manager.clear()
        auth.sign_out()
        clear_service()

    def find_or_create_remote_document(self) -> str:
        """Return the id of the backup spreadsheet, creating it when missing."""
        from ..settings import lib
        from . import database

        spreadsheet_id, worksheet = start_asynchronous(
            _find_or_create_document,
            lib.settings['document_name'],
            lib.settings['worksheet'],
        )
        database.database.set_value(database.Key.Worksheet, worksheet)
        return spreadsheet_id

    def pull(self, document_id: str) -> List[model.Person]:
        from . import database

        cached = database.database.get_value(database.Key.Worksheet)
        people, worksheet = start_asynchronous(_pull, document_id, cached)
        if worksheet != cached:
            database.database.set_value(database.Key.Worksheet, worksheet)
        logging.info(f'Pulled {len(people)} people from the backup spreadsheet.')
        return people

    def push(self, document_id: str, people: List[model.Person]) -> None:
        from . import database

        cached = database.database.get_value(database.Key.Worksheet)
        worksheet = start_asynchronous(_push, document_id, cached, list(people))
        if worksheet != cached:
            database.database.set_value(database.Key.Worksheet, worksheet)
        logging.info(f'Pushed {len(people)} people to the backup spreadsheet.')
