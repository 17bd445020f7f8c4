"""
Google OAuth2 authentication and credential management.

Provides functions and classes to authenticate with Google services,
manage credential storage, and run the consent flow without blocking the GUI.

The consent flow opens the system browser and waits for the redirect on a loopback port.
Whether the user simply closed the browser tab cannot be observed; the flow then ends by the
timeout, or earlier when the user presses Cancel in the progress dialog.
"""

import json
import logging
import threading
import urllib.parse
from typing import Any, Dict, List, Optional, Set

import google.auth.exceptions
import google.auth.transport.requests
import google.oauth2.credentials
import google_auth_oauthlib.flow
from oauthlib.oauth2.rfc6749.errors import AccessDeniedError
from PySide6 import QtCore, QtWidgets

from ..status import status
from ..ui.ui import BaseProgressDialog

DEFAULT_SCOPES = [
    'https://www.googleapis.com/auth/spreadsheets',
    'https://www.googleapis.com/auth/drive.file',
]

# Flow workers still waiting on their loopback server after the caller gave up
_pending_workers: Set['AuthFlowWorker'] = set()


class AuthExpiredError(Exception):
    """Raised when credentials have expired and require interactive authentication."""
    pass


class AuthManager:
    """Manages OAuth2 credentials with thread-safe refresh."""

    def __init__(self):
        self._lock = threading.Lock()
        self._creds: Optional[google.oauth2.credentials.Credentials] = None

    def get_valid_credentials(self) -> google.oauth2.credentials.Credentials:
        """
        Return valid credentials without any UI.

        Raises:
            AuthExpiredError: if no credentials exist, or they expired and cannot be refreshed.
            status.CredsInvalidException: if stored credentials are corrupt.
        """
        from ..settings import lib
        with self._lock:
            if self._creds is None:
                if not lib.settings.creds_path.exists():
                    raise AuthExpiredError('No credentials found; interactive authentication required')
                self._creds = _load_creds_file()

            if not set(DEFAULT_SCOPES).issubset(set(self._creds.scopes or [])):
                self._creds = None
                raise AuthExpiredError('Stored credentials miss required scopes')

            if self._creds.expired or not self._creds.token:
                if not self._creds.refresh_token:
                    raise AuthExpiredError('Credentials expired; interactive authentication required')
                try:
                    self._creds.refresh(google.auth.transport.requests.Request())
                except google.auth.exceptions.RefreshError as ex:
                    self._creds = None
                    raise AuthExpiredError(f'Failed to refresh credentials: {ex}') from ex
                save_creds(self._creds)

            return self._creds

    def authenticate(self, timeout_seconds: Optional[int] = None,
                     force: bool = False) -> google.oauth2.credentials.Credentials:
        """Return valid credentials, running the interactive consent flow when needed.

        Must be called from the main GUI thread.

        Args:
            timeout_seconds: How long to wait for the browser consent. Defaults to the configured auth timeout.
            force: Skip stored credentials and always ask for consent.

        Raises:
            status.PopupCancelledException: The user cancelled or denied consent.
            status.AuthTimeoutException: No response within the timeout.
            status.AuthenticationExceptionException: Any other failure of the flow.
        """
        if not force:
            try:
                return self.get_valid_credentials()
            except (AuthExpiredError, status.CredsInvalidException) as ex:
                logging.debug(f'Stored credentials unusable, starting consent flow: {ex}')

        app = QtWidgets.QApplication.instance() or QtCore.QCoreApplication.instance()
        if not app:
            raise RuntimeError('No Qt application instance; cannot perform interactive auth')
        if QtCore.QThread.currentThread() != app.thread():
            raise RuntimeError('authenticate must be called from the main GUI thread')

        creds = authenticate(timeout_seconds=timeout_seconds)
        save_creds(creds)
        with self._lock:
            self._creds = creds
        return creds

    def force_reauthenticate(self, timeout_seconds: Optional[int] = None) -> google.oauth2.credentials.Credentials:
        """
        Force interactive reauthentication and clear cached services.
        """
        self.clear()
        sign_out()

        from . import service
        service.clear_service()

        return self.authenticate(timeout_seconds=timeout_seconds, force=True)

    def clear(self) -> None:
        with self._lock:
            self._creds = None


auth_manager = AuthManager()


class AuthFlowWorker(QtCore.QThread):
    """
    Runs the OAuth loopback flow in a background thread.

    The loopback server stops by itself after ``timeout_seconds`` so the thread always ends.

    Signals:
        resultReady (object): Emitted with credentials on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, flow: google_auth_oauthlib.flow.InstalledAppFlow, timeout_seconds: int, parent=None):
        super().__init__(parent)
        self.flow = flow
        self.timeout_seconds = timeout_seconds

    def run(self):
        logging.debug(f'[Thread-{threading.get_ident()}] AuthFlowWorker.run: waiting for consent')
        try:
            creds = self.flow.run_local_server(
                port=0,
                timeout_seconds=self.timeout_seconds,
                authorization_prompt_message='',
                success_message='GiftList is now linked. You may close this window.',
            )
        except Exception as ex:
            logging.debug(f'[Thread-{threading.get_ident()}] AuthFlowWorker.run: {type(ex).__name__}: {ex}')
            self.errorOccurred.emit(ex)
            return

        if not creds or not creds.token:
            self.errorOccurred.emit(RuntimeError('Authentication did not complete successfully.'))
            return
        self.resultReady.emit(creds)


class AuthProgressDialog(BaseProgressDialog):
    """
    Dialog displaying authentication progress with countdown and cancel.

    Signals:
        cancelled (): Emitted when the user cancels or closes the dialog.
    """

    def __init__(self, timeout_seconds: int = 60) -> None:
        super().__init__(timeout_seconds)

    def _populate_content(self, layout: QtWidgets.QVBoxLayout) -> None:
        label = QtWidgets.QLabel(
            'Please complete sign-in in your browser.\n'
            'Waiting...'
        )
        layout.addWidget(label, 1)

        self.countdown_label = QtWidgets.QLabel(
            f'Time remaining: {self.remaining} seconds'
        )
        layout.addWidget(self.countdown_label)

        self.status_label = QtWidgets.QLabel('')
        self.status_label.setWordWrap(True)
        layout.addWidget(self.status_label)

        self.cancel_button = QtWidgets.QPushButton('Cancel')
        layout.addWidget(self.cancel_button, 1)

    @QtCore.Slot()
    def _update_countdown_label(self) -> None:
        self.countdown_label.setText(f'Time remaining: {self.remaining} seconds')

    @QtCore.Slot()
    def on_timeout(self) -> None:
        self.countdown_label.setText('Authentication timed out. Please try again.')
        self.countdown_timer.stop()


def _load_creds_file() -> google.oauth2.credentials.Credentials:
    """
    Raises:
        status.CredsInvalidException: If the file cannot be parsed. The file is removed.
    """
    from ..settings import lib
    try:
        logging.debug(f'Loading credentials from {lib.settings.creds_path}...')
        return google.oauth2.credentials.Credentials.from_authorized_user_file(str(lib.settings.creds_path))
    except (ValueError, KeyError, json.JSONDecodeError) as ex:
        sign_out()
        raise status.CredsInvalidException(f'Failed to load credentials: {ex}') from ex


def get_creds() -> google.oauth2.credentials.Credentials:
    """
    Load the stored credentials.

    Raises:
        status.CredsNotFoundException: If no credentials are stored.
        status.CredsInvalidException: If stored credentials are corrupt.
    """
    from ..settings import lib
    if not lib.settings.creds_path.exists():
        raise status.CredsNotFoundException
    return _load_creds_file()


def save_creds(creds: google.oauth2.credentials.Credentials) -> None:
    """
    Save OAuth2 credentials to the configured token file.
    """
    from ..settings import lib
    lib.settings.creds_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lib.settings.creds_path, 'w', encoding='utf-8') as token_file:
        token_file.write(creds.to_json())

    logging.debug(f'Credentials saved to {lib.settings.creds_path}.')


def _release_worker(worker: AuthFlowWorker) -> None:
    _pending_workers.discard(worker)
    worker.deleteLater()


def authenticate(timeout_seconds: Optional[int] = None) -> google.oauth2.credentials.Credentials:
    """
    Run the consent flow in the browser while a progress dialog is shown.

    Returns:
        google.oauth2.credentials.Credentials: The new credentials.

    Raises:
        status.ClientSecretNotFoundException: If the client secret file is missing.
        status.ClientSecretInvalidException: If the client secret is incomplete.
        status.PopupCancelledException: If the user cancelled or denied consent.
        status.AuthTimeoutException: If no response arrived in time.
        status.AuthenticationExceptionException: If the flow failed for any other reason.
    """
    from ..settings import lib

    if not lib.settings.client_secret_path.exists():
        raise status.ClientSecretNotFoundException
    if not lib.settings.is_client_secret_configured():
        raise status.ClientSecretInvalidException('The client id or client secret is empty.')
    client_config = lib.settings.get_section('client_secret')

    if timeout_seconds is None:
        timeout_seconds = lib.settings['auth_timeout'] or 60

    logging.debug('Starting new OAuth flow...')
    flow = google_auth_oauthlib.flow.InstalledAppFlow.from_client_config(client_config, scopes=DEFAULT_SCOPES)

    dialog = AuthProgressDialog(timeout_seconds=timeout_seconds)
    worker = AuthFlowWorker(flow, timeout_seconds)
    _pending_workers.add(worker)
    worker.finished.connect(lambda: _release_worker(worker))

    result: Dict[str, Any] = {'creds': None, 'error': None, 'outcome': None}
    loop = QtCore.QEventLoop()

    def _finish(outcome: str, **kwargs) -> None:
        if result['outcome'] is not None:
            return
        result['outcome'] = outcome
        result.update(kwargs)
        loop.quit()

    worker.resultReady.connect(lambda c: _finish('done', creds=c))
    worker.errorOccurred.connect(lambda err: _finish('error', error=err))
    dialog.cancelled.connect(lambda: _finish('cancelled'))

    timer = QtCore.QTimer()
    timer.setSingleShot(True)
    timer.timeout.connect(lambda: (dialog.on_timeout(), _finish('timeout')))

    worker.start()
    timer.start(int(timeout_seconds * 1000))
    dialog.show()
    if result['outcome'] is None:
        loop.exec()
    timer.stop()
    dialog.dismiss()
    dialog.deleteLater()

    outcome = result['outcome']
    logging.debug(f'OAuth flow ended: {outcome}')

    if outcome == 'cancelled':
        raise status.PopupCancelledException
    if outcome == 'timeout':
        raise status.AuthTimeoutException(f'No response from the browser within {timeout_seconds} seconds.')
    if outcome == 'error':
        err = result['error']
        if isinstance(err, AccessDeniedError):
            raise status.PopupCancelledException(f'Consent was denied: {err}')
        raise status.AuthenticationExceptionException(f'OAuth flow failed: {err}')

    creds = result['creds']
    if not creds or not creds.token:
        raise status.CredsInvalidException('Invalid credentials returned from OAuth flow.')
    return creds


def sign_out() -> None:
    """
    Delete stored credentials to sign out the user.
    """
    from ..settings import lib
    if lib.settings.creds_path.exists():
        logging.debug(f'Deleting {lib.settings.creds_path}...')
        lib.settings.creds_path.unlink()
        logging.debug('Successfully signed out.')
    else:
        logging.debug('No credentials file found. No action taken.')


def diagnostics() -> Dict[str, Any]:
    """
    Describe the configured OAuth client and point out common misconfigurations.

    Returns:
        dict: ``client_id``, ``client_type`` ('installed', 'web' or None), ``redirect_uris``,
        ``javascript_origins`` and a list of human readable ``problems``.
    """
    from ..settings import lib

    data = lib.settings.get_section('client_secret')
    client_type = next((k for k in ('installed', 'web') if k in data), None)
    section: Dict[str, Any] = data.get(client_type, {}) if client_type else {}

    redirect_uris: List[str] = list(section.get('redirect_uris', []) or [])
    origins: List[str] = list(section.get('javascript_origins', []) or [])
    problems: List[str] = []

    if client_type is None:
        problems.append('The client secret has no "installed" or "web" section.')
    else:
        if not section.get('client_id'):
            problems.append('The client id is empty.')
        if not section.get('client_secret'):
            problems.append('The client secret is empty.')

        loopback = [
            u for u in redirect_uris
            if urllib.parse.urlparse(u).hostname in ('localhost', '127.0.0.1')
        ]
        if client_type == 'web':
            problems.append(
                'The client is a "web" application. Sign-in listens on a random local port, so Google '
                'rejects it with redirect_uri_mismatch unless the exact "http://localhost:<port>/" is registered. '
                'Create a "Desktop app" client instead.'
            )
            for origin in origins:
                parsed = urllib.parse.urlparse(origin)
                if parsed.path not in ('', '/'):
                    problems.append(f'JavaScript origin "{origin}" must not contain a path.')
        if not loopback:
            problems.append('No loopback redirect URI (http://localhost) is registered for this client.')
        for uri in loopback:
            if urllib.parse.urlparse(uri).scheme != 'http':
                problems.append(f'Loopback redirect URI "{uri}" must use http, not https.')

    return {
        'client_id': section.get('client_id', ''),
        'client_type': client_type,
        'redirect_uris': redirect_uris,
        'javascript_origins': origins,
        'problems': problems,
    }
