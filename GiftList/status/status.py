"""Status definitions and exceptions for GiftList.

This module provides:
    - Status: enumeration of possible application states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions (e.g., SessionExpiredException) for error handling in services
"""
import enum
import logging
from typing import Dict


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    SettingsNotFound = enum.auto()
    SettingsInvalid = enum.auto()

    # Authentication status
    ClientSecretNotFound = enum.auto()
    ClientSecretInvalid = enum.auto()
    CredsNotFound = enum.auto()
    CredsInvalid = enum.auto()
    NotAuthenticated = enum.auto()
    ServicesNotReady = enum.auto()
    PopupCancelled = enum.auto()
    AuthTimeout = enum.auto()
    SessionExpired = enum.auto()

    # Remote document status
    RemoteUnreachable = enum.auto()
    DocumentAccessDenied = enum.auto()
    MalformedRemoteRow = enum.auto()

    # Local status
    LocalStoreUnavailable = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.SettingsNotFound: 'Could not find the settings file.',
    Status.SettingsInvalid: 'The settings file seems to be incomplete, or contains invalid values.',

    Status.ClientSecretNotFound: 'Could not find the google client secret. Have you set up a valid Google client secret?',
    Status.ClientSecretInvalid: 'Could not verify the client secret. Have you set up a valid Google client secret?',
    Status.CredsNotFound: 'Could not find the credentials. Please sign in to your Google account.',
    Status.CredsInvalid: 'Could not verify the credentials. Please sign in again to your Google account.',
    Status.NotAuthenticated: 'Could not complete the Google sign-in.',
    Status.ServicesNotReady: 'Google services are still loading. Please try again in a moment.',
    Status.PopupCancelled: 'Sign-in was cancelled.',
    Status.AuthTimeout: 'Sign-in took too long or the browser window was blocked. Please try again.',
    Status.SessionExpired: 'Your Google session has expired. Please link your account again.',

    Status.RemoteUnreachable: 'Google Drive is unreachable. Your changes are kept locally and will be sent later.',
    Status.DocumentAccessDenied: 'Could not access the backup spreadsheet. Please check its sharing permissions.',
    Status.MalformedRemoteRow: 'A row of the backup spreadsheet could not be read.',

    Status.LocalStoreUnavailable: 'Local storage is unavailable. Changes are only kept in memory.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in GiftList.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.
        silent (bool): Silent errors are recovered from without telling the user.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus
    silent = False

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        self.detail = message or ''
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        if self.silent:
            logging.debug(exception_message)
            return

        logging.error(exception_message)

        from ..ui.actions import signals
        signals.error.emit(message or self.status_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class SettingsNotFoundException(BaseStatusException):
    """Exception raised when the settings file cannot be found."""
    status = Status.SettingsNotFound


class SettingsInvalidException(BaseStatusException):
    """Exception raised when the settings file is invalid or malformed."""
    status = Status.SettingsInvalid


class ClientSecretNotFoundException(BaseStatusException):
    """Exception raised when the Google OAuth client secret file cannot be found."""
    status = Status.ClientSecretNotFound


class ClientSecretInvalidException(BaseStatusException):
    """Exception raised when the Google OAuth client secret is invalid or malformed."""
    status = Status.ClientSecretInvalid


class CredsNotFoundException(BaseStatusException):
    """Exception raised when stored Google credentials cannot be found."""
    status = Status.CredsNotFound


class CredsInvalidException(BaseStatusException):
    """Exception raised when stored Google credentials are invalid or corrupt."""
    status = Status.CredsInvalid


class AuthenticationExceptionException(BaseStatusException):
    """Exception raised when the OAuth flow fails for a reason other than cancel or timeout."""
    status = Status.NotAuthenticated


class ServicesNotReadyException(BaseStatusException):
    """Exception raised when authentication is requested before the Google libraries are loaded."""
    status = Status.ServicesNotReady


class PopupCancelledException(BaseStatusException):
    """Exception raised when the user closes or cancels the sign-in flow."""
    status = Status.PopupCancelled
    silent = True


class AuthTimeoutException(BaseStatusException):
    """Exception raised when the sign-in flow receives no response in time."""
    status = Status.AuthTimeout


class SessionExpiredException(BaseStatusException):
    """Exception raised when the remote API rejects the session (HTTP 401)."""
    status = Status.SessionExpired


class RemoteUnreachableException(BaseStatusException):
    """Exception raised when a remote call times out or the network fails."""
    status = Status.RemoteUnreachable


class DocumentAccessDeniedException(BaseStatusException):
    """Exception raised when the backup spreadsheet cannot be read or written."""
    status = Status.DocumentAccessDenied


class MalformedRemoteRowException(BaseStatusException):
    """Exception raised when a spreadsheet row holds no valid person payload."""
    status = Status.MalformedRemoteRow
    silent = True


class LocalStoreUnavailableException(BaseStatusException):
    """Exception raised when the local database cannot be used."""
    status = Status.LocalStoreUnavailable
    silent = True
