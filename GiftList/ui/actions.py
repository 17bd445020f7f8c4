"""Application-wide Qt signals and utility slots for GiftList.

This module provides:
    - open_spreadsheet slot: opens the linked backup spreadsheet in the browser.
    - Signals: custom Qt signals for configuration changes, the person list, sync state,
      errors, and log display.
"""
import logging

from PySide6 import QtCore, QtGui


@QtCore.Slot()
def open_spreadsheet() -> None:
    """
    Opens the linked backup spreadsheet in the default browser.
    """
    from ..core import database

    spreadsheet_id = database.database.get_value(database.Key.SpreadsheetId)
    if not spreadsheet_id:
        logging.warning('No backup spreadsheet is linked; nothing to open.')
        return

    url: str = f'https://docs.google.com/spreadsheets/d/{spreadsheet_id}/edit#gid=0'
    logging.debug(f'Opening spreadsheet: {url}')
    QtGui.QDesktopServices.openUrl(QtCore.QUrl(url))


class Signals(QtCore.QObject):
    """Centralized Qt signals for config, data, and sync events."""
    configSectionChanged = QtCore.Signal(str)

    peopleChanged = QtCore.Signal(list)
    syncStateChanged = QtCore.Signal(str)
    authenticationRequested = QtCore.Signal()

    openSpreadsheet = QtCore.Signal()

    showLogs = QtCore.Signal()

    error = QtCore.Signal(str)

    def __init__(self):
        super().__init__()
        self._connect_signals()

    def _connect_signals(self):
        self.openSpreadsheet.connect(open_spreadsheet)


signals = Signals()
