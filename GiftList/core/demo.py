"""Simulated remote client.

Has the interface of :class:`~GiftList.core.service.RemoteSyncClient` but never leaves the
machine: every remote operation waits for the configured demo delay without blocking the
event loop, and the remote spreadsheet is always empty.
"""
import logging
from typing import List, Optional

from PySide6 import QtCore

from . import model
from .readiness import Readiness

DEMO_TOKEN = 'demo-token'
DEMO_DOCUMENT_ID = 'demo'


class DemoSyncClient(QtCore.QObject):
    """Remote client that only simulates network delays."""

    def __init__(self, delay_ms: Optional[int] = None, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        if delay_ms is None:
            from ..settings import lib
            delay_ms = lib.settings['demo_delay_ms']
        self.delay_ms = delay_ms if delay_ms is not None else 800
        self.readiness = Readiness((), parent=self)
        self.last_pushed: Optional[List[model.Person]] = None
        self.push_count = 0

    def _wait(self) -> None:
        if self.delay_ms <= 0:
            return
        loop = QtCore.QEventLoop()
        QtCore.QTimer.singleShot(self.delay_ms, loop.quit)
        loop.exec()

    def is_ready(self) -> bool:
        return True

    def initialize(self) -> None:
        pass

    def authenticate(self, force: bool = False) -> str:
        logging.debug('Demo sign-in.')
        self._wait()
        return DEMO_TOKEN

    def sign_out(self) -> None:
        pass

    def find_or_create_remote_document(self) -> str:
        self._wait()
        return DEMO_DOCUMENT_ID

    def pull(self, document_id: str) -> List[model.Person]:
        self._wait()
        return []

    def push(self, document_id: str, people: List[model.Person]) -> None:
        self._wait()
        self.last_pushed = list(people)
        self.push_count += 1
        logging.debug(f'Demo push of {len(people)} people.')
