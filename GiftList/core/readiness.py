"""Tracks the asynchronous loading of the dependencies a remote client needs before signing in."""
import logging
from typing import Dict, Iterable

from PySide6 import QtCore


class Readiness(QtCore.QObject):
    """
    A set of named dependencies that finish loading independently.

    Signals:
        becameReady (): Emitted exactly once, when the last dependency has loaded.
    """
    becameReady = QtCore.Signal()

    def __init__(self, names: Iterable[str], parent=None) -> None:
        super().__init__(parent=parent)
        self._loaded: Dict[str, bool] = {name: False for name in names}
        self._emitted = False

    def ready(self) -> bool:
        return all(self._loaded.values())

    def is_loaded(self, name: str) -> bool:
        return self._loaded[name]

    def mark_loaded(self, name: str) -> None:
        """
        Raises:
            KeyError: If name is not one of the tracked dependencies.
        """
        if name not in self._loaded:
            raise KeyError(f'Unknown dependency "{name}", must be one of {list(self._loaded)}')
        if self._loaded[name]:
            return

        logging.debug(f'Dependency "{name}" loaded.')
        self._loaded[name] = True

        if self.ready() and not self._emitted:
            self._emitted = True
            logging.debug('All dependencies loaded.')
            self.becameReady.emit()
