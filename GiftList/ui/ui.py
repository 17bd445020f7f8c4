"""Shared Qt widgets.

Only the countdown progress dialog lives here; it is the base of the sign-in dialog shown
while the browser consent flow is running.
"""
from PySide6 import QtCore, QtWidgets


class BaseProgressDialog(QtWidgets.QDialog):
    """
    Modal dialog with a one-second countdown and a cancel button.

    Closing the window counts as cancelling. Use :meth:`dismiss` to close it
    programmatically without emitting ``cancelled``.

    Subclasses populate the layout and must create ``cancel_button``.

    Signals:
        cancelled (): Emitted when the user cancels or closes the dialog.
        errorOccurred (str): Emitted to display an error message.
    """
    cancelled = QtCore.Signal()
    errorOccurred = QtCore.Signal(str)

    def __init__(self, timeout_seconds: int, status_text: str = '', parent=None) -> None:
        super().__init__(parent=parent)
        self.setWindowTitle('GiftList')
        self.setModal(True)

        self.timeout_seconds = timeout_seconds
        self.remaining = int(timeout_seconds)
        self.status_text = status_text
        self._dismissed = False

        self.countdown_timer = QtCore.QTimer(self)
        self.countdown_timer.setInterval(1000)

        self._create_ui()
        self._connect_signals()

        self.countdown_timer.start()

    def _create_ui(self) -> None:
        layout = QtWidgets.QVBoxLayout(self)
        self._populate_content(layout)

    def _populate_content(self, layout: QtWidgets.QVBoxLayout) -> None:
        raise NotImplementedError('Subclasses must populate the dialog content.')

    def _connect_signals(self) -> None:
        self.countdown_timer.timeout.connect(self._tick)
        self.cancel_button.clicked.connect(self.on_cancel)
        self.errorOccurred.connect(self.on_error)

    @QtCore.Slot()
    def _tick(self) -> None:
        self.remaining = max(self.remaining - 1, 0)
        self._update_countdown_label()
        if self.remaining == 0:
            self.on_timeout()

    def _update_countdown_label(self) -> None:
        pass

    @QtCore.Slot(str)
    def on_error(self, msg: str) -> None:
        status_label = getattr(self, 'status_label', None)
        if status_label is not None:
            status_label.setText(msg)

    @QtCore.Slot()
    def on_cancel(self) -> None:
        self.close()

    @QtCore.Slot()
    def on_timeout(self) -> None:
        self.countdown_timer.stop()

    def dismiss(self) -> None:
        """Close the dialog without reporting a cancellation."""
        self._dismissed = True
        self.close()

    def closeEvent(self, event) -> None:
        self.countdown_timer.stop()
        if not self._dismissed:
            self._dismissed = True
            self.cancelled.emit()
        super().closeEvent(event)
