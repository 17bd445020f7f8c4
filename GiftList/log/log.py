"""Logging setup for GiftList.

Records go to stdout and to an in-memory :class:`TankHandler` the log viewer reads from.
OAuth tokens and client secrets are scrubbed from every record before it is formatted.
Qt's own messages are routed through the same root logger.
"""
import collections
import logging
import re
import sys

from PySide6.QtCore import QtMsgType, qInstallMessageHandler

from ..ui.actions import signals

LOG_LEVEL = logging.DEBUG
LOG_FORMAT = '[%(asctime)s] <%(module)s> %(levelname)s:  %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

TANK_SIZE = 5000

VALID_LEVELS = (
    logging.DEBUG,
    logging.INFO,
    logging.WARNING,
    logging.ERROR,
    logging.CRITICAL,
)

REDACTED = '***'

# Matches query parameters, JSON fields and headers that carry secrets
SECRET_PATTERNS = (
    re.compile(r'((?:access_token|refresh_token|id_token|client_secret|code)=)[^&\s]+'),
    re.compile(r'("(?:token|access_token|refresh_token|id_token|client_secret)"\s*:\s*")[^"]*'),
    re.compile(r'(Bearer\s+)[A-Za-z0-9._\-]+'),
)


def redact(text):
    """Return text with OAuth tokens and client secrets replaced."""
    for pattern in SECRET_PATTERNS:
        text = pattern.sub(rf'\g<1>{REDACTED}', text)
    return text


class SecretFilter(logging.Filter):
    """Scrubs secrets from the rendered message of a record."""

    def filter(self, record):
        message = record.getMessage()
        scrubbed = redact(message)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        return True


def set_logging_level(level):
    """
    Sets the logging level for the root logger and its handlers.

    Args:
        level (int): One of the standard logging levels.

    Raises:
        ValueError: If level is not a standard logging level.
    """
    if not isinstance(level, int) or isinstance(level, bool):
        raise ValueError('Logging level must be an integer.')
    if level not in VALID_LEVELS:
        raise ValueError('Invalid logging level. Use one of the standard logging levels, e.g., logging.DEBUG.')

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


def qt_message_handler(mode, context, message):
    logger = logging.getLogger('Qt')
    message = message.strip()

    levels = {
        QtMsgType.QtDebugMsg: logging.DEBUG,
        QtMsgType.QtInfoMsg: logging.INFO,
        QtMsgType.QtWarningMsg: logging.WARNING,
        QtMsgType.QtCriticalMsg: logging.ERROR,
        QtMsgType.QtFatalMsg: logging.CRITICAL,
    }
    logger.log(levels.get(mode, logging.INFO), message)
    if mode == QtMsgType.QtFatalMsg:
        sys.exit(1)


def setup_logging(enable_stream_handler=True, enable_qt_handler=True, log_level=LOG_LEVEL):
    """
    Configures the root logger and installs the Qt message handler.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        enable_stream_handler (bool): Also print records to stdout.
        enable_qt_handler (bool): Route Qt's own messages through logging.
        log_level (int): Level applied to the root logger and all handlers.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    secret_filter = SecretFilter()

    if enable_stream_handler:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(log_level)
        stream_handler.addFilter(secret_filter)
        root_logger.addHandler(stream_handler)

    tank_handler = TankHandler()
    tank_handler.setFormatter(formatter)
    tank_handler.setLevel(log_level)
    tank_handler.addFilter(secret_filter)
    root_logger.addHandler(tank_handler)

    if enable_qt_handler:
        qInstallMessageHandler(qt_message_handler)


def get_tank():
    """Return the tank handler installed on the root logger, or None."""
    for handler in logging.getLogger().handlers:
        if isinstance(handler, TankHandler):
            return handler
    return None


class TankHandler(logging.Handler):
    """
    Keeps the most recent formatted records in memory for the log viewer.

    Records at ERROR or above also emit ``signals.showLogs``.

    Attributes:
        tank (collections.deque[tuple[int, str]]): Level and formatted message pairs,
            oldest first, holding at most ``max_records`` entries.
    """

    def __init__(self, max_records=TANK_SIZE):
        super().__init__()
        self.tank = collections.deque(maxlen=max_records)

    def emit(self, record):
        try:
            message = self.format(record)
            self.tank.append((record.levelno, message))
            if record.levelno >= logging.ERROR:
                signals.showLogs.emit()
        except Exception:
            self.handleError(record)

    def get_logs(self, level=logging.NOTSET):
        """Formatted messages at or above level."""
        return [msg for lvl, msg in self.tank if lvl >= level]

    def clear_logs(self):
        self.tank.clear()
