"""
GiftList: birthday and gift tracker with an optional Google Drive backup.

This package provides:

- :mod:`GiftList.core` – The person and gift model, birthday date utilities, the local store,
  Google authentication, the remote spreadsheet client, and the sync manager.
- :mod:`GiftList.settings` – Settings management with schema validation.
- :mod:`GiftList.status` – Status codes and the exceptions raised for them.
- :mod:`GiftList.ui` – The application signal bus and the sign-in progress dialog.
- :mod:`GiftList.log` – In-app logging.

Use :class:`GiftList.core.sync.SyncAPI` to load, edit, and back up the person list.
"""

import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('GiftList requires Python 3.11 or higher.')

__version__ = '0.1.0'
__author__ = 'GiftList contributors'
__license__ = 'GPL-3.0'
__description__ = 'GiftList: birthday and gift tracker with an optional Google Drive backup.'

from .log import log

log.setup_logging()
