"""
Core package for GiftList.

This package includes:

- :mod:`GiftList.core.model` – Person and gift records and the list operations on them.
- :mod:`GiftList.core.dates` – Birthday string parsing and day arithmetic.
- :mod:`GiftList.core.database` – Local SQLite store for the person list and link state.
- :mod:`GiftList.core.readiness` – Tracks asynchronous loading of remote client dependencies.
- :mod:`GiftList.core.auth` – Google OAuth2 authentication and credential management.
- :mod:`GiftList.core.service` – Google Sheets and Drive backup client with asynchronous operations.
- :mod:`GiftList.core.demo` – Simulated backup client.
- :mod:`GiftList.core.sync` – Debounced, local-authoritative sync of the person list.
"""
