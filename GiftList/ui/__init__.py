"""
User interface helpers for GiftList.

- :mod:`GiftList.ui.actions` – Application-wide signal bus.
- :mod:`GiftList.ui.ui` – Base progress dialog used by the sign-in flow.
"""
