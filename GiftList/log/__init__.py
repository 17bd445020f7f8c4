"""
Logging subsystem for GiftList.

Modules:

- :mod:`GiftList.log.log` – Root logger setup, in-memory tank handler, and the Qt message bridge.
"""
