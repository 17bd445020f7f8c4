"""
Settings package for GiftList.

- :mod:`GiftList.settings.lib` – Schema-validated settings.json and client_secret.json management,
  and the application's configuration paths.
"""
