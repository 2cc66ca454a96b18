"""Fruit catalogue web service: WSGI API, SQLite storage, caches, events and metrics."""

__version__ = "0.1.0"