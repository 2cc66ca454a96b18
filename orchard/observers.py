"""Periodic export of database connection statistics as metrics."""

from __future__ import annotations

import threading
from datetime import timedelta
from typing import Any, Union

from orchard import metrics

DEFAULT_OBSERVE_INTERVAL = 5.0

_NANOSECONDS = 1_000_000_000


def _seconds(value: Union[float, int, timedelta]) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class DatabaseObserver:
    """Publishes a database's connection statistics every ``every`` seconds.

    ``db`` must provide ``ping()`` and ``stats()``.
    """

    def __init__(
        self, db: Any, *, every: Union[float, int, timedelta] = 0.0, name: str = ""
    ) -> None:
        self.every = _seconds(every) or DEFAULT_OBSERVE_INTERVAL
        self.name = name
        if db is None:
            raise ValueError("database connection is nil")
        try:
            db.ping()
        except Exception as err:
            raise ConnectionError("database is not reachable") from err
        self._db = db

    def _labels(self) -> dict[str, Any]:
        return {"db_name": self.name} if self.name else {}

    def observe(self, stop: threading.Event) -> None:
        """Update metrics on every tick until ``stop`` is set."""
        labels = self._labels()
        while not stop.wait(self.every):
            self._update(labels)

    def update_metrics(self) -> None:
        self._update(self._labels())

    def _update(self, labels: dict[str, Any]) -> None:
        stats = self._db.stats()
        metrics.gauge("go_sql_max_open_connections", labels).set(stats.max_open_connections)
        metrics.gauge("go_sql_open_connections", labels).set(stats.open_connections)
        metrics.gauge("go_sql_in_use_connections", labels).set(stats.in_use)
        metrics.gauge("go_sql_idle_connections", labels).set(stats.idle)
        metrics.counter("go_sql_wait_count_total", labels).set(stats.wait_count)
        metrics.counter("go_sql_wait_duration_seconds_total", labels).set(
            int(stats.wait_duration * _NANOSECONDS)
        )
        metrics.counter("go_sql_max_idle_closed_total", labels).set(stats.max_idle_closed)
        metrics.counter("go_sql_idle_time_closed_total", labels).set(stats.max_idle_time_closed)
        metrics.counter("go_sql_lifetime_closed_total", labels).set(stats.max_lifetime_closed)