import threading
import time
from datetime import timedelta

import pytest

from orchard import metrics
from orchard.database import SqliteDatabase
from orchard.observers import DatabaseObserver


@pytest.fixture(autouse=True)
def no_global_labels():
    metrics.clear_global_labels()
    yield
    metrics.clear_global_labels()


@pytest.fixture
def database():
    db = SqliteDatabase(":memory:")
    yield db
    db.shutdown()


def test_nil_database_rejected():
    with pytest.raises(ValueError):
        DatabaseObserver(None)


def test_unreachable_database_rejected():
    db = SqliteDatabase(":memory:")
    db.shutdown()
    with pytest.raises(ConnectionError):
        DatabaseObserver(db)


def test_default_interval(database):
    assert DatabaseObserver(database).every == 5.0


def test_custom_interval_accepts_timedelta(database):
    observer = DatabaseObserver(database, every=timedelta(milliseconds=250))
    assert observer.every == 0.25


def test_update_metrics_sets_gauges(database):
    observer = DatabaseObserver(database, name="obs-update")
    observer.update_metrics()
    labels = {"db_name": "obs-update"}
    stats = database.stats()
    assert metrics.gauge("go_sql_max_open_connections", labels).value == stats.max_open_connections
    assert metrics.gauge("go_sql_open_connections", labels).value == stats.open_connections
    assert metrics.gauge("go_sql_idle_connections", labels).value == stats.idle
    assert metrics.counter("go_sql_wait_count_total", labels).value == stats.wait_count


def test_unnamed_observer_uses_no_labels(database):
    DatabaseObserver(database).update_metrics()
    assert metrics.gauge("go_sql_max_open_connections").value == 1
    assert "go_sql_max_open_connections 1" in metrics.write_prometheus()


def test_observe_runs_until_stopped(database):
    observer = DatabaseObserver(database, every=0.01, name="obs-loop")
    stop = threading.Event()
    worker = threading.Thread(target=observer.observe, args=(stop,))
    worker.start()
    gauge = metrics.gauge("go_sql_open_connections", {"db_name": "obs-loop"})
    deadline = time.monotonic() + 5
    while gauge.value == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    stop.set()
    worker.join(5)
    assert not worker.is_alive()
    assert gauge.value == database.stats().open_connections