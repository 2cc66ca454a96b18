import threading
import time

import pytest

from orchard.events import LocalEngine, NoopEngine


class _Collector:
    """Callable handler that records payloads and can reject the first few."""

    def __init__(self, expected=1, fail_times=0):
        self.payloads = []
        self._expected = expected
        self._fail_times = fail_times
        self._done = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, payload):
        with self._lock:
            self.payloads.append(payload)
            if self._fail_times > 0:
                self._fail_times -= 1
                raise ValueError("nack")
            if len(self.payloads) >= self._expected:
                self._done.set()

    def wait(self, timeout):
        return self._done.wait(timeout)


def test_noop_engine_never_calls_handler():
    engine = NoopEngine()
    received = []
    engine.subscribe("topic", received.append)
    engine.publish("topic", b"data")
    engine.shutdown()
    assert received == []


def test_local_engine_delivers_published_event():
    engine = LocalEngine()
    collector = _Collector()
    engine.subscribe("topic", collector)
    engine.publish("topic", b"hello")
    assert collector.wait(2)
    engine.shutdown()
    assert collector.payloads == [b"hello"]


def test_local_engine_replays_events_to_late_subscribers():
    engine = LocalEngine()
    engine.publish("topic", b"first")
    engine.publish("topic", b"second")
    collector = _Collector(expected=2)
    engine.subscribe("topic", collector)
    assert collector.wait(2)
    engine.shutdown()
    assert collector.payloads == [b"first", b"second"]


def test_local_engine_keeps_topics_apart():
    engine = LocalEngine()
    collector = _Collector()
    engine.subscribe("a", collector)
    engine.publish("b", b"other")
    engine.publish("a", b"mine")
    assert collector.wait(2)
    time.sleep(0.1)
    engine.shutdown()
    assert collector.payloads == [b"mine"]


def test_local_engine_redelivers_rejected_event():
    engine = LocalEngine()
    collector = _Collector(expected=2, fail_times=1)
    engine.subscribe("topic", collector)
    engine.publish("topic", b"retry-me")
    assert collector.wait(2)
    engine.shutdown()
    assert collector.payloads == [b"retry-me", b"retry-me"]


def test_stopped_subscription_receives_nothing():
    engine = LocalEngine()
    received = []
    stop = threading.Event()
    engine.subscribe("topic", received.append, stop)
    stop.set()
    engine.publish("topic", b"late")
    time.sleep(0.2)
    engine.shutdown()
    assert received == []


def test_closed_engine_rejects_publish_and_subscribe():
    engine = LocalEngine()
    engine.shutdown()
    with pytest.raises(RuntimeError):
        engine.publish("topic", b"x")
    with pytest.raises(RuntimeError):
        engine.subscribe("topic", lambda payload: None)