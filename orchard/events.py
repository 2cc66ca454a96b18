"""Publish/subscribe event engines."""

from __future__ import annotations

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Optional

Handler = Callable[[bytes], None]

_POLL_INTERVAL = 0.05
_REDELIVERY_DELAY = 0.001
_SHUTDOWN_JOIN_TIMEOUT = 1.0


class Eventer(ABC):
    """Publishes events to topics and runs handlers for subscribed topics.

    A handler acknowledges an event by returning and rejects it by raising.
    Setting ``stop`` ends a subscription.
    """

    @abstractmethod
    def publish(self, topic: str, event: bytes) -> None: ...

    @abstractmethod
    def subscribe(
        self, topic: str, handler: Handler, stop: Optional[threading.Event] = None
    ) -> None: ...

    @abstractmethod
    def shutdown(self) -> None: ...


class NoopEngine(Eventer):
    """Engine that drops every event and never calls handlers."""

    def publish(self, topic: str, event: bytes) -> None:
        return None

    def subscribe(
        self, topic: str, handler: Handler, stop: Optional[threading.Event] = None
    ) -> None:
        return None

    def shutdown(self) -> None:
        return None


@dataclass(eq=False)
class _Subscription:
    topic: str
    handler: Handler
    stop: threading.Event
    inbox: "queue.Queue[bytes]" = field(default_factory=queue.Queue)
    thread: Optional[threading.Thread] = None


class LocalEngine(Eventer):
    """In-process engine.

    Published events are kept per topic and replayed to late subscribers.
    A rejected event is redelivered until it is acknowledged or the
    subscription ends.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._persisted: dict[str, list[bytes]] = defaultdict(list)
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._closed = threading.Event()

    def publish(self, topic: str, event: bytes) -> None:
        payload = bytes(event)
        with self._lock:
            if self._closed.is_set():
                raise RuntimeError("event engine is closed")
            self._persisted[topic].append(payload)
            for sub in self._subscriptions[topic]:
                sub.inbox.put(payload)

    def subscribe(
        self, topic: str, handler: Handler, stop: Optional[threading.Event] = None
    ) -> None:
        sub = _Subscription(topic=topic, handler=handler, stop=stop or threading.Event())
        with self._lock:
            if self._closed.is_set():
                raise RuntimeError("event engine is closed")
            for payload in self._persisted[topic]:
                sub.inbox.put(payload)
            self._subscriptions[topic].append(sub)
        sub.thread = threading.Thread(
            target=self._consume, args=(sub,), name=f"events-{topic}", daemon=True
        )
        sub.thread.start()

    def shutdown(self) -> None:
        self._closed.set()
        with self._lock:
            subs = [sub for subs in self._subscriptions.values() for sub in subs]
        for sub in subs:
            if sub.thread is not None and sub.thread is not threading.current_thread():
                sub.thread.join(_SHUTDOWN_JOIN_TIMEOUT)

    def _stopped(self, sub: _Subscription) -> bool:
        return sub.stop.is_set() or self._closed.is_set()

    def _consume(self, sub: _Subscription) -> None:
        try:
            while not self._stopped(sub):
                try:
                    payload = sub.inbox.get(timeout=_POLL_INTERVAL)
                except queue.Empty:
                    continue
                self._deliver(sub, payload)
        finally:
            with self._lock:
                subs = self._subscriptions[sub.topic]
                if sub in subs:
                    subs.remove(sub)

    def _deliver(self, sub: _Subscription, payload: bytes) -> None:
        while not self._stopped(sub):
            try:
                sub.handler(payload)
            except Exception as exc:
                self._logger.debug("nack received, resending message: %s", exc)
                time.sleep(_REDELIVERY_DELAY)
                continue
            return