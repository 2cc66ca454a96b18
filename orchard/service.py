"""Business logic of the fruit domain."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Union

from orchard.domain import EVENT_TYPES, CreateFruitRequest, EventType, ExampleEvent, UpdateFruitRequest
from orchard.models import Event, Fruit

TOPIC = "example-topic"


class FruitService:
    """Creates, reads, updates and deletes fruits, emitting an event for each change."""

    def __init__(
        self,
        repository: Any,
        publisher: Any,
        *,
        logger: Optional[logging.Logger] = None,
        cache: Any = None,
    ) -> None:
        self._repository = repository
        self._publisher = publisher
        self._logger = logger or logging.getLogger(__name__)
        self.cache = cache

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        self._repository.begin()
        try:
            yield
        except BaseException:
            try:
                self._repository.rollback()
            except Exception as rollback_err:
                self._logger.error("rollback failed: %s", rollback_err)
            raise
        try:
            self._repository.commit()
        except BaseException:
            try:
                self._repository.rollback()
            except Exception:
                pass
            raise

    def fruits(self, limit: int, offset: int) -> list[Fruit]:
        return self._repository.list_fruits(limit, offset)

    def fruit_by_id(self, fruit_id: int) -> Fruit:
        return self._repository.get_fruit_by_id(fruit_id)

    def create(self, request: CreateFruitRequest) -> Fruit:
        fruit = Fruit(name=request.name)
        with self._transaction():
            self._repository.create_fruit(fruit)
            self._send_event(EventType.CREATED, fruit)
        return fruit

    def update(self, fruit_id: int, request: UpdateFruitRequest) -> Fruit:
        with self._transaction():
            fruit = self._repository.get_fruit_by_id(fruit_id)
            fruit.name = request.name
            self._repository.update_fruit(fruit)
            self._send_event(EventType.UPDATED, fruit)
        return fruit

    def delete(self, fruit_id: int) -> None:
        with self._transaction():
            fruit = self._repository.get_fruit_by_id(fruit_id)
            self._repository.delete_fruit(fruit)
            self._send_event(EventType.DELETED, fruit)

    def _send_event(self, event_type: int, payload: Any) -> None:
        data = ExampleEvent(type=event_type, payload=payload).marshal()
        self._publisher.publish(TOPIC, data)

    def subscribe(self, subscriber: Any, stop: Optional[threading.Event] = None) -> None:
        subscriber.subscribe(TOPIC, self.handle_event, stop)

    def handle_event(self, data: Union[bytes, str]) -> None:
        """Store a received event; raises ValueError for malformed or unknown events."""
        try:
            event = ExampleEvent.unmarshal(data)
        except ValueError as err:
            raise ValueError(f"failed to unmarshal event: {err}") from err

        self._logger.info("received event: %s", event.type)

        if event.type not in EVENT_TYPES:
            raise ValueError(f"invalid event type: {event.type}")

        text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
        record = Event(data=text)
        with self._transaction():
            self._repository.save_event(record)