"""Fruit domain: errors, event types, requests and the event envelope."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, is_dataclass
from enum import IntEnum
from typing import Any, Union

DEFAULT_FETCH_LIMIT = 10


class NotFoundError(LookupError):
    """The requested entity does not exist."""

    def __init__(self, message: str = "entity not found") -> None:
        super().__init__(message)


class AlreadyExistsError(Exception):
    """An entity with the same identity already exists."""

    def __init__(self, message: str = "entity already exists") -> None:
        super().__init__(message)


class EventType(IntEnum):
    CREATED = 0
    UPDATED = 1
    DELETED = 2


EVENT_TYPES: dict[int, str] = {
    EventType.CREATED: "fruit.created",
    EventType.UPDATED: "fruit.updated",
    EventType.DELETED: "fruit.deleted",
}

_NAME_FIELD = {"json": "name", "v": "required,min=3,max=20"}


@dataclass
class CreateFruitRequest:
    name: str = field(default="", metadata=_NAME_FIELD)


@dataclass
class UpdateFruitRequest:
    name: str = field(default="", metadata=_NAME_FIELD)


def _encode(obj: Any) -> Any:
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    raise TypeError(f"object of type {type(obj).__name__} is not JSON serializable")


@dataclass
class ExampleEvent:
    """Event envelope carrying an event type and an arbitrary payload."""

    type: int = 0
    payload: Any = None

    def marshal(self) -> bytes:
        document = {"type": int(self.type), "payload": self.payload}
        return json.dumps(document, default=_encode, separators=(",", ":")).encode("utf-8")

    @classmethod
    def unmarshal(cls, data: Union[bytes, str]) -> "ExampleEvent":
        document = json.loads(data)
        if document is None:
            return cls()
        if not isinstance(document, dict):
            raise ValueError("event must be a JSON object")
        event_type = document.get("type")
        if event_type is None:
            event_type = 0
        if isinstance(event_type, bool) or not isinstance(event_type, int):
            raise ValueError(f"event type must be an integer, got {event_type!r}")
        return cls(type=event_type, payload=document.get("payload"))