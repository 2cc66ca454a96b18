"""Persistent records of the fruit domain."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Optional


@dataclass
class Fruit:
    TABLE_NAME: ClassVar[str] = "example_fruits"

    id: int = 0
    name: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        """Public JSON form; timestamps are not exposed."""
        return {"id": self.id, "name": self.name}


@dataclass
class Event:
    TABLE_NAME: ClassVar[str] = "example_events"

    id: int = 0
    data: str = ""
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        """Public JSON form; the creation time is not exposed."""
        return {"id": self.id, "data": self.data}