"""In-process metrics registry with global labels and Prometheus text output."""

from __future__ import annotations

import threading
from typing import Any, Mapping, Optional, TypeVar

_lock = threading.RLock()
_global_labels: dict[str, Any] = {}
_registry: dict[str, "_Metric"] = {}


def register_global_labels(labels: Optional[Mapping[str, Any]]) -> None:
    """Add labels that are attached to every metric created afterwards."""
    if not labels:
        return
    with _lock:
        _global_labels.update(labels)


def clear_global_labels() -> None:
    """Forget every registered global label."""
    with _lock:
        _global_labels.clear()


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "<nil>"
    return str(value)


def construct_metric(name: str, labels: Optional[Mapping[str, Any]] = None) -> str:
    """Build the full metric identifier, labels sorted by key.

    Local labels take precedence over global labels with the same key.
    """
    with _lock:
        merged = dict(_global_labels)
    merged.update(labels or {})
    if not merged:
        return name
    body = ",".join(f'{key}="{_format_value(merged[key])}"' for key in sorted(merged))
    return f"{name}{{{body}}}"


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return repr(value) if isinstance(value, float) else str(value)


def _with_suffix(full_name: str, suffix: str) -> str:
    base, brace, rest = full_name.partition("{")
    return f"{base}{suffix}{brace}{rest}"


class _Metric:
    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()

    def _lines(self) -> list[str]:
        raise NotImplementedError


class Counter(_Metric):
    """Monotonic non-negative integer counter."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._value = 0

    @property
    def value(self) -> int:
        return self._value

    def inc(self) -> None:
        self.add(1)

    def add(self, amount: int) -> None:
        if amount < 0:
            raise ValueError("counter cannot be decreased")
        with self._lock:
            self._value += int(amount)

    def set(self, value: int) -> None:
        if value < 0:
            raise ValueError("counter cannot be negative")
        with self._lock:
            self._value = int(value)

    def _lines(self) -> list[str]:
        return [f"{self.name} {self._value}"]


class Gauge(_Metric):
    """Floating point value that can go up and down."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._value = 0.0

    @property
    def value(self) -> float:
        return self._value

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    def _lines(self) -> list[str]:
        return [f"{self.name} {_format_number(self._value)}"]


class Histogram(_Metric):
    """Tracks the count and the sum of observed values."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._count = 0
        self._sum = 0.0

    @property
    def count(self) -> int:
        return self._count

    @property
    def sum(self) -> float:
        return self._sum

    def update(self, value: float) -> None:
        with self._lock:
            self._count += 1
            self._sum += float(value)

    def _lines(self) -> list[str]:
        return [
            f"{_with_suffix(self.name, '_sum')} {_format_number(self._sum)}",
            f"{_with_suffix(self.name, '_count')} {self._count}",
        ]


_M = TypeVar("_M", bound=_Metric)


def _get_or_create(full_name: str, kind: type[_M]) -> _M:
    with _lock:
        existing = _registry.get(full_name)
        if existing is None:
            created = kind(full_name)
            _registry[full_name] = created
            return created
        if not isinstance(existing, kind):
            raise ValueError(
                f"metric {full_name!r} is already registered as {type(existing).__name__}"
            )
        return existing


def counter(name: str, labels: Optional[Mapping[str, Any]] = None) -> Counter:
    return _get_or_create(construct_metric(name, labels), Counter)


def gauge(name: str, labels: Optional[Mapping[str, Any]] = None) -> Gauge:
    return _get_or_create(construct_metric(name, labels), Gauge)


def histogram(name: str, labels: Optional[Mapping[str, Any]] = None) -> Histogram:
    return _get_or_create(construct_metric(name, labels), Histogram)


def write_prometheus() -> str:
    """Render every registered metric in the Prometheus text format."""
    with _lock:
        metrics = sorted(_registry.values(), key=lambda m: m.name)
    lines = [line for metric in metrics for line in metric._lines()]
    return "\n".join(lines) + ("\n" if lines else "")