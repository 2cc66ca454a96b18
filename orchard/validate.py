"""Rule-based validation of dataclass instances.

Rules live in field metadata under ``"v"``, e.g. ``"required,min=3,max=20"``;
the reported field name comes from the ``"json"`` metadata key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, is_dataclass
from typing import Any, Callable, Optional

VALIDATE_RULES_TAG_NAME = "v"
JSON_TAG_NAME = "json"

_logger = logging.getLogger(__name__)


@dataclass
class ValidationError:
    """One failed rule, with a JSON pointer to the offending field."""

    field: str = ""
    namespace: str = ""
    tag: str = ""
    param: str = ""
    pointer: str = ""
    detail: str = ""
    code: str = ""

    def __post_init__(self) -> None:
        if not self.pointer:
            self.pointer = "#/" + self.namespace.replace(".", "/")
        if not self.detail:
            self.detail = f"rule `{self.tag}` with value of {self.param}"
        if not self.code:
            self.code = "INVALID_VALUE"

    def compact(self) -> str:
        return f"({self.field})[{self.tag}='{self.param}']"


def _is_zero(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict, set, frozenset)):
        return len(value) == 0
    if isinstance(value, (bool, int, float)):
        return not value
    return False


def _measure(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("length rules do not apply to booleans")
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, (str, bytes, list, tuple, dict, set, frozenset)):
        return len(value)
    raise ValueError(f"length rules do not apply to {type(value).__name__}")


def _number(param: str) -> float:
    try:
        return float(param)
    except ValueError:
        raise ValueError(f"invalid rule parameter: {param!r}") from None


_RULES: dict[str, Callable[[Any, str], bool]] = {
    "required": lambda value, _param: not _is_zero(value),
    "min": lambda value, param: _measure(value) >= _number(param),
    "max": lambda value, param: _measure(value) <= _number(param),
    "len": lambda value, param: _measure(value) == _number(param),
    "oneof": lambda value, param: str(value) in param.split(),
}


def _first_failure(rules: str, value: Any) -> Optional[tuple[str, str]]:
    for token in rules.split(","):
        token = token.strip()
        if not token:
            continue
        name, _, param = token.partition("=")
        if name == "omitempty":
            if _is_zero(value):
                return None
            continue
        check = _RULES.get(name)
        if check is None:
            raise ValueError(f"undefined validation rule: {name}")
        if not check(value, param):
            return name, param
    return None


def _field_name(dc_field: Any) -> str:
    tag = dc_field.metadata.get(JSON_TAG_NAME, "")
    if not tag or tag == "-":
        return dc_field.name
    return tag.replace(",omitempty", "")


def _walk(obj: Any, namespace: str, errors: list[ValidationError]) -> None:
    for dc_field in fields(obj):
        rules = dc_field.metadata.get(VALIDATE_RULES_TAG_NAME, "")
        if rules == "-":
            continue
        value = getattr(obj, dc_field.name)
        name = _field_name(dc_field)
        path = f"{namespace}.{name}"
        failure = _first_failure(rules, value)
        if failure is not None:
            tag, param = failure
            errors.append(ValidationError(field=name, namespace=path, tag=tag, param=param))
            continue
        if is_dataclass(value) and not isinstance(value, type):
            _walk(value, path, errors)


def validate_struct(obj: Any) -> list[ValidationError]:
    """Validate a dataclass instance; an empty list means it is valid."""
    if not is_dataclass(obj) or isinstance(obj, type):
        message = f"validator: expected a dataclass instance, got {type(obj).__name__}"
        _logger.error("validate_struct error: %s", message)
        return [
            ValidationError(pointer="UNKNOWN", detail=message, code="INTERNAL_VALIDATION_ERROR")
        ]
    errors: list[ValidationError] = []
    _walk(obj, type(obj).__name__, errors)
    return errors