from dataclasses import dataclass, field

import pytest

from orchard.domain import CreateFruitRequest, UpdateFruitRequest
from orchard.validate import ValidationError, validate_struct


@dataclass
class Inner:
    code: str = field(default="", metadata={"json": "code", "v": "required"})


@dataclass
class Outer:
    note: str = field(default="", metadata={"json": "note,omitempty", "v": "omitempty,min=2"})
    inner: Inner = field(default_factory=Inner, metadata={"json": "inner", "v": "required"})


@dataclass
class Broken:
    value: str = field(default="x", metadata={"v": "nonsense"})


def test_valid_request_has_no_errors():
    assert validate_struct(CreateFruitRequest(name="mango")) == []
    assert validate_struct(UpdateFruitRequest(name="a" * 20)) == []


def test_too_short_name_reports_min_rule():
    errors = validate_struct(CreateFruitRequest(name="ab"))
    assert len(errors) == 1
    error = errors[0]
    assert error.pointer == "#/CreateFruitRequest/name"
    assert error.detail == "rule `min` with value of 3"
    assert error.compact() == "(name)[min='3']"
    assert error.code == "INVALID_VALUE"


def test_empty_name_fails_required_first():
    errors = validate_struct(UpdateFruitRequest(name=""))
    assert [e.tag for e in errors] == ["required"]


def test_too_long_name_fails_max():
    errors = validate_struct(CreateFruitRequest(name="a" * 21))
    assert [(e.tag, e.param) for e in errors] == [("max", "20")]


def test_nested_dataclass_is_walked():
    errors = validate_struct(Outer())
    assert [e.pointer for e in errors] == ["#/Outer/inner/code"]


def test_omitempty_skips_zero_but_checks_set_values():
    assert validate_struct(Outer(inner=Inner(code="ok"))) == []
    errors = validate_struct(Outer(note="x", inner=Inner(code="ok")))
    assert [e.field for e in errors] == ["note"]


def test_non_dataclass_reports_internal_error():
    errors = validate_struct({"name": "apple"})
    assert len(errors) == 1
    assert errors[0].pointer == "UNKNOWN"
    assert errors[0].code == "INTERNAL_VALIDATION_ERROR"


def test_unknown_rule_raises():
    with pytest.raises(ValueError):
        validate_struct(Broken())


def test_explicit_overrides_are_kept():
    error = ValidationError(pointer="UNKNOWN", detail="boom", code="INTERNAL_VALIDATION_ERROR")
    assert (error.pointer, error.detail, error.code) == (
        "UNKNOWN",
        "boom",
        "INTERNAL_VALIDATION_ERROR",
    )