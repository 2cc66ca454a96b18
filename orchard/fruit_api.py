"""HTTP endpoints of the fruit service."""

from __future__ import annotations

import json
import re
from typing import Any, Optional, TypeVar

from werkzeug.http import HTTP_STATUS_CODES
from werkzeug.wrappers import Request, Response

from orchard.domain import (
    DEFAULT_FETCH_LIMIT,
    AlreadyExistsError,
    CreateFruitRequest,
    NotFoundError,
    UpdateFruitRequest,
)
from orchard.http_server import RouteGroup
from orchard.response import problem_response
from orchard.validate import validate_struct

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1
_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

_R = TypeVar("_R", CreateFruitRequest, UpdateFruitRequest)


def _atoi(text: Optional[str]) -> Optional[int]:
    if text is None or not _INTEGER.fullmatch(text):
        return None
    value = int(text)
    return value if _INT64_MIN <= value <= _INT64_MAX else None


def _json(status: int, payload: Any) -> Response:
    return Response(json.dumps(payload) + "\n", status=status, mimetype="application/json")


def _bad_request(request: Request, **kwargs: Any) -> Response:
    return problem_response(request, 400, HTTP_STATUS_CODES[400], **kwargs)


def _bind(request: Request, kind: type[_R]) -> _R:
    """Fill a request object from the body; raises ValueError when it cannot."""
    raw = request.get_data(cache=True)
    if not raw:
        return kind()
    if request.mimetype == "application/json":
        try:
            document = json.loads(raw)
        except ValueError as err:
            raise ValueError(f"malformed JSON body: {err}") from err
        if document is None:
            return kind()
        if not isinstance(document, dict):
            raise ValueError("JSON body must be an object")
        name = document.get("name")
        if name is None:
            name = next(
                (value for key, value in document.items() if key.lower() == "name"), None
            )
        if name is None:
            return kind()
        if not isinstance(name, str):
            raise ValueError("field name must be a string")
        return kind(name=name)
    if request.mimetype in _FORM_TYPES:
        return kind(name=request.form.get("name", ""))
    raise ValueError(f"unsupported media type: {request.mimetype}")


class FruitProvider:
    """Registers the ``/fruits`` endpoints backed by a fruit service."""

    def __init__(self, service: Any) -> None:
        self._service = service

    def register(self, group: RouteGroup) -> None:
        group.add("GET", "/fruits", self._fruits)
        group.add("GET", "/fruits/<fruit_id>", self._fruit_by_id)
        group.add("POST", "/fruits", self._create_fruit)
        group.add("PUT", "/fruits/<fruit_id>", self._update_fruit)
        group.add("DELETE", "/fruits/<fruit_id>", self._delete_fruit)

    def _process_error(self, request: Request, err: Exception) -> Response:
        if isinstance(err, NotFoundError):
            status = 404
        elif isinstance(err, AlreadyExistsError):
            status = 409
        else:
            status = 500
        return problem_response(request, status, str(err))

    def _fruits(self, request: Request) -> Response:
        limit = _atoi(request.args.get("limit"))
        if limit is None or limit < 0:
            limit = DEFAULT_FETCH_LIMIT
        offset = _atoi(request.args.get("offset"))
        if offset is None or offset < 0:
            offset = 0
        try:
            fruits = self._service.fruits(limit, offset)
        except Exception as err:
            return self._process_error(request, err)
        return _json(200, [fruit.to_dict() for fruit in fruits])

    def _fruit_by_id(self, request: Request, fruit_id: str) -> Response:
        parsed = _atoi(fruit_id)
        if parsed is None:
            return _bad_request(request)
        try:
            fruit = self._service.fruit_by_id(parsed)
        except Exception as err:
            return self._process_error(request, err)
        return _json(200, fruit.to_dict())

    def _create_fruit(self, request: Request) -> Response:
        try:
            body = _bind(request, CreateFruitRequest)
        except ValueError:
            return _bad_request(request)
        errors = validate_struct(body)
        if errors:
            return _bad_request(request, validation_errors=errors)
        try:
            fruit = self._service.create(body)
        except Exception as err:
            return self._process_error(request, err)
        return _json(201, fruit.to_dict())

    def _delete_fruit(self, request: Request, fruit_id: str) -> Response:
        parsed = _atoi(fruit_id)
        if parsed is None:
            return _bad_request(request)
        try:
            self._service.delete(parsed)
        except Exception as err:
            return self._process_error(request, err)
        return Response(status=200)

    def _update_fruit(self, request: Request, fruit_id: str) -> Response:
        parsed = _atoi(fruit_id)
        if parsed is None:
            return _bad_request(request)
        try:
            body = _bind(request, UpdateFruitRequest)
        except ValueError:
            return _bad_request(request)
        errors = validate_struct(body)
        if errors:
            return _bad_request(request, validation_errors=errors)
        try:
            fruit = self._service.update(parsed, body)
        except Exception as err:
            return self._process_error(request, err)
        return _json(200, fruit.to_dict())