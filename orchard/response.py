"""Problem details (RFC 9457) error responses."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from werkzeug.wrappers import Request, Response

MIME_APPLICATION_PROBLEM_JSON = "application/problem+json"


@dataclass
class Problem:
    """JSON error document; title and status are always present."""

    type: str
    title: str
    status: int
    detail: str = ""
    instance: str = ""
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        document: dict[str, Any] = {"type": self.type, "title": self.title, "status": self.status}
        if self.detail:
            document["detail"] = self.detail
        if self.instance:
            document["instance"] = self.instance
        if self.errors:
            document["errors"] = list(self.errors)
        return document


def _request_uri(request: Request) -> str:
    return request.full_path.removesuffix("?")


def _validation_entry(err: Any) -> dict[str, str]:
    entry = {"pointer": err.pointer, "detail": err.detail, "code": err.code}
    return {key: value for key, value in entry.items() if value}


def problem_response(
    request: Request,
    status: int,
    title: str,
    *,
    detail: str = "",
    instance: str = "",
    validation_errors: Optional[Iterable[Any]] = None,
) -> Response:
    """Build a problem+json response; ``type`` is the request URI.

    Each validation error must provide ``pointer``, ``detail`` and ``code``.
    """
    problem = Problem(
        type=_request_uri(request),
        title=title,
        status=status,
        detail=detail,
        instance=instance,
        errors=[_validation_entry(err) for err in validation_errors or ()],
    )
    body = json.dumps(problem.to_dict()) + "\n"
    return Response(body, status=problem.status, content_type=MIME_APPLICATION_PROBLEM_JSON)