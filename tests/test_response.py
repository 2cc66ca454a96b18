import json
from types import SimpleNamespace

from werkzeug.test import EnvironBuilder
from werkzeug.wrappers import Request

from orchard.domain import CreateFruitRequest
from orchard.response import MIME_APPLICATION_PROBLEM_JSON, Problem, problem_response
from orchard.validate import validate_struct


def _request(path="/api/v1/fruits", query=None):
    return Request(EnvironBuilder(path=path, query_string=query).get_environ())


def _body(response):
    return json.loads(response.get_data(as_text=True))


def test_type_is_request_uri_with_query():
    response = problem_response(_request(query="limit=5"), 400, "Bad Request")
    assert _body(response)["type"] == "/api/v1/fruits?limit=5"


def test_type_without_query_has_no_question_mark():
    response = problem_response(_request(), 404, "entity not found")
    assert _body(response)["type"] == "/api/v1/fruits"


def test_status_and_title_and_omitted_fields():
    response = problem_response(_request(), 409, "entity already exists")
    body = _body(response)
    assert response.status_code == 409
    assert body["status"] == 409
    assert body["title"] == "entity already exists"
    assert set(body) == {"type", "title", "status"}


def test_content_type_is_problem_json():
    response = problem_response(_request(), 500, "boom")
    assert response.mimetype == MIME_APPLICATION_PROBLEM_JSON


def test_detail_and_instance_included():
    response = problem_response(_request(), 400, "Bad Request", detail="more", instance="/x/1")
    body = _body(response)
    assert body["detail"] == "more"
    assert body["instance"] == "/x/1"


def test_validation_errors_rendered():
    errs = validate_struct(CreateFruitRequest(name="ab"))
    response = problem_response(_request(), 400, "Bad Request", validation_errors=errs)
    body = _body(response)
    assert body["errors"] == [
        {"pointer": e.pointer, "detail": e.detail, "code": e.code} for e in errs
    ]
    assert body["errors"][0]["code"] == "INVALID_VALUE"


def test_validation_entry_drops_empty_fields():
    err = SimpleNamespace(pointer="", detail="d", code="c")
    response = problem_response(_request(), 400, "Bad Request", validation_errors=[err])
    assert _body(response)["errors"] == [{"detail": "d", "code": "c"}]


def test_problem_to_dict_full():
    problem = Problem(type="/t", title="T", status=418, detail="d", instance="i", errors=[{"code": "c"}])
    assert problem.to_dict() == {
        "type": "/t",
        "title": "T",
        "status": 418,
        "detail": "d",
        "instance": "i",
        "errors": [{"code": "c"}],
    }