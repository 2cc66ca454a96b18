import json
import threading
import time

import pytest
from werkzeug.exceptions import Conflict
from werkzeug.http import HTTP_STATUS_CODES
from werkzeug.test import Client
from werkzeug.wrappers import Response

from orchard import metrics
from orchard.http_server import HttpServer, MetricsProvider
from orchard.response import MIME_APPLICATION_PROBLEM_JSON


class _Provider:
    def __init__(self, method, path, handler):
        self.method, self.path, self.handler = method, path, handler

    def register(self, group):
        group.add(self.method, self.path, self.handler)


@pytest.fixture(autouse=True)
def _no_global_labels():
    metrics.clear_global_labels()
    yield
    metrics.clear_global_labels()


def _body(response):
    return json.loads(response.get_data(as_text=True))


def test_health_returns_empty_ok():
    response = Client(HttpServer()).get("/health")
    assert response.status_code == 200
    assert response.get_data() == b""


def test_ready_toggles_after_mark_not_ready():
    server = HttpServer()
    client = Client(server)
    assert client.get("/ready").status_code == 200
    server.mark_not_ready()
    assert client.get("/ready").status_code == 503


def test_health_check_stop_event_disables_readiness():
    stop = threading.Event()
    client = Client(HttpServer(health_check_stop=stop))
    assert client.get("/ready").status_code == 200
    stop.set()
    deadline = time.monotonic() + 2.0
    status = 200
    while time.monotonic() < deadline:
        status = client.get("/ready").status_code
        if status == 503:
            break
        time.sleep(0.01)
    assert status == 503


def test_unknown_route_returns_problem():
    response = Client(HttpServer()).get("/nope?x=1")
    body = _body(response)
    assert response.status_code == 404
    assert response.mimetype == MIME_APPLICATION_PROBLEM_JSON
    assert body["title"] == HTTP_STATUS_CODES[404]
    assert body["type"] == "/nope?x=1"


def test_method_not_allowed():
    response = Client(HttpServer()).post("/health")
    assert response.status_code == 405
    assert "GET" in response.headers["Allow"]


def test_exception_in_handler_is_internal_error():
    def explode(request):
        raise RuntimeError("kaboom")

    server = HttpServer()
    server.register(_Provider("GET", "/explode", explode))
    before = metrics.counter("errors", {"type": "http_api_panic"}).value
    response = Client(server).get("/explode")
    assert response.status_code == 500
    assert _body(response)["title"] == "Internal HTTPServer Error"
    assert metrics.counter("errors", {"type": "http_api_panic"}).value == before + 1


def test_http_exception_in_handler_uses_its_status():
    def conflict(request):
        raise Conflict()

    server = HttpServer()
    server.register(_Provider("GET", "/conflict", conflict))
    before = metrics.counter("errors", {"type": "http_api_error"}).value
    response = Client(server).get("/conflict")
    assert response.status_code == 409
    assert _body(response)["title"] == HTTP_STATUS_CODES[409]
    assert metrics.counter("errors", {"type": "http_api_error"}).value == before + 1


def test_register_v1_uses_prefix():
    server = HttpServer()
    server.register_v1(_Provider("GET", "/ping", lambda request: Response("pong")))
    client = Client(server)
    assert client.get("/api/v1/ping").get_data() == b"pong"
    assert client.get("/ping").status_code == 404


def test_path_parameters_are_passed():
    server = HttpServer()
    server.register(_Provider("GET", "/items/<item>", lambda request, item: Response(item)))
    assert Client(server).get("/items/abc").get_data() == b"abc"


def test_duplicate_route_rejected():
    server = HttpServer()
    server.register(_Provider("GET", "/dup", lambda request: Response()))
    with pytest.raises(ValueError):
        server.register(_Provider("GET", "/dup", lambda request: Response()))


def test_request_and_response_metrics():
    server = HttpServer()
    request_labels = {"method": "GET", "path": "/health"}
    response_labels = {**request_labels, "status": "200", "is_error": "no"}
    requests_before = metrics.counter("application_http_requests_count", request_labels).value
    responses_before = metrics.counter("application_http_responses_count", response_labels).value
    latency_before = metrics.histogram("application_http_latency_sec", response_labels).count
    Client(server).get("/health")
    assert metrics.counter("application_http_requests_count", request_labels).value == requests_before + 1
    assert metrics.counter("application_http_responses_count", response_labels).value == responses_before + 1
    assert metrics.histogram("application_http_latency_sec", response_labels).count == latency_before + 1


def test_metrics_provider_exposes_registry():
    metrics.gauge("orchard_test_gauge").set(1)
    server = HttpServer()
    server.register(MetricsProvider())
    response = Client(server).get("/metrics")
    assert response.status_code == 200
    assert metrics.construct_metric("orchard_test_gauge", None) in response.get_data(as_text=True)


def test_metrics_provider_custom_renderer():
    server = HttpServer()
    server.register(MetricsProvider(render=lambda: "custom"))
    assert Client(server).get("/metrics").get_data(as_text=True) == "custom"


def test_static_files_served(tmp_path):
    static = tmp_path / "static"
    static.mkdir()
    (static / "index.html").write_text("<h1>home</h1>")
    (static / "app.css").write_text("body{}")
    client = Client(HttpServer(static_root=str(static)))
    assert client.get("/").get_data(as_text=True) == "<h1>home</h1>"
    assert client.get("/app.css").get_data(as_text=True) == "body{}"
    assert client.get("/missing.css").status_code == 404


def test_swagger_files_served_under_api_v1(tmp_path):
    v1 = tmp_path / "openapi" / "v1"
    v1.mkdir(parents=True)
    (v1 / "spec.yaml").write_text("openapi: 3.0.0")
    client = Client(HttpServer(swagger_root=str(tmp_path / "openapi")))
    assert client.get("/api/v1/spec.yaml").get_data(as_text=True) == "openapi: 3.0.0"
    assert client.get("/api/v1/other.yaml").status_code == 404


def test_start_rejects_invalid_port():
    with pytest.raises(ValueError):
        HttpServer().start("localhost:notaport")


def test_start_after_shutdown_fails():
    server = HttpServer()
    server.shutdown()
    with pytest.raises(RuntimeError):
        server.start("127.0.0.1:0")