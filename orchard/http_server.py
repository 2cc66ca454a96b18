"""WSGI application with route groups, health checks, metrics and static files."""

from __future__ import annotations

import logging
import threading
import time
import traceback
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

from werkzeug.exceptions import HTTPException, MethodNotAllowed, NotFound
from werkzeug.http import HTTP_STATUS_CODES
from werkzeug.routing import Map, RequestRedirect, Rule
from werkzeug.security import safe_join
from werkzeug.serving import BaseWSGIServer, WSGIRequestHandler, make_server
from werkzeug.utils import send_file
from werkzeug.wrappers import Request, Response

from orchard import metrics
from orchard.response import problem_response

Handler = Callable[..., Response]
Duration = Union[float, int, timedelta]

API_V1_PREFIX = "/api/v1"
_INTERNAL_ERROR_TITLE = "Internal HTTPServer Error"
_PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _seconds(value: Optional[Duration]) -> float:
    if value is None:
        return 0.0
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port_text = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address!r}")
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"invalid port in address {address!r}") from None
    return host.strip("[]") or "0.0.0.0", port


def _handler_class(timeout: float) -> type[WSGIRequestHandler]:
    if not timeout:
        return WSGIRequestHandler
    return type("TimedRequestHandler", (WSGIRequestHandler,), {"timeout": timeout})


def _raiser(exc: Exception) -> Handler:
    def handler(request: Request) -> Response:
        raise exc

    return handler


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


class RouteGroup:
    """Routes sharing a path prefix."""

    def __init__(self, server: "HttpServer", prefix: str) -> None:
        self._server = server
        self.prefix = prefix

    def add(self, method: str, path: str, handler: Handler) -> None:
        """Route ``method`` on ``prefix + path``; path parameters use ``<name>``."""
        self._server._add_route(method.upper(), self.prefix + path or "/", handler)


class HttpServer:
    """WSGI application serving registered providers under ``/`` and ``/api/v1``."""

    def __init__(
        self,
        *,
        logger: Optional[logging.Logger] = None,
        read_timeout: Optional[Duration] = None,
        write_timeout: Optional[Duration] = None,
        static_root: str = "",
        swagger_root: str = "",
        health_check_stop: Optional[threading.Event] = None,
    ) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self.read_timeout = _seconds(read_timeout)
        self.write_timeout = _seconds(write_timeout)
        self._url_map = Map(strict_slashes=False)
        self._handlers: dict[str, Handler] = {}
        self._lock = threading.Lock()
        self._server: Optional[BaseWSGIServer] = None
        self._closed = False
        self._ready = threading.Event()

        mounts: list[tuple[str, Path]] = []
        if static_root:
            mounts.append(("/", Path(static_root)))
        if swagger_root:
            mounts.append((API_V1_PREFIX, Path(swagger_root) / "v1"))
        self._static_mounts = sorted(mounts, key=lambda mount: len(mount[0]), reverse=True)

        self.root = RouteGroup(self, "")
        self.root.add("GET", "/health", self._health)
        self.root.add("GET", "/ready", self._ready_check)
        self._ready.set()
        self.v1 = RouteGroup(self, API_V1_PREFIX)

        if health_check_stop is not None:
            threading.Thread(
                target=self._watch_health, args=(health_check_stop,), daemon=True
            ).start()

    def _watch_health(self, stop: threading.Event) -> None:
        stop.wait()
        self.mark_not_ready()

    def _add_route(self, method: str, path: str, handler: Handler) -> None:
        endpoint = f"{method} {path}"
        with self._lock:
            if endpoint in self._handlers:
                raise ValueError(f"route already registered: {endpoint}")
            self._handlers[endpoint] = handler
            self._url_map.add(Rule(path, methods=[method], endpoint=endpoint))

    def register(self, *providers: Any) -> None:
        """Let providers add their routes under ``/``."""
        for provider in providers:
            provider.register(self.root)

    def register_v1(self, *providers: Any) -> None:
        """Let providers add their routes under ``/api/v1``."""
        for provider in providers:
            provider.register(self.v1)

    def mark_not_ready(self) -> None:
        """Make the readiness probe report 503 from now on."""
        self._ready.clear()

    def start(self, address: str) -> None:
        """Serve on ``host:port`` until :meth:`shutdown` is called."""
        host, port = _split_address(address)
        timeout = self.read_timeout or self.write_timeout
        server = make_server(host, port, self, threaded=True, request_handler=_handler_class(timeout))
        with self._lock:
            if self._closed:
                server.server_close()
                raise RuntimeError("http: server closed")
            self._server = server
        try:
            server.serve_forever()
        finally:
            server.server_close()

    def shutdown(self) -> None:
        """Stop serving; in-flight requests are allowed to finish."""
        with self._lock:
            self._closed = True
            server, self._server = self._server, None
        if server is not None:
            server.shutdown()

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        request = Request(environ)
        response = self._serve(request)
        return response(environ, start_response)

    def _health(self, request: Request) -> Response:
        return Response(status=200)

    def _ready_check(self, request: Request) -> Response:
        return Response(status=200 if self._ready.is_set() else 503)

    def _static_file(self, path: str) -> Optional[tuple[str, Path]]:
        for prefix, root in self._static_mounts:
            if prefix == "/":
                rel = path.lstrip("/")
                route = "/*"
            elif path == prefix or path.startswith(prefix + "/"):
                rel = path[len(prefix):].lstrip("/")
                route = prefix + "/*"
            else:
                continue
            target = safe_join(str(root), rel) if rel else str(root)
            if target is None:
                return None
            candidate = Path(target)
            if candidate.is_dir():
                candidate = candidate / "index.html"
            return (route, candidate) if candidate.is_file() else None
        return None

    def _dispatch(self, request: Request) -> tuple[str, Handler, dict[str, Any]]:
        adapter = self._url_map.bind_to_environ(request.environ)
        try:
            rule, values = adapter.match(return_rule=True)
        except NotFound as exc:
            if request.method in ("GET", "HEAD"):
                found = self._static_file(request.path)
                if found is not None:
                    route, file_path = found
                    return route, lambda req: send_file(file_path, req.environ), {}
            return "", _raiser(exc), {}
        except RequestRedirect as exc:
            return "", lambda req: exc.get_response(req.environ), {}
        except HTTPException as exc:
            return "", _raiser(exc), {}
        return rule.rule, self._handlers[rule.endpoint], values

    def _serve(self, request: Request) -> Response:
        started = time.perf_counter()
        route, handler, values = self._dispatch(request)
        labels = {"method": request.method, "path": route}
        metrics.counter("application_http_requests_count", labels).inc()

        failed = False
        try:
            response = handler(request, **values)
        except HTTPException as exc:
            failed = True
            response = self._error_response(request, exc)
        except Exception as exc:
            failed = True
            response = self._error_response(request, exc, stack=traceback.format_exc())
        else:
            self._logger.info(
                "request status=%d method=%s uri=%s",
                response.status_code,
                request.method,
                request.full_path.removesuffix("?"),
            )

        duration = time.perf_counter() - started
        response_labels = {
            **labels,
            "status": str(response.status_code),
            "is_error": _yes_no(failed),
        }
        metrics.counter("application_http_responses_count", response_labels).inc()
        metrics.histogram("application_http_latency_sec", response_labels).update(duration)
        return response

    def _error_response(
        self, request: Request, err: Exception, stack: Optional[str] = None
    ) -> Response:
        status, title = 500, _INTERNAL_ERROR_TITLE
        log_message, error_type = "http api error", "http_api_error"
        if stack is not None:
            log_message, error_type = "http api panic", "http_api_panic"
        elif isinstance(err, HTTPException) and err.code is not None:
            status = err.code
            title = HTTP_STATUS_CODES.get(status, "")

        metrics.counter("errors", {"type": error_type}).inc()
        self._logger.error(
            "%s: error=%s status=%d method=%s uri=%s%s",
            log_message,
            err,
            status,
            request.method,
            request.full_path.removesuffix("?"),
            f"\n{stack}" if stack else "",
        )

        response = problem_response(request, status, title)
        if isinstance(err, MethodNotAllowed) and err.valid_methods:
            response.headers["Allow"] = ", ".join(err.valid_methods)
        return response


class MetricsProvider:
    """Exposes the metrics registry at ``/metrics``."""

    def __init__(self, render: Callable[[], str] = metrics.write_prometheus) -> None:
        self._render = render

    def register(self, group: RouteGroup) -> None:
        group.add("GET", "/metrics", self._serve)

    def _serve(self, request: Request) -> Response:
        return Response(self._render(), status=200, content_type=_PROMETHEUS_CONTENT_TYPE)