# orchard

A small web service for a catalogue of fruits, made of parts that can also be
used on their own:

- `orchard.http_server.HttpServer`: a WSGI application with `/health` and
  `/ready` probes, per-request metrics, static file serving and RFC 9457
  problem-JSON error responses (built by `orchard.response.problem_response`).
  `HttpServer.start("host:port")` serves it with werkzeug's threaded server
  until `shutdown()` is called.
- `orchard.fruit_api.FruitProvider`: the `/fruits` endpoints (list, get,
  create, update, delete), usually registered under `/api/v1`.
- `orchard.service.FruitService`: runs each change in a transaction and
  publishes an event (`fruit.created`, `fruit.updated`, `fruit.deleted`) on the
  topic `example-topic`; `handle_event` stores received events.
- `orchard.database`: `SqliteDatabase`, one shared SQLite connection, plus
  `add_connection_options` and `migrate` for SQL migration files.
- `orchard.repository.FruitRepository`: fruit and event storage with soft
  deletes; `create_schema` creates its tables.
- `orchard.cache`: `NoopCache`, the in-process `MemoryCache` and `RedisCache`;
  `get` raises `CacheMissError` for a missing or expired key (the no-op cache
  returns `""`).
- `orchard.events`: `NoopEngine` and the in-process `LocalEngine`, which keeps
  published events per topic, replays them to late subscribers and redelivers
  an event while its handler raises.
- `orchard.metrics`: counters, gauges and histograms with global labels and
  Prometheus text output (`write_prometheus`), exposed at `/metrics` by
  `orchard.http_server.MetricsProvider`; `orchard.observers.DatabaseObserver`
  exports a database's connection statistics.

## Putting it together

```python
from orchard.database import SqliteDatabase
from orchard.events import LocalEngine
from orchard.fruit_api import FruitProvider
from orchard.http_server import HttpServer, MetricsProvider
from orchard.repository import FruitRepository, create_schema
from orchard.service import FruitService

db = SqliteDatabase("fruits.db")
create_schema(db)

events = LocalEngine()
service = FruitService(FruitRepository(db), events)
service.subscribe(events)

server = HttpServer(static_root="static", swagger_root="openapi")
server.register(MetricsProvider())
server.register_v1(FruitProvider(service))
server.start("127.0.0.1:8080")
```

`HttpServer` is an ordinary WSGI callable, so it can also be run by any WSGI
server or exercised with `werkzeug.test.Client`.

## HTTP endpoints

| Method | Path                  | Result                                              |
|--------|-----------------------|-----------------------------------------------------|
| GET    | `/health`             | 200                                                 |
| GET    | `/ready`              | 200, or 503 after `mark_not_ready()`                |
| GET    | `/metrics`            | metrics text, once `MetricsProvider` is registered  |
| GET    | `/api/v1/fruits`      | JSON list; `limit` (default 10) and `offset` (default 0) |
| GET    | `/api/v1/fruits/<id>` | one fruit, 404 if missing, 400 if `id` is not an integer |
| POST   | `/api/v1/fruits`      | create from `{"name": ...}`, 201                    |
| PUT    | `/api/v1/fruits/<id>` | rename, 200, or 404                                 |
| DELETE | `/api/v1/fruits/<id>` | delete, 200 with an empty body, or 404              |

Fruits are returned as `{"id": ..., "name": ...}`. Names are required and must
be 3 to 20 characters long; otherwise the answer is 400 with an
`application/problem+json` body whose `errors` list gives each failed rule
with a JSON pointer such as `#/CreateFruitRequest/name`.

Passing `health_check_stop=threading.Event()` to `HttpServer` makes `/ready`
report 503 once that event is set.

## Metric names

Labels are sorted by key; global labels are added unless the call gives the
same key itself:

```python
from orchard.metrics import construct_metric, register_global_labels

register_global_labels({"service": "orchard"})
construct_metric("http_requests_total", {"method": "GET"})
# 'http_requests_total{method="GET",service="orchard"}'
```

## SQLite connection strings and migrations

```python
from orchard.database import ConnectionOption, add_connection_options, migrate

add_connection_options(
    "test.db",
    [ConnectionOption(key="mode", value="memory"), ConnectionOption(key="cache", value="shared")],
)
# 'test.db?mode=memory&cache=shared'

migrate("fruits.db", "migrations")  # returns the versions it applied
```

Migration files are named `<version>_<name>.sql`; the statements after a
`-- +goose Up` line (up to `-- +goose Down`) are run, and applied versions are
recorded in the `goose_db_version` table. An in-memory database
(`file::memory:`) is left open after migrating so its data survives.

## What the package does not do

- There is no command-line program: configuration is not read from the
  environment or files, and wiring the parts together is left to the caller
  as shown above.
- Storage is SQLite only; caches are in-process or Redis; the only real event
  engine is in-process. There is no gRPC interface.
- Metrics are kept in process and only rendered as text; nothing is pushed to
  a monitoring system, and there is no tracing or error reporting service.

## Running the tests

Install the `test` extra and run `pytest`.