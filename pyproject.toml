[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "orchard"
version = "0.1.0"
description = "A fruit catalogue web service: WSGI HTTP API, SQLite storage, caches, in-process events and Prometheus-style metrics."
requires-python = ">=3.10"
keywords = ["wsgi", "rest", "api", "sqlite", "migrations", "metrics", "prometheus", "events", "cache", "redis"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
]
dependencies = [
    "werkzeug>=3.0",
    "redis>=5.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
]

[tool.hatch.build.targets.wheel]
packages = ["orchard"]

[tool.hatch.build.targets.sdist]
include = ["orchard", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
