"""Logicless HTTP fixtures and their convenience constructors.

A fixture owns a :class:`ResponseDescriptor` and exchanges an incoming request
for a predetermined response. Responses never depend on the request: the
request is only used to run the fixture's assertions, whose diagnostics are
returned next to the response for the server to report.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Protocol, TextIO

from assertions import Assertion, run_assertions
from config import WILDCARD_METHOD
from descriptor import FixtureConfigError, ResponseDescriptor
from request import HTTPRequest
from response import HTTPResponse
from utils import get_content_type, load_file, load_reader


@dataclass(slots=True)
class FixtureResult:
    response: HTTPResponse
    failures: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.failures


class Fixture(Protocol):
    descriptor: ResponseDescriptor

    def run(self, request: HTTPRequest) -> FixtureResult:
        ...


class StatusFixture:
    """Answers with the configured status code and an empty body."""

    def __init__(self, descriptor: ResponseDescriptor) -> None:
        self.descriptor = descriptor

    def run(self, request: HTTPRequest) -> FixtureResult:
        failures = run_assertions(self.descriptor.assertions, request)
        return FixtureResult(response=_render(self.descriptor, b""), failures=failures)


class StaticFixture:
    """Answers every request with the same in-memory body."""

    def __init__(self, descriptor: ResponseDescriptor, body: bytes) -> None:
        self.descriptor = descriptor
        self.body = bytes(body)

    def run(self, request: HTTPRequest) -> FixtureResult:
        failures = run_assertions(self.descriptor.assertions, request)
        return FixtureResult(response=_render(self.descriptor, self.body), failures=failures)


class SequentialFixture:
    """Hands each sub-fixture out once, in order, then repeats the last one forever.

    Only the assertions, status and body of sub-fixtures are used; their
    paths and methods are ignored. The cursor is shared between concurrent
    requests, so selecting a sub-fixture and advancing happen under a lock.
    """

    def __init__(self, descriptor: ResponseDescriptor, fixtures: list[Fixture]) -> None:
        if not fixtures:
            raise FixtureConfigError("a sequence needs at least one fixture")
        self.descriptor = descriptor
        self._fixtures = tuple(fixtures)
        self._next = 0
        self._lock = threading.Lock()

    @property
    def fixtures(self) -> tuple[Fixture, ...]:
        return self._fixtures

    @property
    def position(self) -> int:
        with self._lock:
            return self._next

    @property
    def exhausted(self) -> bool:
        return self.position >= len(self._fixtures)

    def run(self, request: HTTPRequest) -> FixtureResult:
        failures = run_assertions(self.descriptor.assertions, request)
        with self._lock:
            if self._next < len(self._fixtures):
                selected = self._fixtures[self._next]
                self._next += 1
            else:
                selected = self._fixtures[-1]

        result = selected.run(request)
        present = {name.lower() for name in result.response.headers}
        for name, value in self.descriptor.headers.items():
            if name.lower() not in present:
                result.response.headers[name] = value
        return FixtureResult(response=result.response, failures=failures + result.failures)


def _render(descriptor: ResponseDescriptor, body: bytes) -> HTTPResponse:
    return HTTPResponse(
        status_code=descriptor.status_code,
        headers=dict(descriptor.headers),
        body=body,
    )


def _descriptor(
    route: str,
    method: str,
    status_code: int,
    assertions: tuple[Assertion, ...],
    headers: dict[str, str] | None,
) -> ResponseDescriptor:
    return ResponseDescriptor(
        path_prefix=route,
        method=method,
        status_code=status_code,
        assertions=assertions,
        headers=dict(headers or {}),
    )


def ok(
    route: str, body: str, *assertions: Assertion, headers: dict[str, str] | None = None
) -> StaticFixture:
    """Respond to any method at ``route`` with ``body`` and 200 OK."""
    return bytes_ok(route, WILDCARD_METHOD, body.encode("utf-8"), *assertions, headers=headers)


def get_ok(
    route: str, body: str, *assertions: Assertion, headers: dict[str, str] | None = None
) -> StaticFixture:
    """Respond to GET requests at ``route`` with ``body`` and 200 OK."""
    return get_bytes_ok(route, body.encode("utf-8"), *assertions, headers=headers)


def get_bytes_ok(
    route: str, body: bytes, *assertions: Assertion, headers: dict[str, str] | None = None
) -> StaticFixture:
    return bytes_ok(route, "GET", body, *assertions, headers=headers)


def bytes_ok(
    route: str,
    method: str,
    body: bytes,
    *assertions: Assertion,
    headers: dict[str, str] | None = None,
) -> StaticFixture:
    return bytes_fixture(route, method, 200, body, *assertions, headers=headers)


def bytes_fixture(
    route: str,
    method: str,
    status_code: int,
    body: bytes,
    *assertions: Assertion,
    headers: dict[str, str] | None = None,
) -> StaticFixture:
    """Respond to ``method`` requests at ``route`` with ``body`` and ``status_code``."""
    return StaticFixture(_descriptor(route, method, status_code, assertions, headers), body)


def get_file_ok(
    route: str, path: str | Path, *assertions: Assertion, headers: dict[str, str] | None = None
) -> StaticFixture:
    return file_ok(route, "GET", path, *assertions, headers=headers)


def file_ok(
    route: str,
    method: str,
    path: str | Path,
    *assertions: Assertion,
    headers: dict[str, str] | None = None,
) -> StaticFixture:
    return file_fixture(route, method, 200, path, *assertions, headers=headers)


def file_fixture(
    route: str,
    method: str,
    status_code: int,
    path: str | Path,
    *assertions: Assertion,
    headers: dict[str, str] | None = None,
) -> StaticFixture:
    """Respond with the contents of the file at ``path``, read into memory now.

    Raises FixtureLoadError when the file cannot be read.
    """
    file_path = Path(path)
    body = load_file(file_path)
    merged_headers = dict(headers or {})
    if not any(name.lower() == "content-type" for name in merged_headers):
        merged_headers["Content-Type"] = get_content_type(file_path)
    return bytes_fixture(route, method, status_code, body, *assertions, headers=merged_headers)


def reader_fixture(
    route: str,
    method: str,
    status_code: int,
    reader: BinaryIO | TextIO,
    *assertions: Assertion,
    headers: dict[str, str] | None = None,
) -> StaticFixture:
    """Respond with everything ``reader`` yields, read into memory now."""
    return bytes_fixture(route, method, status_code, load_reader(reader), *assertions, headers=headers)


def seq(
    route: str,
    method: str,
    *fixtures: Fixture,
    assertions: tuple[Assertion, ...] = (),
    headers: dict[str, str] | None = None,
) -> SequentialFixture:
    """Serve ``fixtures`` once each in order, then the last one for every later call."""
    return SequentialFixture(_descriptor(route, method, 200, assertions, headers), list(fixtures))


def not_found(
    route: str, method: str, *assertions: Assertion, headers: dict[str, str] | None = None
) -> StatusFixture:
    return response_code(route, method, 404, *assertions, headers=headers)


def response_code(
    route: str,
    method: str,
    status_code: int,
    *assertions: Assertion,
    headers: dict[str, str] | None = None,
) -> StatusFixture:
    """Respond with ``status_code`` and an empty body."""
    return StatusFixture(_descriptor(route, method, status_code, assertions, headers))
