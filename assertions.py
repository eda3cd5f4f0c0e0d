"""Request assertions attached to fixtures.

An assertion is a callable taking the incoming :class:`HTTPRequest` and
returning ``None`` when the request satisfies it, or a human-readable
diagnostic when it does not. Assertions never raise for a mismatch and never
consume the request body for later readers.
"""

from __future__ import annotations

from collections.abc import Callable

from request import HTTPRequest

Assertion = Callable[[HTTPRequest], "str | None"]


def assert_body_contains(text: str) -> Assertion:
    """Require the request body to contain ``text`` (UTF-8 encoded)."""
    return assert_body_contains_bytes(text.encode("utf-8"))


def assert_body_contains_bytes(expected: bytes) -> Assertion:
    """Require the request body to contain the byte sequence ``expected``."""

    def _check(request: HTTPRequest) -> str | None:
        body = request.read_body()
        if expected not in body:
            return f"body did not contain expected bytes {expected!r}; got {_preview(body)}"
        return None

    return _check


def assert_header_matches(name: str, value: str) -> Assertion:
    """Require some value of header ``name`` to equal ``value``, ignoring case."""
    wanted = value.casefold()

    def _check(request: HTTPRequest) -> str | None:
        values = request.header_values(name)
        if any(candidate.casefold() == wanted for candidate in values):
            return None
        return f"could not find headers matching {name}: {value}; got {values}"

    return _check


def assert_url_contains(substr: str) -> Assertion:
    """Require the full request URL to contain ``substr``."""

    def _check(request: HTTPRequest) -> str | None:
        url = request.url
        if substr not in url:
            return f"url {url} did not contain {substr}"
        return None

    return _check


def assert_method(method: str) -> Assertion:
    wanted = method.upper()

    def _check(request: HTTPRequest) -> str | None:
        if request.method != wanted:
            return f"method expected {wanted} got {request.method}"
        return None

    return _check


def assert_query_param(name: str, value: str) -> Assertion:
    def _check(request: HTTPRequest) -> str | None:
        values = request.query_params.get(name, [])
        if value not in values:
            return f"query parameter {name} expected {value} got {values}"
        return None

    return _check


def run_assertions(assertions: tuple[Assertion, ...], request: HTTPRequest) -> list[str]:
    """Run every assertion in order and collect all diagnostics."""
    failures: list[str] = []
    for assertion in assertions:
        try:
            outcome = assertion(request)
        except Exception as exc:
            outcome = f"assertion raised {exc.__class__.__name__}: {exc}"
        if outcome is not None:
            failures.append(outcome)
    return failures


def _preview(body: bytes, limit: int = 64) -> str:
    if len(body) <= limit:
        return repr(body)
    return f"{body[:limit]!r}... ({len(body)} bytes)"
