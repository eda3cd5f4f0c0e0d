"""Immutable response configuration shared by every fixture variant."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from assertions import Assertion
from config import DEFAULT_METHOD, DEFAULT_STATUS, WILDCARD_METHOD


class FixtureConfigError(ValueError):
    """Raised at construction time when a fixture is configured inconsistently."""


def standardize_path(path: str) -> str:
    if not path:
        return "/"
    if path.startswith("/"):
        return path
    return f"/{path}"


@dataclass(frozen=True, slots=True)
class ResponseDescriptor:
    path_prefix: str = "/"
    method: str = DEFAULT_METHOD
    status_code: int = DEFAULT_STATUS
    assertions: tuple[Assertion, ...] = ()
    headers: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        method = self.method.strip().upper()
        if not method:
            raise FixtureConfigError("method cannot be empty")
        if not 100 <= self.status_code <= 599:
            raise FixtureConfigError(f"status code {self.status_code} is outside 100-599")
        # frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, "path_prefix", standardize_path(self.path_prefix))
        object.__setattr__(self, "method", method)
        object.__setattr__(self, "assertions", tuple(self.assertions))
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    def matches(self, method: str, path: str) -> bool:
        """Prefix match on the path, exact or wildcard match on the method."""
        if not path.startswith(self.path_prefix):
            return False
        return self.method == WILDCARD_METHOD or self.method == method.upper()
