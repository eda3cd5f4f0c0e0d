"""Route table selecting the fixture that answers a request."""

from __future__ import annotations

import threading

from fixtures import Fixture


class Dispatcher:
    """Ordered fixture table matched by path prefix and method.

    The first registered fixture whose path prefix starts the request path and
    whose method is the request method (or ``*``) wins. The table is frozen
    once the owning server starts serving.
    """

    def __init__(self, fixtures: list[Fixture] | tuple[Fixture, ...] = ()) -> None:
        self._fixtures: list[Fixture] = []
        self._frozen = False
        self._lock = threading.Lock()
        for fixture in fixtures:
            self.add(fixture)

    def add(self, fixture: Fixture) -> None:
        with self._lock:
            if self._frozen:
                raise RuntimeError("fixtures cannot be registered after the server started")
            self._fixtures.append(fixture)

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def fixtures(self) -> tuple[Fixture, ...]:
        return tuple(self._fixtures)

    def match(self, method: str, path: str) -> Fixture | None:
        for fixture in self._fixtures:
            if fixture.descriptor.matches(method, path):
                return fixture
        return None

    def __len__(self) -> int:
        return len(self._fixtures)
