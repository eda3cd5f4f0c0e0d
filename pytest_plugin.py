"""pytest integration: a fixture-server factory that fails the test on recorded failures."""

from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest

from fixtures import Fixture
from reporting import RecordingSink
from server import FixtureServer

ServerFactory = Callable[..., FixtureServer]


@pytest.fixture()
def fixture_server() -> Iterator[ServerFactory]:
    """Start FixtureServers for the current test and check them at teardown.

    Every server built by the factory shares one sink; if any request failed an
    assertion, or its response could not be written, the test fails after the
    servers are stopped.
    """
    sink = RecordingSink()
    servers: list[FixtureServer] = []

    def _factory(*fixtures: Fixture, **kwargs: object) -> FixtureServer:
        server = FixtureServer(*fixtures, sink=sink, **kwargs)
        servers.append(server)
        server.start()
        return server

    yield _factory

    for server in servers:
        server.stop()
    if sink.failed:
        pytest.fail(
            "fixture server recorded failures:\n" + "\n".join(sink.messages),
            pytrace=False,
        )
