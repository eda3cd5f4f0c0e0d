"""Socket-level integration tests for the fixture server."""

import socket
import threading
import time
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor

from assertions import assert_body_contains, assert_header_matches, assert_url_contains
from fixtures import get_ok, ok, response_code, seq
from reporting import RecordingSink
from request import HTTPRequest
from server import FixtureServer

_OPENER = urllib.request.build_opener(urllib.request.ProxyHandler({}))


def _fetch(
    method: str,
    url: str,
    body: bytes | None = None,
    headers: dict[str, str] | None = None,
) -> tuple[int, bytes]:
    request = urllib.request.Request(url, data=body, method=method, headers=headers or {})
    try:
        with _OPENER.open(request, timeout=2.0) as response:
            return response.status, response.read()
    except urllib.error.HTTPError as exc:
        with exc:
            return exc.code, exc.read()


def _send_raw(host: str, port: int, payload: bytes) -> bytes:
    with socket.create_connection((host, port), timeout=2.0) as client:
        client.sendall(payload)
        chunks = bytearray()
        while True:
            chunk = client.recv(8192)
            if not chunk:
                return bytes(chunks)
            chunks.extend(chunk)


def _recv_http_response(sock: socket.socket) -> bytes:
    buffer = bytearray()
    while b"\r\n\r\n" not in buffer:
        chunk = sock.recv(4096)
        if not chunk:
            break
        buffer.extend(chunk)

    header_end = buffer.find(b"\r\n\r\n")
    if header_end == -1:
        return bytes(buffer)

    header_block = bytes(buffer[:header_end])
    body = bytes(buffer[header_end + 4 :])
    content_length = 0
    for line in header_block.split(b"\r\n")[1:]:
        name, value = line.split(b":", 1)
        if name.strip().lower() == b"content-length":
            content_length = int(value.strip())
            break

    while len(body) < content_length:
        chunk = sock.recv(4096)
        if not chunk:
            break
        body += chunk

    return header_block + b"\r\n\r\n" + body


def test_fixture_response_and_404_for_unknown_path() -> None:
    sink = RecordingSink()
    with FixtureServer(get_ok("/api/example", '{"response":"hello fixture"}'), sink=sink) as server:
        status, body = _fetch("GET", f"{server.url}/api/example")
        missing_status, missing_body = _fetch("GET", f"{server.url}/other")

    assert (status, body) == (200, b'{"response":"hello fixture"}')
    assert (missing_status, missing_body) == (404, b"")
    assert not sink.failed


def test_sub_paths_match_prefix_fixture() -> None:
    with FixtureServer(get_ok("/path", "hello world")) as server:
        status, body = _fetch("GET", f"{server.url}/path/subpath")

    assert (status, body) == (200, b"hello world")


def test_percent_encoded_path_matches_decoded_route() -> None:
    with FixtureServer(get_ok("/a b", "space")) as server:
        response = _send_raw(
            server.host,
            server.port,
            b"GET /a%20b HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n",
        )

    assert response.startswith(b"HTTP/1.1 200 OK\r\n")
    assert response.endswith(b"\r\n\r\nspace")


def test_lowercase_fixture_framing_headers_are_not_duplicated() -> None:
    fixture = get_ok("/x", "hi", headers={"content-length": "99", "content-type": "application/json"})
    with FixtureServer(fixture) as server:
        response = _send_raw(
            server.host,
            server.port,
            b"GET /x HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n",
        )

    head, _, body = response.partition(b"\r\n\r\n")
    assert head.lower().count(b"content-length:") == 1
    assert head.lower().count(b"content-type:") == 1
    assert b"Content-Length: 2" in head
    assert body == b"hi"


def test_sequence_over_the_wire() -> None:
    fixture = seq(
        "/path",
        "GET",
        get_ok("", "body1"),
        get_ok("", "body2"),
        get_ok("", "body3"),
        get_ok("", "body4"),
    )
    with FixtureServer(fixture) as server:
        bodies = [_fetch("GET", f"{server.url}/path")[1] for _ in range(9)]

    assert bodies == [b"body1", b"body2", b"body3", b"body4"] + [b"body4"] * 5


def test_concurrent_requests_claim_distinct_sequence_slots() -> None:
    count = 20
    fixture = seq("/slot", "*", *(get_ok("", f"slot-{index}") for index in range(count)))

    with FixtureServer(fixture) as server:
        with ThreadPoolExecutor(max_workers=count) as executor:
            futures = [executor.submit(_fetch, "GET", f"{server.url}/slot") for _ in range(count)]
            bodies = [future.result()[1] for future in futures]

    assert sorted(bodies) == sorted(f"slot-{index}".encode() for index in range(count))


def test_assertion_failure_is_reported_and_response_completes() -> None:
    sink = RecordingSink()
    fixture = ok("/path/another", "response body", assert_body_contains("quick brown fox"))
    with FixtureServer(fixture, sink=sink) as server:
        status, body = _fetch("POST", f"{server.url}/path/another", body=b"something else even")

    assert (status, body) == (200, b"response body")
    assert sink.failed
    assert any("body did not contain" in message for message in sink.messages)


def test_assertions_see_headers_body_and_url() -> None:
    sink = RecordingSink()
    fixture = ok(
        "/submit",
        "accepted",
        assert_body_contains("quick brown fox"),
        assert_body_contains("jumped"),
        assert_header_matches("Content-Type", "application/json"),
        assert_url_contains("/submit?draft=1"),
    )
    with FixtureServer(fixture, sink=sink) as server:
        status, body = _fetch(
            "PUT",
            f"{server.url}/submit?draft=1",
            body=b'{"text":"the quick brown fox jumped"}',
            headers={"Content-Type": "APPLICATION/JSON"},
        )

    assert (status, body) == (200, b"accepted")
    assert sink.messages == []
    assert not sink.failed


def test_failures_on_one_request_do_not_hide_others() -> None:
    sink = RecordingSink()
    with FixtureServer(
        get_ok("/strict", "strict", assert_header_matches("X-Token", "abc")),
        get_ok("/open", "open"),
        sink=sink,
    ) as server:
        strict = _fetch("GET", f"{server.url}/strict")
        opened = _fetch("GET", f"{server.url}/open")

    assert strict == (200, b"strict")
    assert opened == (200, b"open")
    assert len(sink.messages) == 1


def test_status_only_fixture_and_method_mismatch() -> None:
    with FixtureServer(response_code("/created", "POST", 201)) as server:
        created = _fetch("POST", f"{server.url}/created", body=b"")
        wrong_method = _fetch("GET", f"{server.url}/created")

    assert created == (201, b"")
    assert wrong_method == (404, b"")


def test_head_request_gets_headers_only() -> None:
    with FixtureServer(ok("/doc", "hello")) as server:
        response = _send_raw(
            server.host,
            server.port,
            b"HEAD /doc HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n",
        )

    assert response.startswith(b"HTTP/1.1 200 OK\r\n")
    assert b"Content-Length: 5\r\n" in response
    assert response.endswith(b"\r\n\r\n")


def test_keep_alive_serves_multiple_requests_on_one_socket() -> None:
    fixture = seq("/path", "GET", get_ok("", "first"), get_ok("", "second"))
    with FixtureServer(fixture) as server:
        with socket.create_connection((server.host, server.port), timeout=2.0) as client:
            client.sendall(b"GET /path HTTP/1.1\r\nHost: localhost\r\n\r\n")
            first = _recv_http_response(client)
            client.sendall(b"GET /path HTTP/1.1\r\nHost: localhost\r\n\r\n")
            second = _recv_http_response(client)

    assert first.endswith(b"\r\n\r\nfirst")
    assert second.endswith(b"\r\n\r\nsecond")


def test_malformed_request_returns_400() -> None:
    with FixtureServer(ok("", "anything")) as server:
        response = _send_raw(server.host, server.port, b"BROKEN\r\n\r\n")

    assert response.startswith(b"HTTP/1.1 400 Bad Request")


def test_server_returns_503_when_queue_is_saturated() -> None:
    release = threading.Event()

    class SlowFixtureServer(FixtureServer):
        def _handle_client(self, client_socket, address) -> None:
            release.wait(timeout=2.0)
            super()._handle_client(client_socket, address)

    server = SlowFixtureServer(ok("", "ok"), worker_count=1, request_queue_size=1)
    server.start()
    try:
        with ThreadPoolExecutor(max_workers=4) as executor:
            futures = [
                executor.submit(
                    _send_raw,
                    server.host,
                    server.port,
                    b"GET / HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n",
                )
                for _ in range(4)
            ]
            time.sleep(0.3)
            release.set()
            responses = [future.result() for future in futures]
    finally:
        server.stop()

    assert any(response.startswith(b"HTTP/1.1 503 Service Unavailable") for response in responses)


def test_body_write_failure_is_reported_not_raised() -> None:
    sink = RecordingSink()

    class _ClosedSocket:
        def __init__(self) -> None:
            self.calls = 0

        def sendall(self, _data: bytes) -> None:
            self.calls += 1
            if self.calls > 1:
                raise BrokenPipeError("client went away")

    server = FixtureServer(sink=sink)
    response = get_ok("/", "payload").run(HTTPRequest.build("GET", "http://localhost/")).response

    assert server._write(_ClosedSocket(), response) is None  # type: ignore[arg-type]
    assert sink.failed
    assert sink.messages == ["failed to copy response body: client went away"]


def test_fixture_server_pytest_fixture(fixture_server) -> None:
    server = fixture_server(get_ok("/ping", "pong"))

    assert _fetch("GET", f"{server.url}/ping") == (200, b"pong")
