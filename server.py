"""Fixture HTTP server: listener lifecycle and request-to-fixture glue."""

from __future__ import annotations

import json
import logging
import socket
import threading
import time
from types import TracebackType

from config import (
    ACCEPT_TIMEOUT_SECS,
    HOST,
    LOG_FORMAT,
    MAX_KEEPALIVE_REQUESTS,
    PORT,
    REQUEST_QUEUE_SIZE,
    SHUTDOWN_TIMEOUT_SECS,
    SOCKET_TIMEOUT_SECS,
    WORKER_COUNT,
)
from dispatcher import Dispatcher
from fixtures import Fixture
from reporting import RecordingSink, ResultSink
from request import HTTPRequest, HTTPRequestParseError
from response import HTTPResponse
from socket_handler import (
    HeaderTooLargeError,
    HTTPReadError,
    PayloadTooLargeError,
    SocketTimeoutError,
    read_http_request_message,
    write_http_response_message,
    write_response_body,
    write_response_head,
)
from thread_pool import ThreadPool

logger = logging.getLogger(__name__)

READ_ERROR_STATUS: dict[type[HTTPReadError], int] = {
    PayloadTooLargeError: 413,
    HeaderTooLargeError: 431,
    SocketTimeoutError: 408,
}


class FixtureServer:
    """HTTP server answering requests from an ordered set of fixtures.

    Assertion failures and transport write failures are reported to ``sink``
    and never interrupt serving; the configured response is still sent.

    Usage::

        with FixtureServer(get_ok("/api/example", '{"response":"hello fixture"}')) as server:
            urllib.request.urlopen(f"{server.url}/api/example")
        assert not server.sink.failed
    """

    def __init__(
        self,
        *fixtures: Fixture,
        sink: ResultSink | None = None,
        host: str = HOST,
        port: int = PORT,
        worker_count: int = WORKER_COUNT,
        request_queue_size: int = REQUEST_QUEUE_SIZE,
        socket_timeout_secs: float = SOCKET_TIMEOUT_SECS,
        log_format: str = LOG_FORMAT,
    ) -> None:
        self.dispatcher = Dispatcher(fixtures)
        self.sink: ResultSink = sink if sink is not None else RecordingSink()
        self.host = host
        self.port = port
        self.worker_count = worker_count
        self.request_queue_size = request_queue_size
        self.socket_timeout_secs = socket_timeout_secs
        self.log_format = log_format

        self._server_socket: socket.socket | None = None
        self._pool: ThreadPool | None = None
        self._accept_thread: threading.Thread | None = None
        self._running = False
        self._started = False
        self._lifecycle_lock = threading.Lock()

    def add(self, fixture: Fixture) -> None:
        self.dispatcher.add(fixture)

    @property
    def url(self) -> str:
        if not self._started:
            raise RuntimeError("server has not been started")
        return f"http://{self.host}:{self.port}"

    def start(self) -> str:
        """Bind, start serving in the background and return the base URL."""
        with self._lifecycle_lock:
            if self._started:
                raise RuntimeError("server already started")

            server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                server_socket.bind((self.host, self.port))
                server_socket.listen(128)
                server_socket.settimeout(ACCEPT_TIMEOUT_SECS)
            except OSError:
                server_socket.close()
                raise
            self.port = server_socket.getsockname()[1]
            self._server_socket = server_socket

            self.dispatcher.freeze()
            self._pool = ThreadPool(
                worker_count=self.worker_count,
                queue_size=self.request_queue_size,
                handler=self._handle_client,
            )
            self._pool.start()

            self._running = True
            self._started = True
            self._accept_thread = threading.Thread(
                target=self._accept_loop,
                args=(server_socket,),
                name="fixture-accept",
                daemon=True,
            )
            self._accept_thread.start()

        logger.info("fixture server listening on %s with %d fixtures", self.url, len(self.dispatcher))
        return self.url

    def stop(self) -> None:
        with self._lifecycle_lock:
            if not self._running:
                return
            self._running = False
            if self._server_socket is not None:
                self._server_socket.close()
                self._server_socket = None

        if self._accept_thread is not None:
            self._accept_thread.join(timeout=SHUTDOWN_TIMEOUT_SECS)
            self._accept_thread = None
        if self._pool is not None:
            self._pool.shutdown(join_timeout=SHUTDOWN_TIMEOUT_SECS)
            self._pool = None
        logger.info("fixture server on %s:%s stopped", self.host, self.port)

    close = stop

    def __enter__(self) -> "FixtureServer":
        if not self._started:
            self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.stop()

    def serve(self, request: HTTPRequest) -> HTTPResponse:
        """Exchange one parsed request for the matching fixture's response."""
        fixture = self.dispatcher.match(request.method, request.path)
        if fixture is None:
            logger.debug("no fixture matches %s %s", request.method, request.path)
            return HTTPResponse(status_code=404, body=b"")

        try:
            result = fixture.run(request)
        except Exception as exc:
            logger.exception("Unhandled error in fixture for %s %s", request.method, request.path)
            self._report([f"fixture raised {exc.__class__.__name__}: {exc}"])
            return HTTPResponse(status_code=500, body=b"")

        if result.failures:
            self._report([f"request failed assertion: {failure}" for failure in result.failures])
        return result.response

    def _report(self, messages: list[str]) -> None:
        for message in messages:
            logger.warning("%s", message)
        try:
            for message in messages:
                self.sink.log(message)
        except Exception:
            logger.exception("Result sink raised while logging a failure")
        try:
            self.sink.fail()
        except Exception:
            logger.exception("Result sink raised while marking the test failed")

    def _accept_loop(self, server_socket: socket.socket) -> None:
        while self._running:
            try:
                client_socket, address = server_socket.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            if self._pool is None or not self._pool.submit(client_socket, address):
                self._send_queue_full_response(client_socket)

    def _send_queue_full_response(self, client_socket: socket.socket) -> None:
        with client_socket:
            response = HTTPResponse(status_code=503, body="Service Unavailable", should_close=True)
            try:
                write_http_response_message(client_socket, response)
            except OSError:
                logger.debug("client went away before the 503 was written")

    def _handle_client(self, client_socket: socket.socket, address: tuple[str, int]) -> None:
        with client_socket:
            client_socket.settimeout(self.socket_timeout_secs)
            carry = b""
            for request_index in range(MAX_KEEPALIVE_REQUESTS):
                started_at = time.perf_counter()
                try:
                    raw_request, carry = read_http_request_message(client_socket, carry)
                except HTTPReadError as exc:
                    status = READ_ERROR_STATUS.get(type(exc), 400)
                    self._reject(client_socket, address, status, started_at)
                    return
                except OSError:
                    return

                if not raw_request:
                    return

                try:
                    request = HTTPRequest.from_bytes(raw_request)
                except HTTPRequestParseError as exc:
                    self._reject(client_socket, address, exc.status_code, started_at)
                    return

                response = self.serve(request)
                close_after = not request.keep_alive or request_index + 1 >= MAX_KEEPALIVE_REQUESTS
                response.should_close = close_after
                response.head_only = request.method == "HEAD"

                bytes_out = self._write(client_socket, response)
                self._record_and_log(
                    address=address,
                    method=request.method,
                    path=request.path,
                    status=response.status_code,
                    bytes_in=len(raw_request),
                    bytes_out=bytes_out,
                    started_at=started_at,
                )
                if bytes_out is None or close_after:
                    return

    def _reject(
        self,
        client_socket: socket.socket,
        address: tuple[str, int],
        status: int,
        started_at: float,
    ) -> None:
        response = HTTPResponse(status_code=status, body=b"", should_close=True)
        try:
            bytes_out = write_http_response_message(client_socket, response)
        except OSError:
            bytes_out = None
        self._record_and_log(
            address=address,
            method="-",
            path="-",
            status=status,
            bytes_in=0,
            bytes_out=bytes_out,
            started_at=started_at,
        )

    def _write(self, client_socket: socket.socket, response: HTTPResponse) -> int | None:
        """Write head then body; a failed write is reported and returns None."""
        try:
            bytes_out = write_response_head(client_socket, response)
        except OSError as exc:
            self._report([f"failed to write response head: {exc}"])
            return None
        try:
            bytes_out += write_response_body(client_socket, response)
        except OSError as exc:
            self._report([f"failed to copy response body: {exc}"])
            return None
        return bytes_out

    def _record_and_log(
        self,
        *,
        address: tuple[str, int],
        method: str,
        path: str,
        status: int,
        bytes_in: int,
        bytes_out: int | None,
        started_at: float,
    ) -> None:
        duration_ms = (time.perf_counter() - started_at) * 1000
        event = {
            "client": address[0],
            "method": method,
            "path": path,
            "status": status,
            "bytes_in": bytes_in,
            "bytes_out": bytes_out if bytes_out is not None else "-",
            "latency_ms": round(duration_ms, 3),
        }
        if self.log_format == "json":
            logger.info(json.dumps(event, sort_keys=True))
            return

        logger.info(
            "client=%s method=%s path=%s status=%s bytes_in=%s bytes_out=%s duration_ms=%.2f",
            event["client"],
            event["method"],
            event["path"],
            event["status"],
            event["bytes_in"],
            event["bytes_out"],
            duration_ms,
        )
