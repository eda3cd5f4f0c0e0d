"""Fixed-size worker pool serving accepted fixture-server connections."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

ClientAddress = tuple[str, int]
ConnectionJob = tuple[object, ClientAddress]
ConnectionHandler = Callable[[object, ClientAddress], None]


class ThreadPool:
    """Runs a connection handler on a fixed set of daemon threads fed by a bounded queue."""

    def __init__(
        self,
        worker_count: int,
        queue_size: int,
        handler: ConnectionHandler,
        *,
        name_prefix: str = "fixture-worker",
    ) -> None:
        if worker_count <= 0:
            raise ValueError("worker_count must be positive")
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")

        self._handler = handler
        self._name_prefix = name_prefix
        self._worker_count = worker_count
        self._queue: queue.Queue[ConnectionJob | None] = queue.Queue(maxsize=queue_size)
        self._threads: list[threading.Thread] = []
        self._stopped = threading.Event()
        self._shutdown_lock = threading.Lock()

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def threads(self) -> tuple[threading.Thread, ...]:
        return tuple(self._threads)

    def start(self) -> None:
        for index in range(self._worker_count):
            worker = threading.Thread(
                target=self._worker_loop,
                name=f"{self._name_prefix}-{index}",
                daemon=True,
            )
            self._threads.append(worker)
            worker.start()

    def submit(self, connection: object, address: ClientAddress) -> bool:
        """Queue a connection; False means the pool is stopped or saturated."""
        if self._stopped.is_set():
            return False
        try:
            self._queue.put_nowait((connection, address))
        except queue.Full:
            return False
        return True

    def shutdown(self, *, join_timeout: float = 1.0) -> None:
        with self._shutdown_lock:
            if self._stopped.is_set():
                return
            self._stopped.set()

        for _ in self._threads:
            self._queue.put(None)
        for thread in self._threads:
            thread.join(timeout=join_timeout)

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                connection, address = item
                try:
                    self._handler(connection, address)
                except Exception:
                    logger.exception("Unhandled error while serving connection from %s", address[0])
            finally:
                self._queue.task_done()
