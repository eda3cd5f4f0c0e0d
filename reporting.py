"""Test-result sinks that receive per-request failures from a fixture server."""

from __future__ import annotations

import threading
from typing import Protocol


class ResultSink(Protocol):
    def fail(self) -> None:
        ...

    def log(self, message: str) -> None:
        ...


class RecordingSink:
    """Thread-safe sink remembering whether a failure happened and every logged line."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._failed = False
        self._messages: list[str] = []

    def fail(self) -> None:
        with self._lock:
            self._failed = True

    def log(self, message: str) -> None:
        with self._lock:
            self._messages.append(message)

    @property
    def failed(self) -> bool:
        with self._lock:
            return self._failed

    @property
    def messages(self) -> list[str]:
        with self._lock:
            return list(self._messages)

    def reset(self) -> None:
        with self._lock:
            self._failed = False
            self._messages.clear()
