"""HTTP response model and serializer."""

from __future__ import annotations

from dataclasses import dataclass, field
from email.utils import formatdate
from http import HTTPStatus

from config import SERVER_NAME


def reason_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Unknown"


@dataclass(slots=True)
class HTTPResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | str = b""
    reason_phrase: str | None = None
    should_close: bool = False
    head_only: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")

    def head(self) -> bytes:
        """Serialize the status line and headers, including the blank separator line."""
        reason = self.reason_phrase or reason_phrase(self.status_code)
        # framing headers are always computed here, whatever case the caller used
        dropped = {"content-length", "connection"} if self.should_close else {"content-length"}
        normalized_headers = {
            key: value for key, value in self.headers.items() if key.lower() not in dropped
        }
        present = {key.lower() for key in normalized_headers}
        if "date" not in present:
            normalized_headers["Date"] = formatdate(timeval=None, localtime=False, usegmt=True)
        if "server" not in present:
            normalized_headers["Server"] = SERVER_NAME
        if self.body and "content-type" not in present:
            normalized_headers["Content-Type"] = "text/plain; charset=utf-8"
        normalized_headers["Content-Length"] = str(len(self.body))
        if self.should_close:
            normalized_headers["Connection"] = "close"

        header_lines = [f"HTTP/1.1 {self.status_code} {reason}"]
        header_lines.extend(f"{key}: {value}" for key, value in normalized_headers.items())
        return "\r\n".join(header_lines).encode("iso-8859-1") + b"\r\n\r\n"

    def to_bytes(self) -> bytes:
        """Serialize the response into HTTP/1.1 wire format bytes."""
        if self.head_only:
            return self.head()
        return self.head() + bytes(self.body)
