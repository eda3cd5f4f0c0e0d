"""HTTP request model, parser and replayable body."""

from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from urllib.parse import parse_qs, unquote, urlsplit

from config import MAX_BODY_BYTES, MAX_TARGET_LENGTH

ALLOWED_HTTP_VERSIONS = {"HTTP/1.1", "HTTP/1.0"}
METHOD_TOKEN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class HTTPRequestParseError(ValueError):
    """Request parse error carrying an HTTP status code."""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class HTTPRequest:
    method: str
    path: str
    http_version: str = "HTTP/1.1"
    raw_target: str = "/"
    headers: dict[str, list[str]] = field(default_factory=dict)
    body: bytes = b""
    query_params: dict[str, list[str]] = field(default_factory=dict)
    keep_alive: bool = False
    body_stream: io.BytesIO = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.body_stream = io.BytesIO(self.body)

    @classmethod
    def build(
        cls,
        method: str,
        url: str,
        *,
        body: bytes | str = b"",
        headers: dict[str, str | list[str]] | None = None,
    ) -> "HTTPRequest":
        """Create a request the way a client would address it, without the wire."""
        if isinstance(body, str):
            body = body.encode("utf-8")
        parts = urlsplit(url)
        target = parts.path or "/"
        if parts.query:
            target = f"{target}?{parts.query}"

        normalized_headers: dict[str, list[str]] = {}
        if parts.netloc:
            normalized_headers["host"] = [parts.netloc]
        for name, value in (headers or {}).items():
            values = [value] if isinstance(value, str) else list(value)
            normalized_headers.setdefault(name.strip().lower(), []).extend(values)

        return cls(
            method=method.upper(),
            path=unquote(parts.path) or "/",
            raw_target=target,
            headers=normalized_headers,
            body=body,
            query_params=parse_qs(parts.query, keep_blank_values=True),
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> "HTTPRequest":
        """Parse raw HTTP request bytes into a structured request object."""
        try:
            header_bytes, body = raw.split(b"\r\n\r\n", 1)
        except ValueError as exc:
            raise HTTPRequestParseError("Missing CRLF CRLF request separator") from exc

        lines = header_bytes.decode("iso-8859-1").split("\r\n")
        if not lines or not lines[0]:
            raise HTTPRequestParseError("Missing request line")

        first_line_parts = lines[0].split(" ")
        if len(first_line_parts) != 3:
            raise HTTPRequestParseError("Invalid request line")

        method, target, http_version = first_line_parts
        if not method or not target or not http_version:
            raise HTTPRequestParseError("Request line contains empty tokens")

        if not METHOD_TOKEN.match(method):
            raise HTTPRequestParseError("Invalid method token")

        if http_version not in ALLOWED_HTTP_VERSIONS:
            raise HTTPRequestParseError("Unsupported HTTP version", status_code=505)

        if len(target) > MAX_TARGET_LENGTH:
            raise HTTPRequestParseError("Request target too long", status_code=414)

        parsed_target = urlsplit(target)
        path = unquote(parsed_target.path) or "/"
        query_params = parse_qs(parsed_target.query, keep_blank_values=True)

        headers: dict[str, list[str]] = {}
        for line in lines[1:]:
            if not line:
                continue
            if ":" not in line:
                raise HTTPRequestParseError("Malformed header line")
            name, value = line.split(":", 1)
            header_name = name.strip().lower()
            if not header_name:
                raise HTTPRequestParseError("Header name cannot be empty")
            headers.setdefault(header_name, []).append(value.strip())

        if http_version == "HTTP/1.1" and "host" not in headers:
            raise HTTPRequestParseError("Host header required for HTTP/1.1")

        transfer_encoding = ",".join(headers.get("transfer-encoding", []))
        has_chunked_transfer = "chunked" in transfer_encoding.lower()
        has_content_length = "content-length" in headers
        if has_chunked_transfer and has_content_length:
            raise HTTPRequestParseError("Content-Length cannot be combined with chunked transfer")

        if has_chunked_transfer:
            body = _decode_chunked_body(body)
        elif has_content_length:
            content_length_value = headers["content-length"][0]
            try:
                expected_body_length = int(content_length_value)
            except ValueError as exc:
                raise HTTPRequestParseError("Invalid Content-Length") from exc

            if expected_body_length < 0:
                raise HTTPRequestParseError("Negative Content-Length is invalid")

            if len(body) != expected_body_length:
                raise HTTPRequestParseError("Body length does not match Content-Length")

        if len(body) > MAX_BODY_BYTES:
            raise HTTPRequestParseError("Decoded body exceeded MAX_BODY_BYTES", status_code=413)

        connection_header = ",".join(headers.get("connection", []))
        keep_alive = _is_keep_alive(http_version, connection_header)

        return cls(
            method=method.upper(),
            path=path,
            raw_target=target,
            http_version=http_version,
            headers=headers,
            body=body,
            query_params=query_params,
            keep_alive=keep_alive,
        )

    def header(self, name: str) -> str | None:
        values = self.headers.get(name.lower())
        if not values:
            return None
        return values[0]

    def header_values(self, name: str) -> list[str]:
        return list(self.headers.get(name.lower(), []))

    @property
    def url(self) -> str:
        """Full request URL, rebuilt from the Host header when the target is origin-form."""
        if urlsplit(self.raw_target).scheme:
            return self.raw_target
        host = self.header("host")
        if host is None:
            return self.raw_target
        return f"http://{host}{self.raw_target}"

    def read_body(self) -> bytes:
        """Return the whole body and rewind the stream so later readers see the same bytes."""
        self.body_stream = io.BytesIO(self.body)
        return self.body


def _is_keep_alive(http_version: str, connection_header: str) -> bool:
    token = connection_header.lower()
    if http_version == "HTTP/1.1":
        return "close" not in token
    if http_version == "HTTP/1.0":
        return "keep-alive" in token
    return False


def _decode_chunked_body(encoded_body: bytes) -> bytes:
    position = 0
    decoded = bytearray()

    while True:
        line_end = encoded_body.find(b"\r\n", position)
        if line_end == -1:
            raise HTTPRequestParseError("Incomplete chunk size line")

        size_token = encoded_body[position:line_end].split(b";", 1)[0].strip()
        if not size_token:
            raise HTTPRequestParseError("Missing chunk size")
        try:
            chunk_size = int(size_token, 16)
        except ValueError as exc:
            raise HTTPRequestParseError("Malformed chunk size") from exc
        position = line_end + 2

        if chunk_size == 0:
            # Trailer fields are read past and dropped.
            while True:
                trailer_end = encoded_body.find(b"\r\n", position)
                if trailer_end == -1:
                    raise HTTPRequestParseError("Incomplete chunked trailer section")
                if trailer_end == position:
                    return bytes(decoded)
                if b":" not in encoded_body[position:trailer_end]:
                    raise HTTPRequestParseError("Malformed trailer header")
                position = trailer_end + 2

        chunk_end = position + chunk_size
        if chunk_end + 2 > len(encoded_body):
            raise HTTPRequestParseError("Incomplete chunk data")
        decoded.extend(encoded_body[position:chunk_end])
        if len(decoded) > MAX_BODY_BYTES:
            raise HTTPRequestParseError("Decoded body exceeded MAX_BODY_BYTES", status_code=413)
        if encoded_body[chunk_end : chunk_end + 2] != b"\r\n":
            raise HTTPRequestParseError("Chunk missing CRLF terminator")
        position = chunk_end + 2
