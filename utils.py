"""Body-source loaders used when fixtures are constructed."""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import BinaryIO, TextIO


class FixtureLoadError(RuntimeError):
    """Raised when a fixture body source cannot be read at construction time."""


def get_content_type(file_path: Path) -> str:
    content_type, _encoding = mimetypes.guess_type(file_path.name)
    return content_type or "application/octet-stream"


def load_file(path: str | Path) -> bytes:
    file_path = Path(path)
    try:
        with file_path.open("rb") as file_obj:
            return load_reader(file_obj)
    except OSError as exc:
        raise FixtureLoadError(f"error reading file {file_path}: {exc}") from exc


def load_reader(reader: BinaryIO | TextIO) -> bytes:
    """Read a stream to the end; text streams are encoded as UTF-8."""
    try:
        data = reader.read()
    except (OSError, ValueError) as exc:
        raise FixtureLoadError(f"error reading reader: {exc}") from exc
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)
