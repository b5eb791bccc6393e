from __future__ import annotations

from io import BytesIO
from typing import TYPE_CHECKING

from multer.source import PartSource
from multer.storage import MemoryStorage

if TYPE_CHECKING:
    from typing import Any

    from multer.source import FilePart
    from multer.storage import StoredFile


BOUNDARY = "boundary"


def field(name: str, value: str | bytes, headers: dict[str, str] | None = None) -> dict[str, Any]:
    return {"name": name, "value": value, "headers": headers or {}}


def file(
    name: str,
    filename: str,
    data: bytes,
    content_type: str | None = "application/octet-stream",
    headers: dict[str, str] | None = None,
) -> dict[str, Any]:
    return {"name": name, "filename": filename, "data": data, "content_type": content_type, "headers": headers or {}}


def encode_body(parts: list[dict[str, Any]], boundary: str = BOUNDARY) -> bytes:
    """Build a multipart/form-data body out of field() and file() parts."""
    out = []
    for part in parts:
        disposition = 'form-data; name="%s"' % part["name"]
        if "filename" in part:
            disposition += '; filename="%s"' % part["filename"]

        lines = ["--" + boundary, "Content-Disposition: " + disposition]
        if part.get("content_type"):
            lines.append("Content-Type: " + part["content_type"])
        for key, value in part["headers"].items():
            lines.append("%s: %s" % (key, value))

        data = part.get("data", part.get("value"))
        if isinstance(data, str):
            data = data.encode("utf-8")

        out.append("\r\n".join(lines).encode("utf-8") + b"\r\n\r\n" + data + b"\r\n")

    out.append(("--" + boundary + "--\r\n").encode("latin-1"))
    return b"".join(out)


class TrickleStream:
    """A readable that hands out at most ``step`` bytes per read."""

    def __init__(self, data: bytes, step: int = 7) -> None:
        self._data = BytesIO(data)
        self.step = step
        self.reads = 0

    def read(self, n: int = -1) -> bytes:
        self.reads += 1
        if n < 0 or n > self.step:
            n = self.step
        return self._data.read(n)


class BrokenStream:
    """A readable whose connection drops after ``fail_after`` bytes."""

    def __init__(self, data: bytes, fail_after: int) -> None:
        self._data = BytesIO(data)
        self.fail_after = fail_after

    def read(self, n: int = -1) -> bytes:
        if self._data.tell() >= self.fail_after:
            raise ConnectionResetError("client went away")
        if n < 0:
            n = self.fail_after
        return self._data.read(min(n, self.fail_after - self._data.tell()))


class FakeRequest:
    def __init__(
        self,
        body: bytes,
        boundary: str = BOUNDARY,
        content_type: str | None = None,
        stream: Any = None,
    ) -> None:
        if content_type is None:
            content_type = "multipart/form-data; boundary=%s" % boundary
        self.headers = {"Content-Type": content_type, "Content-Length": str(len(body))}
        self.stream = stream if stream is not None else BytesIO(body)


def make_request(parts: list[dict[str, Any]], **kwargs: Any) -> FakeRequest:
    return FakeRequest(encode_body(parts), **kwargs)


def make_source(parts: list[dict[str, Any]], **kwargs: Any) -> PartSource:
    body = encode_body(parts)
    return PartSource(BytesIO(body), BOUNDARY, len(body), **kwargs)


class RecordingStorage:
    """Memory storage that records what it was asked to do, and can be made
    to fail on the ``fail_on``-th store or on every remove.
    """

    def __init__(self, fail_on: int | None = None, fail_remove: bool = False) -> None:
        self.inner = MemoryStorage()
        self.fail_on = fail_on
        self.fail_remove = fail_remove
        self.stored: list[StoredFile] = []
        self.removed: list[StoredFile] = []
        self.calls = 0

    def store(self, request: Any, file: FilePart) -> StoredFile:
        self.calls += 1
        if self.fail_on is not None and self.calls == self.fail_on:
            file.drain()
            raise OSError("disk full")
        stored = self.inner.store(request, file)
        self.stored.append(stored)
        return stored

    def remove(self, request: Any, file: StoredFile) -> None:
        if self.fail_remove:
            raise OSError("permission denied")
        self.removed.append(file)
        self.inner.remove(request, file)

    @property
    def live(self) -> list[StoredFile]:
        return [f for f in self.stored if f not in self.removed]
