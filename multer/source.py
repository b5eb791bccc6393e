from __future__ import annotations

import logging
from collections import deque
from enum import IntEnum
from typing import TYPE_CHECKING

from python_multipart.decoders import Base64Decoder, QuotedPrintableDecoder
from python_multipart.exceptions import FormParserError, MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from .exceptions import (
    LIMIT_FIELD_COUNT,
    LIMIT_FIELD_KEY,
    LIMIT_FIELD_SIZE,
    LIMIT_FILE_COUNT,
    LIMIT_FILE_SIZE,
    LIMIT_PART_COUNT,
    MISSING_FIELD_NAME,
    LimitError,
    MulterError,
)
from .limits import make_limits

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterator, Mapping
    from typing import Any, Protocol

    from .limits import Limits

    class SupportsRead(Protocol):
        def read(self, __n: int) -> bytes: ...

    Part = FieldPart | FilePart


logger = logging.getLogger(__name__)

# Request bodies are read in chunks of this many bytes.
DEFAULT_CHUNK_SIZE = 64 * 1024

DEFAULT_FIELD_TYPE = "text/plain"
DEFAULT_FILE_TYPE = "application/octet-stream"
DEFAULT_TRANSFER_ENCODING = "7bit"


class PartEvent(IntEnum):
    """Events queued by the tokenizer callbacks, in wire order."""

    HEADERS = 0
    DATA = 1
    END = 2
    BODY_END = 3


def get_header(headers: Mapping[Any, Any], name: str) -> Any:
    """Look up ``name`` in a header mapping without regard to case."""
    value = headers.get(name)
    if value is not None:
        return value

    lowered = name.lower()
    for key, value in headers.items():
        if isinstance(key, bytes):
            key = key.decode("latin-1")
        if key.lower() == lowered:
            return value
    return None


def is_multipart(headers: Mapping[Any, Any]) -> bool:
    content_type, _ = parse_options_header(get_header(headers, "Content-Type"))
    return content_type.lower().startswith(b"multipart/")


def basename(file_name: str) -> str:
    return file_name.replace("\\", "/").rsplit("/", 1)[-1]


class _EventWriter:
    """The innermost writer for part data: queues every chunk it gets.
    Transfer-encoding decoders wrap this.
    """

    def __init__(self, events: deque[tuple[PartEvent, Any]]) -> None:
        self.events = events

    def write(self, data: bytes) -> int:
        if data:
            self.events.append((PartEvent.DATA, data))
        return len(data)

    def finalize(self) -> None:
        pass


class _StripWhitespace:
    """Drops the line breaks MIME puts into base64 bodies, so the decoder
    only ever sees the base64 alphabet.
    """

    def __init__(self, underlying: Any) -> None:
        self.underlying = underlying

    def write(self, data: bytes) -> int:
        stripped = data.translate(None, b" \t\r\n")
        if stripped:
            self.underlying.write(stripped)
        return len(data)

    def finalize(self) -> None:
        self.underlying.finalize()


def drain_stream(stream: SupportsRead, length: int | float = float("inf"),
                 chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Read and discard up to ``length`` bytes from ``stream``.  Returns the
    number of bytes read.
    """
    drained = 0
    while drained < length:
        buff = stream.read(int(min(length - drained, chunk_size)))
        if not buff:
            break
        drained += len(buff)
    return drained


class FieldPart:
    """An ordinary (non-file) form field, fully read."""

    is_file = False

    def __init__(self, field_name: str, value: str, mime_type: str = DEFAULT_FIELD_TYPE,
                 encoding: str = DEFAULT_TRANSFER_ENCODING) -> None:
        self.field_name = field_name
        self.value = value
        self.mime_type = mime_type
        self.encoding = encoding

    def __repr__(self) -> str:
        if len(self.value) > 97:
            v = repr(self.value[:97])[:-1] + "...'"
        else:
            v = repr(self.value)
        return f"{self.__class__.__name__}(field_name={self.field_name!r}, value={v})"


class FileStream:
    """The body of one file part, as an iterator of ``bytes`` chunks.

    Chunks are pulled from the request body only as they are asked for.
    Going past ``max_size`` raises :class:`LimitError`
    (``LIMIT_FILE_SIZE``); :meth:`drain` can still be used afterwards to
    skip what is left of the part.
    """

    def __init__(self, source: PartSource, field_name: str, max_size: int | float = float("inf")) -> None:
        self._source = source
        self.field_name = field_name
        self.max_size = max_size
        self.size = 0
        self.truncated = False
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def __iter__(self) -> FileStream:
        return self

    def __next__(self) -> bytes:
        if self._done or self.truncated:
            raise StopIteration

        kind, data = self._source.next_event()
        if kind == PartEvent.END:
            self._done = True
            raise StopIteration
        if kind != PartEvent.DATA:
            raise MultipartParseError("Unexpected %s event inside a file part" % kind.name)

        self.size += len(data)
        if self.size > self.max_size:
            logger.info("File for field %r is over the size limit of %r bytes", self.field_name, self.max_size)
            self.truncated = True
            raise LimitError(LIMIT_FILE_SIZE, self.field_name)
        return data

    def read(self) -> bytes:
        """Read everything left in the part."""
        return b"".join(self)

    def drain(self) -> None:
        """Discard what is left of this part."""
        while not self._done:
            kind, _ = self._source.next_event()
            if kind == PartEvent.END:
                self._done = True
            elif kind != PartEvent.DATA:
                raise MultipartParseError("Unexpected %s event inside a file part" % kind.name)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(field_name={self.field_name!r}, size={self.size!r}, done={self._done!r})"


class FilePart:
    """An uploaded file whose bytes are still on the wire.

    ``stream`` can only be consumed once; a storage engine reads it chunk
    by chunk.  The other attributes are the metadata a file filter gets
    to look at.
    """

    is_file = True

    def __init__(self, field_name: str, original_name: str, mime_type: str, encoding: str,
                 stream: FileStream) -> None:
        self.field_name = field_name
        self.original_name = original_name
        self.mime_type = mime_type
        self.encoding = encoding
        self.stream = stream

    @property
    def size(self) -> int:
        """Bytes read from the stream so far."""
        return self.stream.size

    def drain(self) -> None:
        self.stream.drain()

    def __repr__(self) -> str:
        return "{}(field_name={!r}, original_name={!r}, mime_type={!r})".format(
            self.__class__.__name__, self.field_name, self.original_name, self.mime_type
        )


class PartSource:
    """Turns a ``multipart/form-data`` request body into a lazy sequence of
    :class:`FieldPart` and :class:`FilePart` objects.

    The body is read from ``stream`` one chunk at a time and pushed through
    :class:`python_multipart.MultipartParser`, whose callbacks queue events.
    A new chunk is only read when the queue runs dry, so a file's bytes are
    never read ahead of whoever is consuming its stream.

    Iterating enforces the part, field, file and size ``limits``; a file
    part that its consumer left unread is drained before the next part is
    produced.
    """

    def __init__(
        self,
        stream: SupportsRead,
        boundary: bytes | str,
        content_length: int | None = None,
        limits: Mapping[str, Any] | None = None,
        preserve_path: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.stream = stream
        self.boundary = boundary
        self.content_length: int | float = float("inf") if content_length is None else content_length
        self.limits: Limits = make_limits(limits)
        self.preserve_path = preserve_path
        self.chunk_size = chunk_size
        self.bytes_read = 0
        #: The transport or tokenizer error that broke this source, if any.
        self.error: Exception | None = None

        self._events: deque[tuple[PartEvent, Any]] = deque()
        self._eof = False
        self._ended = False
        self._part_count = 0
        self._field_count = 0
        self._file_count = 0

        header_name: list[bytes] = []
        header_value: list[bytes] = []
        headers: dict[bytes, bytes] = {}
        header_count = 0
        writer: Any = None

        def on_part_begin() -> None:
            nonlocal headers, header_count
            headers = {}
            header_count = 0

        def on_part_data(data: bytes, start: int, end: int) -> None:
            writer.write(data[start:end])

        def on_part_end() -> None:
            writer.finalize()
            self._events.append((PartEvent.END, None))

        def on_header_field(data: bytes, start: int, end: int) -> None:
            header_name.append(data[start:end])

        def on_header_value(data: bytes, start: int, end: int) -> None:
            header_value.append(data[start:end])

        def on_header_end() -> None:
            nonlocal header_count
            header_count += 1
            if header_count <= self.limits["header_pairs"]:
                headers[b"".join(header_name).lower()] = b"".join(header_value)
            else:
                logger.debug("Ignoring header over the limit of %r", self.limits["header_pairs"])
            del header_name[:]
            del header_value[:]

        def on_headers_finished() -> None:
            nonlocal writer
            self._events.append((PartEvent.HEADERS, headers))

            writer = _EventWriter(self._events)
            transfer_encoding = headers.get(b"content-transfer-encoding", b"7bit").strip().lower()
            if transfer_encoding == b"base64":
                writer = _StripWhitespace(Base64Decoder(writer))
            elif transfer_encoding == b"quoted-printable":
                writer = QuotedPrintableDecoder(writer)
            elif transfer_encoding not in (b"binary", b"8bit", b"7bit"):
                logger.warning("Unknown Content-Transfer-Encoding: %r", transfer_encoding)

        def on_end() -> None:
            self._ended = True
            self._events.append((PartEvent.BODY_END, None))

        self.parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": on_part_begin,
                "on_part_data": on_part_data,
                "on_part_end": on_part_end,
                "on_header_field": on_header_field,
                "on_header_value": on_header_value,
                "on_header_end": on_header_end,
                "on_headers_finished": on_headers_finished,
                "on_end": on_end,
            },
        )

    @classmethod
    def from_request(
        cls,
        request: Any,
        limits: Mapping[str, Any] | None = None,
        preserve_path: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> PartSource:
        """Build a source from an object with ``headers`` and ``stream``."""
        headers = request.headers
        content_type = get_header(headers, "Content-Type")
        if content_type is None:
            logger.warning("No Content-Type header given")
            raise FormParserError("No Content-Type header given!")

        _, params = parse_options_header(content_type)
        boundary = params.get(b"boundary")
        if not boundary:
            logger.error("No boundary given")
            raise FormParserError("No boundary given")

        content_length = get_header(headers, "Content-Length")
        if content_length is not None:
            try:
                content_length = int(content_length)
            except ValueError:
                content_length = -1
            if content_length < 0:
                logger.warning("Invalid Content-Length: %r", get_header(headers, "Content-Length"))
                raise FormParserError("Invalid Content-Length")

        return cls(request.stream, boundary, content_length, limits, preserve_path, chunk_size)

    @property
    def exhausted(self) -> bool:
        """Whether the whole request body has been read."""
        return self._eof

    def _read_chunk(self) -> None:
        max_readable = int(min(self.content_length - self.bytes_read, self.chunk_size))
        buff = self.stream.read(max_readable) if max_readable > 0 else b""
        self.bytes_read += len(buff)

        if buff:
            self.parser.write(buff)
        if not buff or self.bytes_read >= self.content_length:
            self._eof = True
            self.parser.finalize()

    def next_event(self) -> tuple[PartEvent, Any]:
        while not self._events:
            try:
                if self._eof:
                    raise MultipartParseError("Unexpected end of form")
                self._read_chunk()
            except Exception as e:
                self.error = e
                raise
        return self._events.popleft()

    def drain(self) -> None:
        """Read and discard whatever is left of the request body, without
        parsing it.
        """
        self._events.clear()
        if not self._eof:
            self.bytes_read += drain_stream(self.stream, self.content_length - self.bytes_read, self.chunk_size)
            self._eof = True
        logger.debug("Drained request body, %d bytes read in total", self.bytes_read)

    def __iter__(self) -> Iterator[Part]:
        while True:
            kind, payload = self.next_event()
            if kind == PartEvent.BODY_END:
                return
            if kind != PartEvent.HEADERS:
                raise MultipartParseError("Unexpected %s event between parts" % kind.name)

            part = self._make_part(payload)
            if part is None:
                continue

            yield part
            if part.is_file:
                part.drain()

    def _make_part(self, headers: dict[bytes, bytes]) -> Part | None:
        self._part_count += 1
        if self._part_count > self.limits["parts"]:
            raise LimitError(LIMIT_PART_COUNT)

        _, options = parse_options_header(headers.get(b"content-disposition"))
        name = options.get(b"name")
        file_name = options.get(b"filename")
        if name is None:
            raise MulterError(MISSING_FIELD_NAME)
        field_name = name.decode("utf-8", "replace")

        content_type, _ = parse_options_header(headers.get(b"content-type"))
        mime_type = content_type.decode("latin-1")
        encoding = headers.get(b"content-transfer-encoding", b"7bit").strip().lower().decode("latin-1")

        if file_name is None:
            self._field_count += 1
            if self._field_count > self.limits["fields"]:
                raise LimitError(LIMIT_FIELD_COUNT)
            if len(name) > self.limits["field_name_size"]:
                raise LimitError(LIMIT_FIELD_KEY)

            value = self._read_field(field_name)
            logger.debug("Read field %r (%d bytes)", field_name, len(value))
            return FieldPart(field_name, value.decode("utf-8", "replace"), mime_type or DEFAULT_FIELD_TYPE, encoding)

        original_name = file_name.decode("utf-8", "replace")
        if not original_name:
            logger.debug("Skipping file part without a filename for field %r", field_name)
            self._skip_part()
            return None

        self._file_count += 1
        if self._file_count > self.limits["files"]:
            raise LimitError(LIMIT_FILE_COUNT)

        if not self.preserve_path:
            original_name = basename(original_name)

        logger.debug("Starting file %r for field %r", original_name, field_name)
        stream = FileStream(self, field_name, self.limits["file_size"])
        return FilePart(field_name, original_name, mime_type or DEFAULT_FILE_TYPE, encoding, stream)

    def _read_field(self, field_name: str) -> bytes:
        chunks: list[bytes] = []
        size = 0
        while True:
            kind, data = self.next_event()
            if kind == PartEvent.END:
                return b"".join(chunks)
            if kind != PartEvent.DATA:
                raise MultipartParseError("Unexpected %s event inside a field" % kind.name)

            size += len(data)
            if size > self.limits["field_size"]:
                raise LimitError(LIMIT_FIELD_SIZE, field_name)
            chunks.append(data)

    def _skip_part(self) -> None:
        while True:
            kind, _ = self.next_event()
            if kind == PartEvent.END:
                return

    def __repr__(self) -> str:
        return "{}(boundary={!r}, content_length={!r}, bytes_read={!r})".format(
            self.__class__.__name__, self.boundary, self.content_length, self.bytes_read
        )
