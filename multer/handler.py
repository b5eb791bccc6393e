from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from python_multipart.exceptions import FormParserError

from .exceptions import InvalidOptionsError
from .filters import FileFilter
from .ingest import Ingestor
from .limits import FieldSpec, make_limits
from .source import DEFAULT_CHUNK_SIZE, PartSource, drain_stream, get_header, is_multipart
from .storage import DiskStorage, MemoryStorage
from .strategy import Strategy

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable
    from typing import Any, TypedDict

    from .filters import FileFilterCallable
    from .ingest import IngestResult
    from .storage import StorageEngine

    class MulterOptions(TypedDict, total=False):
        storage: StorageEngine | None
        dest: str | None
        limits: Mapping[str, Any] | None
        preserve_path: bool
        file_filter: FileFilterCallable | None


logger = logging.getLogger(__name__)


class BeforeHandler:
    """Parses a request's multipart body before the real handler runs.

    Call it with a request object that has ``headers`` and a readable
    ``stream``.  Requests that aren't multipart are left alone.  Otherwise
    the form's fields are put on ``request.body`` as they arrive, and once
    the whole body has been read the files are put on ``request.file``
    (single file) or ``request.files``.  Errors propagate to the caller;
    nothing here writes a response.
    """

    def __init__(
        self,
        storage: StorageEngine,
        strategy: Strategy,
        file_fields: list[FieldSpec] | None,
        file_filter: FileFilter,
        limits: Mapping[str, Any],
        preserve_path: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.storage = storage
        self.strategy = strategy
        self.file_fields = file_fields
        self.file_filter = file_filter
        self.limits = limits
        self.preserve_path = preserve_path
        self.chunk_size = chunk_size

    def __call__(self, request: Any) -> IngestResult | None:
        if not is_multipart(request.headers):
            logger.debug("Not a multipart request, skipping")
            return None

        try:
            source = PartSource.from_request(request, self.limits, self.preserve_path, self.chunk_size)
        except FormParserError:
            self._drain_unparsed(request)
            raise

        body: dict[str, list[str]] = {}
        request.body = body

        ingestor = Ingestor(
            request,
            self.storage,
            self.strategy,
            self.file_fields,
            self.file_filter,
            field_values=body,
        )
        try:
            result = ingestor.run(source)
        except BaseException:
            if source.error is None:
                self._drain(source)
            raise

        if self.strategy == Strategy.VALUE:
            request.file = result.files
        elif self.strategy in (Strategy.ARRAY, Strategy.OBJECT):
            request.files = result.files
        return result

    def _drain(self, source: PartSource) -> None:
        try:
            source.drain()
        except OSError:
            logger.warning("Could not drain the rest of an aborted request", exc_info=True)

    def _drain_unparsed(self, request: Any) -> None:
        # Without a usable Content-Length there is no telling where the body ends.
        try:
            content_length = int(get_header(request.headers, "Content-Length"))
        except (TypeError, ValueError):
            logger.debug("Not draining a request without a valid Content-Length")
            return

        try:
            drain_stream(request.stream, content_length, self.chunk_size)
        except OSError:
            logger.warning("Could not drain the body of a rejected request", exc_info=True)

    def __repr__(self) -> str:
        return "{}(strategy={}, file_fields={!r}, storage={!r})".format(
            self.__class__.__name__, self.strategy.name, self.file_fields, self.storage
        )


class Multer:
    """Holds the configuration shared by every handler it makes.

    ``storage`` takes precedence over ``dest``, which is a shorthand for
    ``DiskStorage(dest)``; with neither, files are kept in memory.
    ``limits`` are merged over :data:`multer.limits.DEFAULT_LIMITS`.
    ``file_filter(request, file)`` returns whether to keep a file; by
    default every file is kept.  With ``preserve_path`` a file's
    ``original_name`` keeps any directory the client sent.
    """

    def __init__(
        self,
        storage: StorageEngine | None = None,
        dest: str | None = None,
        limits: Mapping[str, Any] | None = None,
        preserve_path: bool = False,
        file_filter: FileFilterCallable | None = None,
    ) -> None:
        if storage is not None:
            if not callable(getattr(storage, "store", None)) or not callable(getattr(storage, "remove", None)):
                raise InvalidOptionsError("storage must have store() and remove() methods, not %r" % (storage,))
            self.storage: StorageEngine = storage
        elif dest is not None:
            self.storage = DiskStorage(dest)
        else:
            self.storage = MemoryStorage()

        self.limits = make_limits(limits)
        self.preserve_path = bool(preserve_path)
        self.file_filter = FileFilter(file_filter)

    def _make_handler(self, file_fields: list[FieldSpec] | None, strategy: Strategy) -> BeforeHandler:
        return BeforeHandler(
            self.storage,
            strategy,
            file_fields,
            self.file_filter,
            self.limits,
            self.preserve_path,
        )

    def single(self, name: str) -> BeforeHandler:
        """Accept one file under ``name``, put on ``request.file``."""
        return self._make_handler([FieldSpec(name, 1)], Strategy.VALUE)

    def array(self, name: str, max_count: int | None = None) -> BeforeHandler:
        """Accept up to ``max_count`` files under ``name``, put on
        ``request.files`` as a list.
        """
        return self._make_handler([FieldSpec(name, max_count)], Strategy.ARRAY)

    def fields(self, fields: Iterable[FieldSpec | Mapping[str, Any] | str]) -> BeforeHandler:
        """Accept files under each of ``fields``, put on ``request.files``
        as a dict of lists.  Each entry is a :class:`FieldSpec`, a mapping
        with ``name`` and optional ``max_count``, or a bare name.
        """
        if isinstance(fields, (str, bytes, Mapping)):
            raise InvalidOptionsError("fields must be a list of field declarations, not %r" % (fields,))
        return self._make_handler([FieldSpec.from_value(f) for f in fields], Strategy.OBJECT)

    def none(self) -> BeforeHandler:
        """Accept only text fields; any file is an error."""
        return self._make_handler([], Strategy.NONE)

    def any(self) -> BeforeHandler:
        """Accept any number of files under any field name, put on
        ``request.files`` as a list.
        """
        return self._make_handler(None, Strategy.ARRAY)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(storage={self.storage!r}, preserve_path={self.preserve_path!r})"


DEFAULT_OPTIONS: MulterOptions = {
    "storage": None,
    "dest": None,
    "limits": None,
    "preserve_path": False,
    "file_filter": None,
}


def multer(options: MulterOptions | None = None) -> Multer:
    """Build a :class:`Multer` from an options mapping."""
    if options is None:
        return Multer()

    if not isinstance(options, Mapping):
        raise InvalidOptionsError("Expected a mapping for options, not %r" % (options,))

    unknown = set(options) - set(DEFAULT_OPTIONS)
    if unknown:
        raise InvalidOptionsError("Unknown options: %s" % ", ".join(sorted(map(str, unknown))))

    config: MulterOptions = DEFAULT_OPTIONS.copy()
    config.update(options)
    return Multer(**config)
