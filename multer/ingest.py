from __future__ import annotations

import logging
from enum import IntEnum
from typing import TYPE_CHECKING

from .exceptions import CleanupError, MulterError, StorageError
from .filters import FileFilter, FilterResult
from .limits import LimitEnforcer
from .strategy import FileAppender, Strategy

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable
    from types import TracebackType
    from typing import Any

    from .limits import FieldSpec
    from .source import FieldPart, FilePart
    from .storage import StorageEngine, StoredFile


logger = logging.getLogger(__name__)


class IngestState(IntEnum):
    IDLE = 0
    PARSING = 1
    SUCCEEDED = 2
    ABORTED = 3


class UploadedFiles:
    """Every file stored so far for one request.

    Used as a context manager: if the block exits with an exception, each
    tracked file is removed from its storage engine before the exception
    propagates.  A file that can't be removed is logged and its
    :class:`CleanupError` is added to the primary error's
    ``storage_errors``; it never replaces the primary error.
    """

    def __init__(self, storage: StorageEngine, request: Any = None) -> None:
        self.storage = storage
        self.request = request
        self.files: list[StoredFile] = []

    def add(self, file: StoredFile) -> None:
        self.files.append(file)

    def __len__(self) -> int:
        return len(self.files)

    def __enter__(self) -> UploadedFiles:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_val is None:
            return

        errors = self.remove_all()
        if errors:
            existing = getattr(exc_val, "storage_errors", None)
            if isinstance(existing, list):
                existing.extend(errors)
            else:
                exc_val.storage_errors = errors  # type: ignore[union-attr]

    def remove_all(self) -> list[CleanupError]:
        errors: list[CleanupError] = []
        while self.files:
            file = self.files.pop()
            try:
                self.storage.remove(self.request, file)
            except Exception as e:
                if isinstance(e, CleanupError):
                    error = e
                else:
                    error = CleanupError(file.field_name, "Error removing stored file: %s" % (e,))
                    error.__cause__ = e
                logger.warning("Could not remove %r while unwinding request: %s", file, e)
                errors.append(error)
        return errors


class IngestResult:
    """What a successful ingestion hands back: the form's fields and the
    files, shaped by the strategy.
    """

    def __init__(self, fields: dict[str, list[str]], files: Any) -> None:
        self.fields = fields
        self.files = files

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(fields={self.fields!r}, files={self.files!r})"


class Ingestor:
    """Drives one request's parts through the pipeline.

    Field parts go straight into ``fields``.  File parts are admitted by
    the :class:`LimitEnforcer`, offered to the file filter, committed to
    ``storage`` and then placed by the :class:`FileAppender`.  The first
    error aborts the request: nothing more is read from ``parts`` and
    every file stored so far is removed before the error propagates.

    ``file_fields`` declares which field names may carry files and how
    many; ``None`` admits files under any name.
    """

    def __init__(
        self,
        request: Any,
        storage: StorageEngine,
        strategy: Strategy,
        file_fields: list[FieldSpec] | None = None,
        file_filter: FileFilter | None = None,
        field_values: dict[str, list[str]] | None = None,
    ) -> None:
        self.request = request
        self.storage = storage
        self.strategy = strategy
        self.enforcer = LimitEnforcer(file_fields)
        self.appender = FileAppender(strategy, file_fields or ())
        self.file_filter = file_filter if file_filter is not None else FileFilter()
        self.fields: dict[str, list[str]] = field_values if field_values is not None else {}
        self.state = IngestState.IDLE
        self._parts: Any = None

    def run(self, parts: Iterable[FieldPart | FilePart]) -> IngestResult:
        if self.state != IngestState.IDLE:
            raise RuntimeError("Ingestor has already run (state: %s)" % self.state.name)

        self.state = IngestState.PARSING
        self._parts = parts
        uploaded = UploadedFiles(self.storage, self.request)
        try:
            with uploaded:
                for part in parts:
                    if part.is_file:
                        self._on_file(part, uploaded)  # type: ignore[arg-type]
                    else:
                        self._on_field(part)  # type: ignore[arg-type]
        except BaseException:
            self.state = IngestState.ABORTED
            logger.debug("Request aborted")
            raise

        self.state = IngestState.SUCCEEDED
        return IngestResult(self.fields, self.appender.result)

    def _on_field(self, part: FieldPart) -> None:
        self.fields.setdefault(part.field_name, []).append(part.value)

    def _on_file(self, part: FilePart, uploaded: UploadedFiles) -> None:
        self.enforcer.admit(part.field_name)

        if self.file_filter(self.request, part) == FilterResult.REJECT:
            part.drain()
            return

        try:
            stored = self.storage.store(self.request, part)
        except MulterError:
            raise
        except Exception as e:
            if e is getattr(self._parts, "error", None):
                raise
            raise StorageError(part.field_name, "Error storing file: %s" % (e,)) from e

        uploaded.add(stored)
        logger.debug("Stored %r", stored)
        self.appender.append(stored)
