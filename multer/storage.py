from __future__ import annotations

import logging
import os
import tempfile
from io import BytesIO
from typing import TYPE_CHECKING

from .exceptions import CleanupError, InvalidOptionsError, StorageError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable
    from typing import Any, Protocol

    from .source import FilePart

    DestinationCallable = Callable[[Any, FilePart], str]
    FilenameCallable = Callable[[Any, FilePart], str]

    class StorageEngine(Protocol):
        """What the ingestion pipeline needs from a storage engine.

        ``store`` must consume the part's stream, and must not leave a
        partial artifact behind when it fails.  ``remove`` undoes a
        successful ``store``; calling it again for the same file is a
        no-op.
        """

        def store(self, request: Any, file: FilePart) -> StoredFile: ...

        def remove(self, request: Any, file: StoredFile) -> None: ...


logger = logging.getLogger(__name__)


class StoredFile:
    """The receipt a storage engine hands back for a committed file.

    Disk storage fills in ``destination``, ``filename`` and ``path``;
    memory storage fills in ``buffer``.
    """

    def __init__(
        self,
        field_name: str,
        original_name: str,
        encoding: str,
        mime_type: str,
        size: int,
        destination: str | None = None,
        filename: str | None = None,
        path: str | None = None,
        buffer: bytes | None = None,
    ) -> None:
        self.field_name = field_name
        self.original_name = original_name
        self.encoding = encoding
        self.mime_type = mime_type
        self.size = size
        self.destination = destination
        self.filename = filename
        self.path = path
        self.buffer = buffer

    @classmethod
    def from_part(cls, file: FilePart, size: int, **kwargs: Any) -> StoredFile:
        return cls(file.field_name, file.original_name, file.encoding, file.mime_type, size, **kwargs)

    @property
    def storage_reference(self) -> str | bytes | None:
        """Where the bytes live: the file's path on disk, or its buffer."""
        if self.path is not None:
            return self.path
        return self.buffer

    def __eq__(self, other: object) -> bool:
        if isinstance(other, StoredFile):
            return (
                self.field_name == other.field_name
                and self.original_name == other.original_name
                and self.size == other.size
                and self.storage_reference == other.storage_reference
            )
        return NotImplemented

    __hash__ = object.__hash__

    def __repr__(self) -> str:
        return "{}(field_name={!r}, original_name={!r}, mime_type={!r}, size={!r})".format(
            self.__class__.__name__, self.field_name, self.original_name, self.mime_type, self.size
        )


def random_filename(request: Any, file: FilePart) -> str:
    return os.urandom(16).hex()


class DiskStorage:
    """Writes each file into a directory on disk.

    ``destination`` is either a directory (created if needed), a callable
    ``(request, file) -> directory`` resolved for every file, or ``None``
    for the system temporary directory.  ``filename`` is a callable
    ``(request, file) -> name``; by default every file gets a random
    32-character hex name.  Files are created exclusively, so a name
    collision fails the store rather than overwriting anything.
    """

    def __init__(
        self,
        destination: str | os.PathLike[str] | DestinationCallable | None = None,
        filename: FilenameCallable | None = None,
    ) -> None:
        if filename is not None and not callable(filename):
            raise InvalidOptionsError("filename must be callable, not %r" % (filename,))

        if destination is None:
            self._get_destination: DestinationCallable = lambda request, file: tempfile.gettempdir()
        elif callable(destination):
            self._get_destination = destination
        elif isinstance(destination, (str, os.PathLike)):
            path = os.fspath(destination)
            logger.info("Creating upload directory: %r", path)
            os.makedirs(path, exist_ok=True)
            self._get_destination = lambda request, file: path
        else:
            raise InvalidOptionsError("destination must be a path or a callable, not %r" % (destination,))

        self._get_filename: FilenameCallable = filename if filename is not None else random_filename

    def store(self, request: Any, file: FilePart) -> StoredFile:
        destination = os.fspath(self._get_destination(request, file))
        filename = self._get_filename(request, file)
        path = os.path.join(destination, filename)

        try:
            logger.info("Opening file: %r", path)
            fileobj = open(path, "xb")
        except OSError as e:
            logger.exception("Error opening file for field %r", file.field_name)
            file.drain()
            raise StorageError(file.field_name, "Error opening file: %r" % path) from e

        size = 0
        try:
            with fileobj:
                for chunk in file.stream:
                    try:
                        fileobj.write(chunk)
                    except OSError as e:
                        logger.exception("Error writing file: %r", path)
                        raise StorageError(file.field_name, "Error writing file: %r" % path) from e
                    size += len(chunk)
        except StorageError:
            _unlink(path)
            file.drain()
            raise
        except BaseException:
            logger.info("Removing partially written file: %r", path)
            _unlink(path)
            raise

        return StoredFile.from_part(file, size, destination=destination, filename=filename, path=path)

    def remove(self, request: Any, file: StoredFile) -> None:
        if file.path is None:
            return

        try:
            os.unlink(file.path)
        except FileNotFoundError:
            logger.debug("File already removed: %r", file.path)
        except OSError as e:
            raise CleanupError(file.field_name, "Error removing file: %r" % file.path) from e
        else:
            logger.info("Removed file: %r", file.path)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


def _unlink(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


class MemoryStorage:
    """Keeps each file in memory.

    The chunks are collected in a :class:`io.BytesIO` and the stored file
    gets an immutable ``bytes`` copy, so nothing it holds refers back to
    the request.  Removing a file drops that buffer.
    """

    def store(self, request: Any, file: FilePart) -> StoredFile:
        fileobj = BytesIO()
        try:
            for chunk in file.stream:
                fileobj.write(chunk)
            buffer = fileobj.getvalue()
        finally:
            fileobj.close()

        return StoredFile.from_part(file, len(buffer), buffer=buffer)

    def remove(self, request: Any, file: StoredFile) -> None:
        file.buffer = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


def disk_storage(
    destination: str | os.PathLike[str] | DestinationCallable | None = None,
    filename: FilenameCallable | None = None,
) -> DiskStorage:
    return DiskStorage(destination, filename)


def memory_storage() -> MemoryStorage:
    return MemoryStorage()
