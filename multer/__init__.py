# This is the canonical package information.
__author__ = "python-multer contributors"
__license__ = "Apache"

# We get the version from a sub-file that can be automatically generated.
from ._version import __version__
from .exceptions import (
    CleanupError,
    FilterError,
    InvalidOptionsError,
    LimitError,
    MulterError,
    StorageError,
)
from .filters import FileFilter, FilterResult
from .handler import BeforeHandler, Multer, multer
from .ingest import IngestResult, Ingestor, IngestState
from .limits import DEFAULT_LIMITS, FieldSpec, LimitEnforcer
from .source import FieldPart, FilePart, PartSource
from .storage import DiskStorage, MemoryStorage, StoredFile, disk_storage, memory_storage
from .strategy import Strategy

__all__ = (
    "__version__",
    "BeforeHandler",
    "CleanupError",
    "DEFAULT_LIMITS",
    "DiskStorage",
    "FieldPart",
    "FieldSpec",
    "FileFilter",
    "FilePart",
    "FilterError",
    "FilterResult",
    "IngestResult",
    "IngestState",
    "Ingestor",
    "InvalidOptionsError",
    "LimitEnforcer",
    "LimitError",
    "MemoryStorage",
    "Multer",
    "MulterError",
    "PartSource",
    "StorageError",
    "StoredFile",
    "Strategy",
    "disk_storage",
    "memory_storage",
    "multer",
)
