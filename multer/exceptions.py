from __future__ import annotations

LIMIT_PART_COUNT = "LIMIT_PART_COUNT"
LIMIT_FILE_SIZE = "LIMIT_FILE_SIZE"
LIMIT_FILE_COUNT = "LIMIT_FILE_COUNT"
LIMIT_FIELD_KEY = "LIMIT_FIELD_KEY"
LIMIT_FIELD_SIZE = "LIMIT_FIELD_SIZE"
LIMIT_FIELD_COUNT = "LIMIT_FIELD_COUNT"
LIMIT_UNEXPECTED_FILE = "LIMIT_UNEXPECTED_FILE"
MISSING_FIELD_NAME = "MISSING_FIELD_NAME"
STORAGE_ERROR = "STORAGE_ERROR"
FILTER_ERROR = "FILTER_ERROR"
CLEANUP_ERROR = "CLEANUP_ERROR"
INVALID_OPTIONS = "INVALID_OPTIONS"

ERROR_MESSAGES = {
    LIMIT_PART_COUNT: "Too many parts",
    LIMIT_FILE_SIZE: "File too large",
    LIMIT_FILE_COUNT: "Too many files",
    LIMIT_FIELD_KEY: "Field name too long",
    LIMIT_FIELD_SIZE: "Field value too long",
    LIMIT_FIELD_COUNT: "Too many fields",
    LIMIT_UNEXPECTED_FILE: "Unexpected field",
    MISSING_FIELD_NAME: "Field name missing",
    STORAGE_ERROR: "Error storing file",
    FILTER_ERROR: "File filter failed",
    CLEANUP_ERROR: "Error removing stored file",
    INVALID_OPTIONS: "Invalid options",
}


class MulterError(ValueError):
    """Base error class for everything raised while ingesting a form.

    Every instance carries a ``code`` from :data:`ERROR_MESSAGES` and,
    where one applies, the name of the form field that caused it.
    """

    #: Cleanup failures collected while unwinding the request this error
    #: aborted.  Never raised on their own.
    storage_errors: list[CleanupError]

    def __init__(self, code: str, field: str | None = None, message: str | None = None) -> None:
        if message is None:
            message = ERROR_MESSAGES.get(code, code)
        super().__init__(message)
        self.code = code
        self.field = field
        self.message = message
        self.storage_errors = []

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, field={self.field!r})"


class LimitError(MulterError):
    """Raised when a configured limit, or a field's file budget, is
    exceeded.
    """

    pass


class StorageError(MulterError):
    """Raised when a storage engine fails to commit a file."""

    def __init__(self, field: str | None = None, message: str | None = None) -> None:
        super().__init__(STORAGE_ERROR, field, message)


class FilterError(MulterError):
    """Raised when the caller's file filter itself fails.  The original
    exception is available as ``__cause__``.
    """

    def __init__(self, field: str | None = None, message: str | None = None) -> None:
        super().__init__(FILTER_ERROR, field, message)


class CleanupError(MulterError):
    """A stored file could not be removed while unwinding a failed request.

    These are logged and attached to the primary error's
    ``storage_errors``; they are never the error a caller sees.
    """

    def __init__(self, field: str | None = None, message: str | None = None) -> None:
        super().__init__(CLEANUP_ERROR, field, message)


class InvalidOptionsError(MulterError, TypeError):
    """Raised at construction time for malformed configuration."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(INVALID_OPTIONS, None, message)
