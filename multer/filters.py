from __future__ import annotations

import logging
from enum import IntEnum
from typing import TYPE_CHECKING

from .exceptions import FilterError, InvalidOptionsError, MulterError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable
    from typing import Any

    from .source import FilePart

    FileFilterCallable = Callable[[Any, FilePart], bool]


logger = logging.getLogger(__name__)


class FilterResult(IntEnum):
    REJECT = 0
    ACCEPT = 1


def allow_all(request: Any, file: FilePart) -> bool:
    return True


class FileFilter:
    """Adapts a caller's ``file_filter(request, file) -> bool`` predicate to
    a tagged :class:`FilterResult`.

    A falsy return rejects the file, which is then skipped without error.
    Any exception escaping the predicate aborts the request as a
    :class:`FilterError` chained to the original; a :class:`MulterError`
    raised deliberately by the predicate passes through unchanged.
    """

    def __init__(self, func: FileFilterCallable | None = None) -> None:
        if func is not None and not callable(func):
            raise InvalidOptionsError("file_filter must be callable, not %r" % (func,))
        self.func = func if func is not None else allow_all

    def __call__(self, request: Any, file: FilePart) -> FilterResult:
        try:
            accepted = self.func(request, file)
        except MulterError:
            raise
        except Exception as e:
            logger.debug("File filter raised for field %r", file.field_name, exc_info=True)
            raise FilterError(file.field_name, "File filter failed: %s" % (e,)) from e

        if accepted:
            return FilterResult.ACCEPT

        logger.debug("File filter rejected %r for field %r", file.original_name, file.field_name)
        return FilterResult.REJECT

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(func={self.func!r})"
