from __future__ import annotations

import logging
from enum import IntEnum
from typing import TYPE_CHECKING

from .exceptions import LIMIT_UNEXPECTED_FILE, LimitError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable

    from .limits import FieldSpec
    from .storage import StoredFile


logger = logging.getLogger(__name__)


class Strategy(IntEnum):
    """The shape uploaded files are handed to the caller in.

    VALUE: one file, or ``None``.
    ARRAY: a list of files in arrival order.
    OBJECT: a dict of field name to list of files.
    NONE: no files at all; any file is an error.
    """

    VALUE = 0
    ARRAY = 1
    OBJECT = 2
    NONE = 3


class FileAppender:
    """Places each stored file into the structure its strategy asks for."""

    def __init__(self, strategy: Strategy, fields: Iterable[FieldSpec] = ()) -> None:
        self.strategy = strategy

        self._value: StoredFile | None = None
        self._array: list[StoredFile] = []
        self._object: dict[str, list[StoredFile]] = {}
        if strategy == Strategy.OBJECT:
            for field in fields:
                self._object.setdefault(field.name, [])

    def append(self, file: StoredFile) -> None:
        if self.strategy == Strategy.NONE:
            raise LimitError(LIMIT_UNEXPECTED_FILE, file.field_name)

        elif self.strategy == Strategy.VALUE:
            if self._value is not None:
                logger.debug("Second file for single-file field %r", file.field_name)
                raise LimitError(LIMIT_UNEXPECTED_FILE, file.field_name)
            self._value = file

        elif self.strategy == Strategy.ARRAY:
            self._array.append(file)

        elif self.strategy == Strategy.OBJECT:
            self._object.setdefault(file.field_name, []).append(file)

    @property
    def result(self) -> StoredFile | list[StoredFile] | dict[str, list[StoredFile]] | None:
        if self.strategy == Strategy.VALUE:
            return self._value
        elif self.strategy == Strategy.ARRAY:
            return self._array
        elif self.strategy == Strategy.OBJECT:
            return self._object
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(strategy={self.strategy.name})"
