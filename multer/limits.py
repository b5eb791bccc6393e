from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from numbers import Number
from typing import TYPE_CHECKING

from .exceptions import LIMIT_UNEXPECTED_FILE, InvalidOptionsError, LimitError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable
    from typing import Any, TypedDict

    class Limits(TypedDict, total=False):
        field_name_size: int | float
        field_size: int | float
        fields: int | float
        file_size: int | float
        files: int | float
        parts: int | float
        header_pairs: int | float


logger = logging.getLogger(__name__)

# All sizes are in bytes.
DEFAULT_LIMITS: Limits = {
    "field_name_size": 100,
    "field_size": 1 * 1024 * 1024,
    "fields": float("inf"),
    "file_size": float("inf"),
    "files": float("inf"),
    "parts": float("inf"),
    "header_pairs": 2000,
}


def make_limits(limits: Mapping[str, Any] | None = None) -> Limits:
    """Merge the caller's limits over :data:`DEFAULT_LIMITS`, rejecting
    unknown keys and anything that isn't a non-negative number.
    """
    merged: Limits = DEFAULT_LIMITS.copy()
    if limits is None:
        return merged

    if not isinstance(limits, Mapping):
        raise InvalidOptionsError("limits must be a mapping, not %r" % (limits,))

    for key, value in limits.items():
        if key not in DEFAULT_LIMITS:
            raise InvalidOptionsError("Unknown limit: %r" % (key,))
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, Number) or value < 0:
            raise InvalidOptionsError("Limit %r must be a non-negative number, not %r" % (key, value))
        merged[key] = value  # type: ignore[literal-required]

    return merged


class FieldSpec:
    """A declared file field: the name files may arrive under and how many
    of them are allowed.  ``max_count`` of ``None`` means unbounded.
    """

    def __init__(self, name: str, max_count: int | None = None) -> None:
        if not isinstance(name, str) or not name:
            raise InvalidOptionsError("Field name must be a non-empty string, not %r" % (name,))
        if max_count is not None and (
            isinstance(max_count, bool) or not isinstance(max_count, int) or max_count < 1
        ):
            raise InvalidOptionsError("max_count for %r must be a positive integer, not %r" % (name, max_count))

        self._name = name
        self._max_count = max_count

    @classmethod
    def from_value(cls, value: FieldSpec | Mapping[str, Any] | str) -> FieldSpec:
        if isinstance(value, FieldSpec):
            return value
        if isinstance(value, str):
            return cls(value)
        if isinstance(value, Mapping):
            if "name" not in value:
                raise InvalidOptionsError("Field declaration is missing 'name': %r" % (value,))
            return cls(value["name"], value.get("max_count"))
        raise InvalidOptionsError("Expected a field declaration, not %r" % (value,))

    @property
    def name(self) -> str:
        return self._name

    @property
    def max_count(self) -> int | None:
        return self._max_count

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FieldSpec):
            return self.name == other.name and self.max_count == other.max_count
        return NotImplemented

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, max_count={self.max_count!r})"


class LimitEnforcer:
    """Tracks how many more files each declared field may receive.

    One enforcer is built per request.  ``admit`` checks and decrements a
    field's budget in a single locked step, so two admissions can never
    both take the last remaining slot.  Built with ``fields=None`` the
    enforcer admits files under any name.
    """

    def __init__(self, fields: Iterable[FieldSpec] | None = None) -> None:
        self._lock = threading.Lock()
        self._unbounded = fields is None
        self._files_left: dict[str, int | float] = {}

        for field in fields or ():
            if field.max_count is None:
                self._files_left[field.name] = float("inf")
            else:
                self._files_left[field.name] = field.max_count

    def admit(self, field_name: str) -> None:
        """Take one slot from ``field_name``'s budget, or raise
        :class:`LimitError` with ``LIMIT_UNEXPECTED_FILE``.
        """
        if self._unbounded:
            return

        with self._lock:
            left = self._files_left.get(field_name, 0)
            if left <= 0:
                logger.debug("Rejecting file for field %r, no files left", field_name)
                raise LimitError(LIMIT_UNEXPECTED_FILE, field_name)
            self._files_left[field_name] = left - 1

    def remaining(self, field_name: str) -> int | float:
        if self._unbounded:
            return float("inf")
        with self._lock:
            return self._files_left.get(field_name, 0)

    def __repr__(self) -> str:
        if self._unbounded:
            return f"{self.__class__.__name__}(unbounded)"
        return f"{self.__class__.__name__}(files_left={self._files_left!r})"
