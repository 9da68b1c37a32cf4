"""
errors.py
~~~~~~~~~

Exception types raised while loading IDX datasets and running inference.

Each failure kind has its own class and carries the values needed to
report it (what was expected, what was found), so callers can branch on
the type instead of parsing messages.
"""

from typing import Optional


class FeedForwardError(Exception):
    """Base class for all errors raised by this package."""


class DatasetError(FeedForwardError):
    """Base class for failures while reading an IDX file."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class FormatError(DatasetError):
    """The file header does not describe the expected IDX layout."""

    def __init__(self, field: str, expected, actual, path: Optional[str] = None):
        super().__init__(
            f"Invalid {field} in '{path}': expected {expected}, got {actual}",
            path
        )
        self.field = field
        self.expected = expected
        self.actual = actual


class TruncatedDataError(DatasetError):
    """The file holds fewer (or, for labels, a different number of) bytes than declared."""

    def __init__(
        self,
        expected: int,
        actual: int,
        path: Optional[str] = None,
        item_index: Optional[int] = None
    ):
        where = f" at item {item_index}" if item_index is not None else ""
        super().__init__(
            f"Truncated data in '{path}'{where}: "
            f"expected {expected} bytes, got {actual}",
            path
        )
        self.expected = expected
        self.actual = actual
        self.item_index = item_index


class DataIOError(DatasetError):
    """The underlying filesystem read failed. The OSError is chained as __cause__."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not read '{path}': {reason}", path)
        self.reason = reason


class InferenceIndexError(FeedForwardError, IndexError):
    """An image, label, answer or pixel index is outside its valid range."""

    def __init__(self, kind: str, index: int, limit: int):
        super().__init__(
            f"{kind} index {index} out of range (must be in [0, {limit}))"
        )
        self.kind = kind
        self.index = index
        self.limit = limit
