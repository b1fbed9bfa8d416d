"""
Typed errors raised by the alert engine.

Each error subclasses a builtin so callers that only know about ValueError or
LookupError keep working.
"""


class AlertEngineError(Exception):
    """Base class for all alert engine errors."""


class InvalidRangeError(AlertEngineError, ValueError):
    """A record query was made with start > end."""

    def __init__(self, start: int, end: int) -> None:
        super().__init__(f"Invalid time range: start {start} is after end {end}")
        self.start = start
        self.end = end


class UnknownCategoryError(AlertEngineError, LookupError):
    """The alert factory has no constructor for the requested category."""

    def __init__(self, category: object) -> None:
        super().__init__(f"Unknown alert category: {category!r}")
        self.category = category


class MalformedRecordError(AlertEngineError, ValueError):
    """An ingestion line could not be decoded into a record."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(f"Malformed record {line!r}: {reason}")
        self.line = line
        self.reason = reason
