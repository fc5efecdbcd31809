"""
Errors and warnings raised by the matching engine.

Fatal conditions are exceptions; recoverable ones are warning categories
emitted with ``warnings.warn`` so callers can filter or escalate them.
"""

from typing import Any, Optional


class MatchingError(Exception):
    """Base class for matching engine errors."""
    pass


class ConfigurationError(MatchingError, ValueError):
    """
    Invalid run configuration or input tables.

    Raised before any case is processed.
    """

    def __init__(self, message: str, column: Optional[str] = None, table: Optional[str] = None):
        super().__init__(message)
        self.column = column
        self.table = table


class TaskFailure(MatchingError):
    """A single case failed while matching; the whole run is aborted."""

    def __init__(self, case_id: Any, position: int, cause: BaseException):
        super().__init__(
            f"Matching failed for case {case_id} (position {position}): "
            f"{type(cause).__name__}: {cause}"
        )
        self.case_id = case_id
        self.position = position


class ShortfallWarning(UserWarning):
    """Fewer eligible controls than requested for a case."""
    pass


class ParallelismDowngradeNotice(UserWarning):
    """More than one worker was requested for a method that must run serially."""
    pass
