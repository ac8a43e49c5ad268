"""Explicit success/failure values for the search fallback paths."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class FailureReason(str, Enum):
    """Why an operation produced no value."""
    SEMANTIC_UNAVAILABLE = "semantic_unavailable"
    SEMANTIC_ERROR = "semantic_error"
    INDEX_CORRUPTION = "index_corruption"
    QUERY_ERROR = "query_error"


@dataclass(frozen=True)
class Outcome:
    """Either a value or a typed failure reason.

    Call sites branch on ``ok`` / ``failure`` instead of catching exceptions,
    which keeps the degrade-to-lexical and rebuild-then-retry policies visible.
    """
    value: Any = None
    failure: Optional[FailureReason] = None
    detail: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: Any = None) -> 'Outcome':
        return cls(value=value)

    @classmethod
    def failed(cls, reason: FailureReason, detail: Optional[str] = None,
               error: Optional[BaseException] = None) -> 'Outcome':
        if detail is None and error is not None:
            detail = str(error)
        return cls(failure=reason, detail=detail, error=error)

    def unwrap_or(self, default: Any) -> Any:
        return self.value if self.ok else default
