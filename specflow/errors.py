"""Exception hierarchy for SpecFlow.

Every error carries a machine-readable ``code`` and an optional
human ``suggestion`` that the workflow layer passes straight through
to callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional


class SpecflowError(Exception):
    """Base class for all SpecFlow errors."""

    code = "SPECFLOW_ERROR"

    def __init__(self, message: str, suggestion: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "code": self.code,
            "message": self.message,
            "suggestion": self.suggestion,
        }


class NotFoundError(SpecflowError):
    """An expected artifact does not exist."""

    code = "NOT_FOUND"

    def __init__(self, what: str, path: Path | str, suggestion: Optional[str] = None):
        super().__init__(f"{what} not found: {path}", suggestion)
        self.path = Path(path)


class InvalidFormatError(SpecflowError):
    """An artifact exists but cannot be parsed as its syntax."""

    code = "INVALID_FORMAT"

    def __init__(self, message: str, path: Optional[Path | str] = None, suggestion: Optional[str] = None):
        super().__init__(message, suggestion)
        self.path = Path(path) if path is not None else None


@dataclass(frozen=True, slots=True)
class SchemaViolation:
    """One structural problem inside a document."""

    path: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "reason": self.reason}

    def __str__(self) -> str:
        return f"{self.path or '<root>'}: {self.reason}"


class SchemaViolationError(SpecflowError):
    """A document parses but does not match the expected structure."""

    code = "SCHEMA_VIOLATION"

    def __init__(self, violations: List[SchemaViolation], suggestion: Optional[str] = None):
        summary = "; ".join(str(v) for v in violations[:5])
        super().__init__(f"State document failed validation: {summary}", suggestion)
        self.violations = list(violations)


class ValidationError(SpecflowError):
    """Caller-supplied input is malformed."""

    code = "VALIDATION_ERROR"
