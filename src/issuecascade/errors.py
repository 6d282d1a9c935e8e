"""Error taxonomy & redaction.

Errors are grouped by where they occur relative to the mutation boundary:

- planning / schema / validation errors abort the command before any write
- mutation errors are reported after best-effort application
- traversal and label problems are warnings, never exceptions

Public helpers:
- classify_error(exc) -> ErrorInfo
- redact(text) -> str
"""
from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ghp_[A-Za-z0-9]{20,40}"),  # GitHub classic tokens
    re.compile(r"gho_[A-Za-z0-9]{20,40}"),  # OAuth tokens (gh auth)
    re.compile(r"github_pat_\w{20,}"),  # GitHub fine-grained tokens
    re.compile(r"Bearer\s+[A-Za-z0-9_\-\.]{20,}"),
]

_REDACTION_PLACEHOLDER = "<redacted>"


class CascadeError(RuntimeError):
    """Base class for every failure the move command reports."""


class UsageError(CascadeError):
    """Invalid combination of command options."""


class PlanningError(CascadeError):
    pass


class NoValidIssuesError(PlanningError):
    def __init__(self, problems: Iterable[str] = ()):
        self.problems = list(problems)
        message = "no valid issues to update"
        if self.problems:
            message += ": " + "; ".join(self.problems)
        super().__init__(message)


class InvalidRepoFormat(PlanningError):
    def __init__(self, value: str):
        self.value = value
        super().__init__(f"invalid repository format: expected owner/repo, got {value!r}")


class SchemaError(CascadeError):
    pass


class SchemaFetchError(SchemaError):
    def __init__(self, project_id: str, cause: BaseException | None = None):
        self.project_id = project_id
        detail = f": {cause}" if cause else ""
        super().__init__(f"failed to get project fields for {project_id}{detail}")


class InvalidFieldValue(SchemaError):
    def __init__(self, field: str, value: str, available: Iterable[str]):
        self.field = field
        self.value = value
        self.available = sorted(available)
        super().__init__(
            f"invalid {field} value {value!r}\nAvailable values: {', '.join(self.available)}"
        )


@dataclass(eq=False)
class ValidationError(CascadeError):
    item_number: int
    message: str
    suggestion: str = ""

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.suggestion:
            return f"Issue #{self.item_number}: {self.message}\n\n{self.suggestion}"
        return f"Issue #{self.item_number}: {self.message}"


class ValidationErrors(CascadeError):
    """Every validation failure of one command, reported together."""

    def __init__(self, errors: Iterable[ValidationError] = ()):
        self.errors: list[ValidationError] = list(errors)
        super().__init__(self._render())

    def add(self, error: ValidationError) -> None:
        self.errors.append(error)
        self.args = (self._render(),)

    def __bool__(self) -> bool:
        return bool(self.errors)

    def __len__(self) -> int:
        return len(self.errors)

    def _render(self) -> str:
        if not self.errors:
            return ""
        if len(self.errors) == 1:
            return str(self.errors[0])
        lines = [f"Validation failed for {len(self.errors)} issues:", ""]
        for err in self.errors:
            lines.append(f"  - Issue #{err.item_number}: {err.message}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self._render()


class MutationError(CascadeError):
    def __init__(self, failures: Iterable[str], applied: int = 0):
        self.failures = list(failures)
        self.applied = applied
        summary = f"some issues could not be updated ({applied} applied, {len(self.failures)} failed)"
        if self.failures:
            summary += ":\n  " + "\n  ".join(self.failures)
        super().__init__(summary)


@dataclass
class ErrorInfo:
    category: str
    message: str
    original_type: str
    transient: bool = False
    details: dict[str, Any] | None = None


def redact(text: str) -> str:
    """Redact sensitive tokens in arbitrary text."""
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        redacted = pat.sub(_REDACTION_PLACEHOLDER, redacted)
    return redacted


def classify_error(exc: BaseException) -> ErrorInfo:
    """Best-effort classification of an exception.

    - rate limit / RATE_LIMITED / HTTP 429 -> 'github.rate_limit', transient
    - abuse detection -> 'github.abuse', transient
    - timeouts / connection resets -> 'network', transient
    - 401 / bad credentials -> 'auth'
    - 'Could not resolve' / NOT_FOUND -> 'not_found'
    - fallback -> 'generic'
    """
    msg = str(exc) if exc else ""
    low = msg.lower()
    status = getattr(exc, "status", None)
    name = exc.__class__.__name__

    if status == 429 or "rate limit" in low or "rate_limited" in low:
        return ErrorInfo("github.rate_limit", redact(msg), name, transient=True)
    if "abuse" in low:
        return ErrorInfo("github.abuse", redact(msg), name, transient=True)
    if any(k in low for k in ("timeout", "timed out", "connection reset", "temporarily unavailable")):
        return ErrorInfo("network", redact(msg), name, transient=True)
    if status == 401 or "bad credentials" in low or "not authenticated" in low:
        return ErrorInfo("auth", redact(msg), name)
    if "could not resolve" in low or "not_found" in low or status == 404:
        return ErrorInfo("not_found", redact(msg), name)
    return ErrorInfo("generic", redact(msg), name)


__all__ = [
    "CascadeError",
    "ErrorInfo",
    "InvalidFieldValue",
    "InvalidRepoFormat",
    "MutationError",
    "NoValidIssuesError",
    "PlanningError",
    "SchemaError",
    "SchemaFetchError",
    "UsageError",
    "ValidationError",
    "ValidationErrors",
    "classify_error",
    "redact",
]
