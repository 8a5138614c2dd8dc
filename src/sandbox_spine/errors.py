"""
Structured error types for sandbox-spine.

Every failure raised by the sandbox lifecycle is a ``SandboxError``. Errors
carry a category, structured context (run, stage, container, image) and the
chained underlying cause so that callers, loggers and the diagnostics
printer all see the same metadata.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        SandboxError                           │
        │            (category, context, cause, to_dict)                │
        ├──────────────────────────────────────────────────────────────┤
        │  DockerNotFoundError      DockerCommandError                  │
        │  (PLATFORM)               (PLATFORM, exit code, stderr)       │
        │                                                               │
        │  NetworkCreationError     DatabaseStartError                  │
        │  (NETWORK)                (DATABASE)                          │
        │                                                               │
        │  MigrationError           ServiceStartError                   │
        │  (SCHEMA)                 (SERVICE, diagnostics)              │
        │                                                               │
        │  SandboxStateError                                            │
        │  (LIFECYCLE)                                                  │
        └──────────────────────────────────────────────────────────────┘

        CleanupWarning (UserWarning) — logged during teardown, never raised.

Guardrails:
    ❌ DON'T: Wrap a stage failure in a different stage's error type
    ✅ DO: Raise the stage's own error and pass the platform error as cause=

    ❌ DON'T: Put passwords or secret material into error context
    ✅ DO: Use masked URLs (see ``sandbox_spine.database.mask_url``)

Tags:
    errors, exceptions, sandbox, docker, lifecycle
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Classification of sandbox failures."""

    PLATFORM = "PLATFORM"  # Docker CLI missing or failing
    NETWORK = "NETWORK"  # Fabric allocation
    DATABASE = "DATABASE"  # Database sandbox or connection
    SCHEMA = "SCHEMA"  # Schema application
    SERVICE = "SERVICE"  # Service-under-test sandbox
    LIFECYCLE = "LIFECYCLE"  # Orchestrator misuse
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to a ``SandboxError``."""

    run_id: str | None = None
    stage: str | None = None
    container: str | None = None
    image: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ("run_id", "stage", "container", "image"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SandboxError(Exception):
    """Base exception for all sandbox-spine errors.

    Subclasses set ``default_category``. The optional ``cause`` is chained
    as ``__cause__`` so tracebacks show the platform error underneath.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SandboxError:
        """Add context to this error (fluent API).

        Usage:
            raise DatabaseStartError("boom").with_context(stage="database", image=image)
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# PLATFORM ERRORS
# =============================================================================


class DockerNotFoundError(SandboxError):
    """Raised when the ``docker`` CLI is not on PATH."""

    default_category = ErrorCategory.PLATFORM


_STATUS_RE = re.compile(r"(?:status(?: code)?[:= ]+|\()(\d{3})\b", re.IGNORECASE)


class DockerCommandError(SandboxError):
    """A ``docker`` CLI invocation exited non-zero or timed out.

    ``status_code`` is the HTTP status the daemon reported, when the
    message carries one (``... (409)`` / ``status code 409``).
    """

    default_category = ErrorCategory.PLATFORM

    def __init__(
        self,
        message: str,
        *,
        args: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.command = list(args or [])
        self.returncode = returncode
        self.stderr = stderr
        match = _STATUS_RE.search(stderr or message)
        self.status_code: int | None = int(match.group(1)) if match else None

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["returncode"] = self.returncode
        if self.status_code is not None:
            result["status_code"] = self.status_code
        return result


# =============================================================================
# STAGE ERRORS
# =============================================================================


class NetworkCreationError(SandboxError):
    """The platform could not allocate an isolated network."""

    default_category = ErrorCategory.NETWORK


class DatabaseStartError(SandboxError):
    """The database sandbox did not start, or no connection could be made."""

    default_category = ErrorCategory.DATABASE


class MigrationError(SandboxError):
    """The schema definition could not be applied. Never retried."""

    default_category = ErrorCategory.SCHEMA


class ServiceStartError(SandboxError):
    """The service sandbox failed to launch or never became ready.

    ``diagnostics`` holds the best-effort log text; it is the explicit
    "none found" marker when no log source resolved.
    """

    default_category = ErrorCategory.SERVICE

    def __init__(
        self,
        message: str,
        *,
        diagnostics: str = "",
        record: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.diagnostics = diagnostics
        self.record = record

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["diagnostics"] = self.diagnostics
        return result


class SandboxStateError(SandboxError):
    """An orchestrator operation was called from a state that forbids it."""

    default_category = ErrorCategory.LIFECYCLE


# =============================================================================
# WARNINGS
# =============================================================================


class CleanupWarning(UserWarning):
    """A teardown step failed. Logged and collected, never raised."""

    def __init__(self, step: str, cause: BaseException):
        super().__init__(f"cleanup step {step!r} failed: {cause}")
        self.step = step
        self.cause = cause


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SandboxError",
    "DockerNotFoundError",
    "DockerCommandError",
    "NetworkCreationError",
    "DatabaseStartError",
    "MigrationError",
    "ServiceStartError",
    "SandboxStateError",
    "CleanupWarning",
]
