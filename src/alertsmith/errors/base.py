"""Custom exception hierarchy for alertsmith.

Every alertsmith error inherits from AlertsmithError and includes:
- error_code: A unique ErrorCode enum for categorization
- context: ErrorContext with extension/capability/cycle details
- suggestions: List of actionable steps to resolve the issue

Example:
    try:
        await invoke(extension, context, builder)
    except DisallowedDependencyError as e:
        print(f"Error: {e}")
        print(f"Suggestions: {e.suggestions}")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """Standardized error codes for alertsmith.

    Error codes are organized by category:
    - E1xx: Capability (whitelist) errors
    - E2xx: Compilation errors
    - E3xx: Invocation errors
    - E4xx: Persistence errors
    - E5xx: Transport errors
    - E6xx: Source read errors
    - E7xx: Configuration errors
    - E9xx: Unknown/internal errors
    """

    DISALLOWED_DEPENDENCY = "E101"

    COMPILATION_FAILED = "E201"

    INVOCATION_FAILED = "E301"
    MISSING_ENTRY_POINT = "E302"

    PERSISTENCE_FAILED = "E401"

    TRANSPORT_FAILED = "E501"

    SOURCE_READ_FAILED = "E601"

    INVALID_CONFIG = "E701"

    UNKNOWN = "E999"

    @property
    def category(self) -> str:
        """Get the error category name."""
        code_num = int(self.value[1:])
        if code_num < 200:
            return "capability"
        elif code_num < 300:
            return "compilation"
        elif code_num < 400:
            return "invocation"
        elif code_num < 500:
            return "persistence"
        elif code_num < 600:
            return "transport"
        elif code_num < 700:
            return "source"
        elif code_num < 800:
            return "config"
        else:
            return "unknown"


@dataclass
class ErrorContext:
    """Structured context for error logging and debugging.

    Attributes:
        extension_name: Name of the extension being built or invoked
        capability: Capability name requested through require/import
        cycle: Reload cycle number, when raised inside the hot-reload pipeline
        path: File path involved (source files, whitelist, store)
        extra: Additional context-specific information
        timestamp: When the error occurred
    """

    extension_name: str | None = None
    capability: str | None = None
    cycle: int | None = None
    path: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for serialization."""
        result = {
            "extension_name": self.extension_name,
            "capability": self.capability,
            "cycle": self.cycle,
            "path": self.path,
            "extra": self.extra,
            "timestamp": self.timestamp.isoformat(),
        }
        return {k: v for k, v in result.items() if v is not None}

    def format_location(self) -> str:
        """Format the error location as a readable string."""
        parts = []
        if self.cycle is not None:
            parts.append(f"cycle={self.cycle}")
        if self.extension_name:
            parts.append(f"extension={self.extension_name}")
        if self.path:
            parts.append(f"path={self.path}")
        return " > ".join(parts) if parts else "unknown location"


class AlertsmithError(Exception):
    """Base exception for all alertsmith errors.

    Attributes:
        error_code: Unique ErrorCode for this error type
        message: Human-readable error description
        context: ErrorContext with execution details
        suggestions: List of actionable steps to resolve the issue
        cause: The underlying exception (if any)
    """

    error_code: ErrorCode = ErrorCode.UNKNOWN
    default_message: str = "An unexpected error occurred"
    default_suggestions: list[str] = []

    def __init__(
        self,
        message: str | None = None,
        error_code: ErrorCode | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
        suggestions: list[str] | None = None,
        **extra_context: Any,
    ) -> None:
        self.message = message or self.default_message
        self.error_code = error_code or self.error_code
        self.context = context or ErrorContext()
        self.cause = cause
        self._suggestions = suggestions

        if extra_context:
            self.context.extra.update(extra_context)

        super().__init__(self.message)

    @property
    def suggestions(self) -> list[str]:
        """Get actionable suggestions for resolving this error."""
        if self._suggestions is not None:
            return self._suggestions
        return self.default_suggestions.copy()

    @property
    def extension_name(self) -> str | None:
        return self.context.extension_name

    def __str__(self) -> str:
        parts = [f"[{self.error_code.value}] {self.message}"]

        location = self.context.format_location()
        if location != "unknown location":
            parts.append(f"at {location}")

        return " | ".join(parts)

    def format_verbose(self) -> str:
        """Format error with full details including suggestions."""
        lines = [
            f"Error [{self.error_code.value}]: {self.message}",
            "",
        ]

        location = self.context.format_location()
        if location != "unknown location":
            lines.append(f"Location: {location}")

        if self.cause is not None:
            lines.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")

        if self.suggestions:
            lines.append("")
            lines.append("Suggestions:")
            for suggestion in self.suggestions:
                lines.append(f"  - {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error_code": self.error_code.value,
            "error_type": self.__class__.__name__,
            "message": self.message,
            "suggestions": self.suggestions,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


class DisallowedDependencyError(AlertsmithError):
    """An extension requested a capability that is not whitelisted.

    Fatal to the invocation that requested it. The requested name is kept
    in ``capability`` (and in ``context.capability``).
    """

    error_code = ErrorCode.DISALLOWED_DEPENDENCY
    default_message = "Disallowed dependency"
    default_suggestions = [
        "Use only the modules listed in the capability whitelist",
        "Run 'alertsmith check <name>' to test a capability name",
    ]

    def __init__(self, capability: str, **kwargs: Any) -> None:
        self.capability = capability
        context = kwargs.pop("context", None) or ErrorContext()
        context.capability = capability
        super().__init__(
            message=kwargs.pop("message", None) or f"Disallowed dependency: {capability}",
            context=context,
            **kwargs,
        )


class CompilationError(AlertsmithError):
    """Extension source could not be compiled.

    Raised for syntax errors; aborts the current reload cycle but never
    the process.
    """

    error_code = ErrorCode.COMPILATION_FAILED
    default_message = "Extension source failed to compile"
    default_suggestions = [
        "Check the reported line for syntax errors",
        "Make sure the file is valid Python 3",
    ]

    def __init__(
        self,
        message: str | None = None,
        lineno: int | None = None,
        **kwargs: Any,
    ) -> None:
        self.lineno = lineno
        super().__init__(message=message, **kwargs)
        if lineno is not None:
            self.context.extra.setdefault("lineno", lineno)


class InvocationError(AlertsmithError):
    """An extension raised (or its awaitable failed) while running."""

    error_code = ErrorCode.INVOCATION_FAILED
    default_message = "Extension raised an error"
    default_suggestions = [
        "Check the extension's stack trace in the console",
        "Run 'alertsmith run' to reproduce outside of live mode",
    ]


class MissingEntryPointError(InvocationError):
    """The extension did not export a callable ``extension`` entry point."""

    error_code = ErrorCode.MISSING_ENTRY_POINT
    default_message = "Extension does not export a callable 'extension'"
    default_suggestions = [
        "Define 'def extension(context): ...' at module level",
        "Or assign it explicitly: module.exports['extension'] = my_function",
    ]


class PersistenceError(AlertsmithError):
    """The persistence store failed to upsert or clear a record."""

    error_code = ErrorCode.PERSISTENCE_FAILED
    default_message = "Failed to update persisted extension data"
    default_suggestions = [
        "Check that the store file is writable",
        "Make sure the 'db' value is JSON serializable",
    ]


class TransportError(AlertsmithError):
    """Sending an event to a viewer session failed.

    Isolated to that one session; never aborts a reload cycle.
    """

    error_code = ErrorCode.TRANSPORT_FAILED
    default_message = "Failed to send event to viewer"


class SourceReadError(AlertsmithError):
    """A source file (extension or whitelist) could not be read."""

    error_code = ErrorCode.SOURCE_READ_FAILED
    default_message = "Failed to read source file"
    default_suggestions = [
        "Check that the file exists and is readable",
    ]


class ConfigError(AlertsmithError):
    """Configuration could not be loaded or is invalid."""

    error_code = ErrorCode.INVALID_CONFIG
    default_message = "Invalid configuration"
    default_suggestions = [
        "Check alertsmith.yaml against the documented settings",
        "Check ALERTSMITH_* environment variables",
    ]
