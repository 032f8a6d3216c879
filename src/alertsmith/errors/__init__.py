"""alertsmith error hierarchy.

Provides the exception classes raised by the sandbox, the invocation
protocol, the persistence hook and the live preview pipeline.
"""

from alertsmith.errors.base import (
    AlertsmithError,
    CompilationError,
    ConfigError,
    DisallowedDependencyError,
    ErrorCode,
    ErrorContext,
    InvocationError,
    MissingEntryPointError,
    PersistenceError,
    SourceReadError,
    TransportError,
)

__all__ = [
    "AlertsmithError",
    "CompilationError",
    "ConfigError",
    "DisallowedDependencyError",
    "ErrorCode",
    "ErrorContext",
    "InvocationError",
    "MissingEntryPointError",
    "PersistenceError",
    "SourceReadError",
    "TransportError",
]
