"""alertsmith - sandboxed alert extensions with a live preview.

Extensions are small Python scripts exporting ``extension(context)`` (or
``extension(context, done)``). alertsmith runs them in a restricted
namespace where every import is checked against a capability whitelist,
persists the ``db`` value they return, and re-runs them on every source
change while streaming the alerts to connected browsers.

Quick Start:
    from alertsmith import ExtensionRunner, MemoryStore

    runner = ExtensionRunner("extensions", MemoryStore())
    alert_set = await runner.compute()
"""

from __future__ import annotations

from alertsmith.alerts import AlertSet, CurrentAlerts, normalize_alerts
from alertsmith.config import AlertsmithConfig, load_config
from alertsmith.errors import (
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
from alertsmith.persistence import (
    JsonFileStore,
    MemoryStore,
    PersistenceStore,
    apply_persistence,
)
from alertsmith.runner import ExtensionRunner
from alertsmith.sandbox import (
    InvocationResult,
    SandboxBuilder,
    classify,
    get_whitelist,
    invoke,
    is_allowed,
)
from alertsmith.sources import Extension, load_extensions

__version__ = "0.1.0"

__all__ = [
    "AlertSet",
    "AlertsmithConfig",
    "AlertsmithError",
    "CompilationError",
    "ConfigError",
    "CurrentAlerts",
    "DisallowedDependencyError",
    "ErrorCode",
    "ErrorContext",
    "Extension",
    "ExtensionRunner",
    "InvocationError",
    "InvocationResult",
    "JsonFileStore",
    "MemoryStore",
    "MissingEntryPointError",
    "PersistenceError",
    "PersistenceStore",
    "SandboxBuilder",
    "SourceReadError",
    "TransportError",
    "apply_persistence",
    "classify",
    "get_whitelist",
    "invoke",
    "is_allowed",
    "load_config",
    "load_extensions",
    "normalize_alerts",
]
