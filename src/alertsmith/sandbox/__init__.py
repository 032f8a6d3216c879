"""Sandboxed execution of extension scripts.

- whitelist: capability whitelist loading and matching
- context: restricted execution contexts (module shim, resolver, console)
- invocation: direct/callback entry point protocol
"""

from alertsmith.sandbox.context import (
    CapabilityResolver,
    ExecutionHandle,
    ExtensionConsole,
    ModuleProxy,
    ModuleRecord,
    SandboxBuilder,
    SandboxGuards,
    compile_script,
    run_isolated,
)
from alertsmith.sandbox.invocation import (
    CallbackExtension,
    InvocationResult,
    SyncExtension,
    classify,
    get_properties,
    invoke,
    resolve_params,
)
from alertsmith.sandbox.whitelist import (
    DEFAULT_WHITELIST_PATH,
    Whitelist,
    get_whitelist,
    is_allowed,
    load_whitelist,
    parse_whitelist,
    reset_whitelist,
)

__all__ = [
    "CallbackExtension",
    "CapabilityResolver",
    "DEFAULT_WHITELIST_PATH",
    "ExecutionHandle",
    "ExtensionConsole",
    "InvocationResult",
    "ModuleProxy",
    "ModuleRecord",
    "SandboxBuilder",
    "SandboxGuards",
    "SyncExtension",
    "Whitelist",
    "classify",
    "compile_script",
    "get_properties",
    "get_whitelist",
    "invoke",
    "is_allowed",
    "load_whitelist",
    "parse_whitelist",
    "reset_whitelist",
    "resolve_params",
    "run_isolated",
]
