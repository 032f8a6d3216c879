"""Invocation protocol for extension entry points.

An extension exports ``extension`` in one of two styles, told apart only by
the number of positional parameters it declares:

- direct style, ``def extension(context)``: the return value is the result
  (awaited when it is awaitable, so ``async def`` works too)
- callback style, ``def extension(context, done)``: the result is whatever
  is passed to ``done``

The style is decided once by classify() and dispatched on the resulting
variant.

Example:
    >>> result = await invoke(extension, {"params": {}}, builder)
    >>> result.value
    {'alerts': []}
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from alertsmith.errors import (
    AlertsmithError,
    ErrorContext,
    InvocationError,
    MissingEntryPointError,
)
from alertsmith.sandbox.context import ExecutionHandle, SandboxBuilder
from alertsmith.sources import Extension

logger = logging.getLogger(__name__)

_POSITIONAL = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)


@dataclass(frozen=True)
class InvocationResult:
    """Raw value produced by an extension's entry point."""

    value: Any

    @property
    def has_db(self) -> bool:
        """Whether the value carries a persistence directive."""
        return isinstance(self.value, Mapping) and "db" in self.value

    @property
    def db(self) -> Any:
        return self.value["db"] if self.has_db else None


@dataclass(frozen=True)
class SyncExtension:
    """Entry point called as ``entry(context)``."""

    entry: Callable[..., Any]


@dataclass(frozen=True)
class CallbackExtension:
    """Entry point called as ``entry(context, complete)``."""

    entry: Callable[..., Any]


EntryPoint = SyncExtension | CallbackExtension


def declared_arity(entry: Callable[..., Any]) -> int:
    """Count the positional parameters an entry point declares."""
    try:
        signature = inspect.signature(entry)
    except (TypeError, ValueError):
        return 1
    return sum(1 for param in signature.parameters.values() if param.kind in _POSITIONAL)


def classify(entry: Callable[..., Any]) -> EntryPoint:
    """Decide the invocation style of an entry point by its arity."""
    if declared_arity(entry) > 1:
        return CallbackExtension(entry)
    return SyncExtension(entry)


async def _call_sync(variant: SyncExtension, context: Any) -> Any:
    value = variant.entry(context)
    if inspect.isawaitable(value):
        value = await value
    return value


async def _call_with_callback(variant: CallbackExtension, context: Any) -> Any:
    loop = asyncio.get_running_loop()
    completed: asyncio.Future[Any] = loop.create_future()

    def complete(value: Any = None) -> None:
        if not completed.done():
            completed.set_result(value)

    returned = variant.entry(context, complete)
    if not inspect.isawaitable(returned):
        return await completed

    # complete() decides the value, but the coroutine is awaited to the end:
    # a failing coroutine always fails the call, and none outlives it.
    task = asyncio.ensure_future(returned)
    try:
        done, _ = await asyncio.wait({task, completed}, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            task.result()
            return await completed
        value = completed.result()
        await task
        return value
    finally:
        if not task.done():
            task.cancel()


async def call_entry_point(variant: EntryPoint, context: Any) -> Any:
    """Dispatch on the invocation style."""
    if isinstance(variant, CallbackExtension):
        return await _call_with_callback(variant, context)
    return await _call_sync(variant, context)


async def invoke(
    extension: Extension,
    context: Any,
    builder: SandboxBuilder,
    extra_bindings: Mapping[str, Any] | None = None,
) -> InvocationResult:
    """Build an extension's sandbox and run its entry point.

    Args:
        extension: Extension to run
        context: Value passed as the entry point's first argument, or a
            callable receiving the built ExecutionHandle and returning it
            (used to derive parameters from the exported config)
        builder: Sandbox builder (holds the whitelist)
        extra_bindings: Additional names made visible to the script

    Returns:
        InvocationResult wrapping the entry point's value

    Raises:
        CompilationError: If the source does not compile
        DisallowedDependencyError: If a non-whitelisted capability is requested
        InvocationError: If the entry point is missing or fails
    """
    handle = builder.build(extension.name, extension.source, extra_bindings)
    entry = handle.entry_point
    if entry is None:
        raise MissingEntryPointError(context=ErrorContext(extension_name=extension.name))

    variant = classify(entry)
    logger.debug(f"Invoking {extension.name} as {type(variant).__name__}")

    if callable(context):
        context = context(handle)

    try:
        value = await call_entry_point(variant, context)
    except AlertsmithError as e:
        if e.context.extension_name is None:
            e.context.extension_name = extension.name
        raise
    except Exception as e:
        raise InvocationError(
            f"{extension.name}: {type(e).__name__}: {e}",
            context=ErrorContext(extension_name=extension.name),
            cause=e,
        ) from e

    return InvocationResult(value=value)


async def get_properties(extension: Extension, builder: SandboxBuilder) -> dict[str, Any]:
    """Run a script only to read its exported ``config``.

    Returns an empty dict when the extension exports no config.
    """
    handle: ExecutionHandle = builder.build(extension.name, extension.source)
    return handle.config


def resolve_params(properties: Mapping[str, Any], overrides: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Compute the parameter values for an invocation.

    Every parameter declared in ``config["params"]`` gets its ``default``
    value, then configured overrides win.
    """
    params: dict[str, Any] = {}
    declared = properties.get("params") or {}
    if isinstance(declared, Mapping):
        for name, spec in declared.items():
            params[name] = spec.get("default") if isinstance(spec, Mapping) else None
    params.update(overrides or {})
    return params
