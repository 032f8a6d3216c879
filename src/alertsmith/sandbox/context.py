"""Restricted execution contexts for extension scripts.

Scripts are compiled with RestrictedPython, so names and attributes starting
with ``_`` are rejected up front, and every attribute read, item access,
iteration and attribute write goes through a guard of this module.

Every build gets a brand new namespace holding exactly:

- ``module`` / ``exports``: a per-build module record and its exports dict
- ``console``: output tagged with the extension name (``print`` goes there too)
- ``require``: capability resolver gated by the whitelist
- ``render``: Markdown to preview HTML
- restricted builtins whose ``__import__`` goes through the same resolver
- caller-supplied extra bindings

Modules reach a script only as ModuleProxy views: public attributes only,
and a module re-exported by another one is visible only if it is itself
whitelisted.

Example:
    >>> builder = SandboxBuilder(whitelist=("json",))
    >>> handle = builder.build("hello", "def extension(ctx):\\n    return 'hi'\\n")
    >>> handle.entry_point({})
    'hi'
"""

from __future__ import annotations

import builtins
import functools
import importlib
import logging
import operator
import re
import weakref
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import CodeType, FrameType, ModuleType, TracebackType
from typing import Any

from RestrictedPython import RestrictingNodeTransformer, compile_restricted_exec, safe_builtins
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
)

from alertsmith.errors import (
    AlertsmithError,
    CompilationError,
    DisallowedDependencyError,
    ErrorContext,
    InvocationError,
)
from alertsmith.rendering import render_markdown
from alertsmith.sandbox.whitelist import Whitelist, is_allowed

logger = logging.getLogger(__name__)

extension_logger = logging.getLogger("alertsmith.extensions")

ENTRY_POINT = "extension"
CONFIG_EXPORT = "config"

# Builtins an extension never gets: file access, dynamic code execution,
# frame introspection and interactive helpers.
BLOCKED_BUILTINS = frozenset(
    {
        "breakpoint",
        "compile",
        "copyright",
        "credits",
        "dir",
        "eval",
        "exec",
        "exit",
        "globals",
        "help",
        "input",
        "license",
        "locals",
        "open",
        "quit",
        "type",
        "vars",
    }
)

# Pure builtins added on top of RestrictedPython's safe_builtins.
EXTRA_BUILTINS = (
    "all",
    "any",
    "classmethod",
    "dict",
    "enumerate",
    "filter",
    "frozenset",
    "iter",
    "list",
    "map",
    "max",
    "min",
    "next",
    "object",
    "property",
    "reversed",
    "set",
    "staticmethod",
    "sum",
    "super",
)

# Public attributes that still lead to frames, code or host globals.
INSPECT_ATTRIBUTES = frozenset(
    {
        "ag_await",
        "ag_code",
        "ag_frame",
        "cr_await",
        "cr_code",
        "cr_frame",
        "f_back",
        "f_builtins",
        "f_code",
        "f_globals",
        "f_locals",
        "gi_code",
        "gi_frame",
        "gi_yieldfrom",
        "tb_frame",
        "tb_next",
    }
)

INPLACE_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "^=": operator.ixor,
    "|=": operator.ior,
    "@=": operator.imatmul,
}

_ERROR_LINE = re.compile(r"^Line (\d+): (.*)$", re.DOTALL)

_MISSING = object()


class ExtensionPolicy(RestrictingNodeTransformer):
    """RestrictedPython policy that also accepts coroutine syntax.

    ``async def`` bodies are checked like ordinary functions; ``async for``
    and ``async with`` keep their names checked but are not iteration-guarded.
    """

    def visit_AsyncFunctionDef(self, node):
        return self.visit_FunctionDef(node)

    def visit_Await(self, node):
        return self.node_contents_visit(node)

    def visit_AsyncFor(self, node):
        return self.node_contents_visit(node)

    def visit_AsyncWith(self, node):
        return self.node_contents_visit(node)


@dataclass
class ModuleRecord:
    """The ``module`` object an extension populates.

    Attributes:
        id: Extension name
        exports: Exported names; ``extension`` is the entry point
        loaded: Set once the script has run to completion
    """

    id: str
    exports: dict[str, Any] = field(default_factory=dict)
    loaded: bool = False

    @property
    def filename(self) -> str:
        return f"{self.id}.py"


class ExtensionConsole:
    """Console handed to an extension; every line is tagged with its name."""

    def __init__(self, name: str) -> None:
        self.name = name

    def _emit(self, level: int, args: tuple[Any, ...], sep: str = " ") -> None:
        content = sep.join(str(arg) for arg in args)
        extension_logger.log(level, f"ext [{self.name}]: {content}")

    def log(self, *args: Any) -> None:
        self._emit(logging.INFO, args)

    info = log

    def warn(self, *args: Any) -> None:
        self._emit(logging.WARNING, args)

    def error(self, *args: Any) -> None:
        self._emit(logging.ERROR, args)

    def print(self, *args: Any, sep: str | None = " ", end: str | None = "\n", **_: Any) -> None:
        """Drop-in replacement for the ``print`` builtin."""
        self._emit(logging.INFO, args, sep if sep is not None else " ")


class ExtensionPrinter:
    """``print`` collector used by compiled scripts.

    RestrictedPython rewrites ``print(...)`` into calls on one of these;
    lines go to the extension console and are kept for ``printed``.
    """

    def __init__(self, console: ExtensionConsole, _getattr_: Any = None) -> None:
        self.console = console
        self.lines: list[str] = []

    def _call_print(self, *objects: Any, sep: str | None = " ", end: str | None = "\n", **_: Any) -> None:
        self.lines.append((sep if sep is not None else " ").join(str(obj) for obj in objects))
        self.console.print(*objects, sep=sep)

    def __call__(self) -> str:
        return "\n".join(self.lines)


class ModuleProxy:
    """Read-only view of a module handed to an extension."""

    __slots__ = ("_module", "_capability", "_resolver")

    def __init__(self, module: ModuleType, capability: str, resolver: CapabilityResolver) -> None:
        object.__setattr__(self, "_module", module)
        object.__setattr__(self, "_capability", capability)
        object.__setattr__(self, "_resolver", resolver)

    def __getattr__(self, name: str) -> Any:
        return self._resolver.module_attribute(self._module, self._capability, name)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"capability {self._capability!r} is read-only")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"capability {self._capability!r} is read-only")

    def __repr__(self) -> str:
        return f"<capability {self._capability!r}>"


class CapabilityResolver:
    """Resolves capabilities requested by one extension.

    Requests are checked against the whitelist; allowed names resolve to a
    ModuleProxy over the real module (``a/b`` is imported as ``a.b``),
    anything else raises DisallowedDependencyError carrying the requested
    name.
    """

    def __init__(self, whitelist: Whitelist, extension_name: str) -> None:
        self.whitelist = whitelist
        self.extension_name = extension_name

    def _reject(self, name: str) -> DisallowedDependencyError:
        return DisallowedDependencyError(
            name,
            context=ErrorContext(extension_name=self.extension_name),
        )

    def allows(self, name: str) -> bool:
        return is_allowed(self.whitelist, name) or is_allowed(self.whitelist, name.replace(".", "/"))

    def names_exactly(self, name: str) -> bool:
        return name in self.whitelist or name.replace(".", "/") in self.whitelist

    def require(self, name: str) -> ModuleProxy:
        if not isinstance(name, str) or not is_allowed(self.whitelist, name):
            raise self._reject(str(name))
        dotted = name.replace("/", ".")
        return ModuleProxy(importlib.import_module(dotted), dotted, self)

    def import_module(
        self,
        name: str,
        globals: Mapping[str, Any] | None = None,
        locals: Mapping[str, Any] | None = None,
        fromlist: tuple[str, ...] | list[str] | None = (),
        level: int = 0,
    ) -> ModuleProxy:
        """``__import__`` replacement used by ``import`` statements."""
        if level:
            raise self._reject("." * level + name)

        allowed = self.allows(name) or bool(
            fromlist and all(item != "*" and self.allows(f"{name}.{item}") for item in fromlist)
        )
        if not allowed:
            raise self._reject(name)

        module = builtins.__import__(name, globals, locals, fromlist or (), 0)
        capability = name if fromlist else name.partition(".")[0]
        return ModuleProxy(module, capability, self)

    def module_attribute(self, module: ModuleType, capability: str, name: str) -> Any:
        """Read a public attribute of a proxied module.

        A module that is not whitelisted itself (``os`` when only ``os.path``
        is) exposes only whitelisted sub-names. Module values are handed out
        only when the module is whitelisted under its own name, or when the
        qualified name is a whitelist entry (``os.path`` is ``posixpath``).
        """
        if name.startswith("_"):
            raise AttributeError(f"{capability!r} has no public attribute {name!r}")

        qualified = f"{capability}.{name}"
        if not self.allows(capability) and not self.allows(qualified):
            raise self._reject(qualified)

        try:
            value = getattr(module, name)
        except AttributeError:
            if not self.allows(qualified):
                raise
            value = importlib.import_module(qualified)

        if isinstance(value, ModuleType):
            if not (self.allows(value.__name__) or self.names_exactly(qualified)):
                raise self._reject(qualified)
            return ModuleProxy(value, qualified, self)
        return value

    def wrap_module(self, module: ModuleType) -> ModuleProxy:
        """Proxy a module reached through some other object."""
        if not self.allows(module.__name__):
            raise self._reject(module.__name__)
        return ModuleProxy(module, module.__name__, self)


def inplace_var(op: str, target: Any, value: Any) -> Any:
    """``x op= value`` for names, as RestrictedPython compiles it."""
    return INPLACE_OPERATORS[op](target, value)


def apply_call(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    return func(*args, **kwargs)


class SandboxGuards:
    """Runtime hooks called by restricted code of one build.

    Attributes:
        resolver: Capability resolver of the build
        classes: Classes the script defined; only these (and plain
            containers) accept attribute writes
    """

    def __init__(self, resolver: CapabilityResolver) -> None:
        self.resolver = resolver
        self.classes: weakref.WeakSet[type] = weakref.WeakSet()

    def build_class(self, func: Callable[..., Any], name: str, *bases: Any, **kwargs: Any) -> Any:
        cls = builtins.__build_class__(func, name, *bases, **kwargs)
        if isinstance(cls, type):
            self.classes.add(cls)
        return cls

    def getattr(self, obj: Any, name: str, default: Any = _MISSING) -> Any:
        if not isinstance(name, str):
            raise TypeError("attribute name must be a string")
        if name.startswith("_") or name in INSPECT_ATTRIBUTES:
            raise AttributeError(f'"{name}" is not available to extensions')
        if isinstance(obj, str) and name in ("format", "format_map"):
            raise NotImplementedError("str.format is not available to extensions, use f-strings")

        try:
            value = getattr(obj, name)
        except AttributeError:
            if default is _MISSING:
                raise
            return default

        if isinstance(value, ModuleType):
            return self.resolver.wrap_module(value)
        if isinstance(value, (FrameType, TracebackType, CodeType)):
            raise AttributeError(f'"{name}" is not available to extensions')
        return value

    def write(self, obj: Any) -> Any:
        """``_write_`` guard: writable objects are returned, others wrapped read-only."""
        if isinstance(obj, (dict, list, set, bytearray, ModuleRecord)):
            return obj
        if isinstance(obj, type):
            if obj in self.classes:
                return obj
        elif type(obj) in self.classes:
            return obj
        return full_write_guard(obj)

    def setattr(self, obj: Any, name: str, value: Any) -> None:
        if not isinstance(name, str) or name.startswith("_"):
            raise AttributeError(f'"{name}" is not available to extensions')
        setattr(self.write(obj), name, value)

    def delattr(self, obj: Any, name: str) -> None:
        if not isinstance(name, str) or name.startswith("_"):
            raise AttributeError(f'"{name}" is not available to extensions')
        delattr(self.write(obj), name)

    def bindings(self) -> dict[str, Any]:
        """Names the compiled code looks up for its guarded operations."""
        return {
            "_getattr_": self.getattr,
            "_getitem_": default_guarded_getitem,
            "_getiter_": default_guarded_getiter,
            "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
            "_unpack_sequence_": guarded_unpack_sequence,
            "_write_": self.write,
            "_inplacevar_": inplace_var,
            "_apply_": apply_call,
            "__metaclass__": type,
        }


def restricted_builtins(guards: SandboxGuards) -> dict[str, Any]:
    """Build a fresh builtins mapping for one sandbox."""
    safe = dict(safe_builtins)
    for name in EXTRA_BUILTINS:
        safe[name] = getattr(builtins, name)
    for name in BLOCKED_BUILTINS:
        safe.pop(name, None)
    safe.update(
        {
            "__build_class__": guards.build_class,
            "__import__": guards.resolver.import_module,
            "_getattr_": guards.getattr,
            "getattr": guards.getattr,
            "setattr": guards.setattr,
            "delattr": guards.delattr,
        }
    )
    return safe


def compile_script(source: str, filename: str) -> CodeType:
    """Compile an extension script under the restricting policy.

    Raises:
        CompilationError: On a syntax error or a construct the policy rejects
    """
    result = compile_restricted_exec(source, filename=filename, policy=ExtensionPolicy)
    if result.errors:
        detail = result.errors[0]
        match = _ERROR_LINE.match(detail)
        if match:
            lineno: int | None = int(match.group(1))
            message = f"{filename}:{lineno}: {match.group(2)}"
        else:
            lineno = None
            message = f"{filename}: {detail}"
        raise CompilationError(message, lineno=lineno)
    return result.code


def run_isolated(source: str, bindings: Mapping[str, Any], filename: str) -> dict[str, Any]:
    """Execute source in a namespace built only from ``bindings``.

    This is the only place script code is executed. The bindings mapping is
    copied, so nothing the script defines leaks back to the caller.

    Raises:
        CompilationError: If the source does not compile
    """
    code = compile_script(source, filename)
    namespace = dict(bindings)
    exec(code, namespace)  # noqa: S102 - restricted code, namespace holds only sandbox bindings
    return namespace


@dataclass
class ExecutionHandle:
    """A built sandbox: the executed script and its module record."""

    name: str
    module: ModuleRecord
    namespace: dict[str, Any]
    console: ExtensionConsole

    @property
    def exports(self) -> dict[str, Any]:
        return self.module.exports

    @property
    def entry_point(self) -> Callable[..., Any] | None:
        entry = self.module.exports.get(ENTRY_POINT)
        return entry if callable(entry) else None

    @property
    def config(self) -> dict[str, Any]:
        config = self.module.exports.get(CONFIG_EXPORT)
        return dict(config) if isinstance(config, Mapping) else {}


class SandboxBuilder:
    """Builds isolated execution contexts for extensions.

    Attributes:
        whitelist: Capability whitelist every resolver is closed over
        renderer: Function used as the ``render`` hook
    """

    def __init__(
        self,
        whitelist: Whitelist,
        renderer: Callable[[str], str] = render_markdown,
    ) -> None:
        self.whitelist = tuple(whitelist)
        self.renderer = renderer

    def bindings(self, name: str) -> tuple[dict[str, Any], ModuleRecord, ExtensionConsole]:
        """Create the default bindings of a new sandbox."""
        module = ModuleRecord(id=name)
        console = ExtensionConsole(name)
        guards = SandboxGuards(CapabilityResolver(self.whitelist, name))
        bindings = {
            "__name__": name,
            "__builtins__": restricted_builtins(guards),
            **guards.bindings(),
            "_print_": functools.partial(ExtensionPrinter, console),
            "module": module,
            "exports": module.exports,
            "console": console,
            "require": guards.resolver.require,
            "render": self.renderer,
        }
        return bindings, module, console

    def build(
        self,
        name: str,
        source: str,
        extra_bindings: Mapping[str, Any] | None = None,
    ) -> ExecutionHandle:
        """Run an extension's source inside a fresh sandbox.

        Args:
            name: Extension name, used for tagging and error context
            source: Script text
            extra_bindings: Additional names made visible to the script;
                names starting with ``_`` are ignored

        Returns:
            ExecutionHandle with the populated module record

        Raises:
            CompilationError: If the source does not compile or uses a
                construct the restricting policy rejects
            DisallowedDependencyError: If the script requires a capability
                outside the whitelist
            InvocationError: If the script raises while running
        """
        bindings, module, console = self.bindings(name)
        for key, value in (extra_bindings or {}).items():
            if not key.startswith("_"):
                bindings[key] = value

        try:
            namespace = run_isolated(source, bindings, module.filename)
        except AlertsmithError as e:
            if e.context.extension_name is None:
                e.context.extension_name = name
            raise
        except Exception as e:
            raise InvocationError(
                f"{name}: {type(e).__name__}: {e}",
                context=ErrorContext(extension_name=name),
                cause=e,
            ) from e

        for key in (ENTRY_POINT, CONFIG_EXPORT):
            if key not in module.exports and key in namespace:
                module.exports[key] = namespace[key]
        module.loaded = True

        logger.debug(f"Built sandbox for {name} exporting {sorted(module.exports)}")
        return ExecutionHandle(name=name, module=module, namespace=namespace, console=console)
