"""Tests for sandbox context building."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import os.path

import pytest

from alertsmith.errors import CompilationError, DisallowedDependencyError, InvocationError
from alertsmith.sandbox import (
    CapabilityResolver,
    ExtensionConsole,
    ModuleProxy,
    ModuleRecord,
    SandboxBuilder,
    SandboxGuards,
    invoke,
    run_isolated,
)
from alertsmith.sandbox.context import BLOCKED_BUILTINS, restricted_builtins
from alertsmith.sources import Extension
from tests.conftest import source


# =============================================================================
# Capability resolver
# =============================================================================


class TestCapabilityResolver:
    """Tests for whitelist-gated capability resolution."""

    def test_require_returns_module_view(self) -> None:
        resolver = CapabilityResolver(("json",), "ext")

        module = resolver.require("json")

        assert isinstance(module, ModuleProxy)
        assert module.dumps is json.dumps

    def test_require_resolves_slash_names_as_submodules(self) -> None:
        resolver = CapabilityResolver(("os/path",), "ext")

        assert resolver.require("os/path").join is os.path.join

    def test_require_rejects_unlisted_capability(self) -> None:
        resolver = CapabilityResolver(("fs", "path"), "ext")

        with pytest.raises(DisallowedDependencyError) as exc_info:
            resolver.require("child_process")

        assert exc_info.value.capability == "child_process"
        assert exc_info.value.extension_name == "ext"
        assert "child_process" in str(exc_info.value)

    def test_import_rejects_relative_imports(self) -> None:
        resolver = CapabilityResolver(("json",), "ext")

        with pytest.raises(DisallowedDependencyError):
            resolver.import_module("json", fromlist=(), level=1)

    def test_import_allows_from_import_of_whitelisted_submodule(self) -> None:
        resolver = CapabilityResolver(("os.path",), "ext")

        parent = resolver.import_module("os", fromlist=("path",))

        assert parent.path.join is os.path.join

    def test_parent_of_whitelisted_submodule_exposes_nothing_else(self) -> None:
        resolver = CapabilityResolver(("os.path",), "ext")

        parent = resolver.import_module("os.path")

        with pytest.raises(DisallowedDependencyError) as exc_info:
            parent.system

        assert exc_info.value.capability == "os.system"

    def test_import_rejects_star_from_parent(self) -> None:
        resolver = CapabilityResolver(("os.path",), "ext")

        with pytest.raises(DisallowedDependencyError):
            resolver.import_module("os", fromlist=("*",))

    def test_private_module_attributes_are_hidden(self) -> None:
        resolver = CapabilityResolver(("random",), "ext")

        with pytest.raises(AttributeError):
            resolver.require("random")._os

    def test_reexported_module_must_be_whitelisted_itself(self) -> None:
        resolver = CapabilityResolver(("typing",), "ext")

        with pytest.raises(DisallowedDependencyError) as exc_info:
            resolver.require("typing").sys

        assert exc_info.value.capability == "typing.sys"

    def test_genuine_submodule_is_reachable(self) -> None:
        resolver = CapabilityResolver(("json",), "ext")

        decoder = resolver.require("json").decoder

        assert isinstance(decoder, ModuleProxy)
        assert decoder.JSONDecoder is json.decoder.JSONDecoder

    def test_module_view_is_read_only(self) -> None:
        resolver = CapabilityResolver(("json",), "ext")
        module = resolver.require("json")

        with pytest.raises(AttributeError):
            module.dumps = None

        assert json.dumps is not None


# =============================================================================
# Console and builtins
# =============================================================================


class TestExtensionConsole:
    """Tests for extension output tagging."""

    def test_lines_are_tagged_with_extension_name(self, caplog: pytest.LogCaptureFixture) -> None:
        console = ExtensionConsole("weather")

        with caplog.at_level(logging.INFO, logger="alertsmith.extensions"):
            console.log("hello", 42)
            console.warn("careful")

        messages = [record.getMessage() for record in caplog.records]
        assert "ext [weather]: hello 42" in messages
        assert "ext [weather]: careful" in messages
        assert caplog.records[1].levelno == logging.WARNING

    def test_print_honours_sep(self, caplog: pytest.LogCaptureFixture) -> None:
        console = ExtensionConsole("weather")

        with caplog.at_level(logging.INFO, logger="alertsmith.extensions"):
            console.print("a", "b", sep="-")

        assert caplog.records[0].getMessage() == "ext [weather]: a-b"


class TestRestrictedBuiltins:
    """Tests for the builtins handed to extensions."""

    def test_blocked_builtins_are_absent(self) -> None:
        safe = restricted_builtins(SandboxGuards(CapabilityResolver((), "ext")))

        for name in BLOCKED_BUILTINS:
            assert name not in safe

    def test_import_and_attribute_access_are_guarded(self) -> None:
        guards = SandboxGuards(CapabilityResolver((), "ext"))
        safe = restricted_builtins(guards)

        assert safe["__import__"] == guards.resolver.import_module
        assert safe["getattr"] == guards.getattr
        assert safe["len"] is len
        assert safe["sum"] is sum


class TestSandboxGuards:
    """Tests for the runtime guards of restricted code."""

    def test_getattr_rejects_private_and_frame_attributes(self) -> None:
        guards = SandboxGuards(CapabilityResolver((), "ext"))

        def generator():
            yield 1

        with pytest.raises(AttributeError):
            guards.getattr(len, "__self__")
        with pytest.raises(AttributeError):
            guards.getattr(generator(), "gi_frame")

    def test_getattr_default_applies_to_missing_attributes_only(self) -> None:
        guards = SandboxGuards(CapabilityResolver((), "ext"))

        assert guards.getattr({}, "missing", "fallback") == "fallback"
        with pytest.raises(AttributeError):
            guards.getattr({}, "missing")

    def test_getattr_blocks_str_format(self) -> None:
        guards = SandboxGuards(CapabilityResolver((), "ext"))

        with pytest.raises(NotImplementedError):
            guards.getattr("{0.__class__}", "format")

    def test_getattr_wraps_reached_modules(self) -> None:
        guards = SandboxGuards(CapabilityResolver(("json",), "ext"))

        class Holder:
            codec = json
            shell = os

        assert isinstance(guards.getattr(Holder, "codec"), ModuleProxy)
        with pytest.raises(DisallowedDependencyError):
            guards.getattr(Holder, "shell")

    def test_write_allows_containers_and_own_classes_only(self) -> None:
        guards = SandboxGuards(CapabilityResolver((), "ext"))

        class Own:
            pass

        guards.classes.add(Own)
        record = ModuleRecord(id="ext")

        guards.setattr(Own(), "title", "ok")
        guards.setattr(record, "loaded", True)
        assert guards.write({}) == {}

        with pytest.raises(TypeError):
            guards.setattr(ExtensionConsole("ext"), "name", "other")


# =============================================================================
# run_isolated
# =============================================================================


class TestRunIsolated:
    """Tests for the narrow isolation interface."""

    def test_definitions_do_not_leak_into_bindings(self) -> None:
        bindings = {"__builtins__": {}, "value": 1}

        namespace = run_isolated("result = value + 1\n", bindings, "ext.py")

        assert namespace["result"] == 2
        assert "result" not in bindings

    def test_syntax_error_becomes_compilation_error(self) -> None:
        with pytest.raises(CompilationError) as exc_info:
            run_isolated("def broken(:\n", {"__builtins__": {}}, "broken.py")

        assert exc_info.value.lineno == 1
        assert "broken.py" in exc_info.value.message

    def test_private_attribute_is_rejected_at_compile_time(self) -> None:
        with pytest.raises(CompilationError) as exc_info:
            run_isolated("x = 1\ny = x.__class__\n", {"__builtins__": {}}, "peek.py")

        assert exc_info.value.lineno == 2
        assert "__class__" in exc_info.value.message


# =============================================================================
# SandboxBuilder
# =============================================================================


class TestSandboxBuilder:
    """Tests for building extension sandboxes."""

    def test_build_exports_top_level_entry_point(self, builder: SandboxBuilder) -> None:
        handle = builder.build(
            "hello",
            source(
                """
                config = {"title": "Hello"}

                def extension(context):
                    return "hi"
                """
            ),
        )

        assert handle.module.loaded is True
        assert handle.entry_point({}) == "hi"
        assert handle.config == {"title": "Hello"}

    def test_explicit_exports_win(self, builder: SandboxBuilder) -> None:
        handle = builder.build(
            "explicit",
            source(
                """
                def extension(context):
                    return "top level"

                def real(context):
                    return "exported"

                module.exports["extension"] = real
                """
            ),
        )

        assert handle.entry_point({}) == "exported"

    def test_exports_is_the_module_exports_dict(self, builder: SandboxBuilder) -> None:
        handle = builder.build("shim", "exports['answer'] = 42\nsame = exports is module.exports\n")

        assert handle.exports["answer"] == 42
        assert handle.namespace["same"] is True
        assert isinstance(handle.module, ModuleRecord)
        assert handle.module.id == "shim"

    def test_whitelisted_import_statement_works(self, builder: SandboxBuilder) -> None:
        handle = builder.build(
            "maths",
            source(
                """
                import math
                from json import dumps

                def extension(context):
                    return dumps({"pi": round(math.pi, 2)})
                """
            ),
        )

        assert handle.entry_point({}) == '{"pi": 3.14}'

    def test_require_binding_returns_module(self, builder: SandboxBuilder) -> None:
        handle = builder.build("req", "m = require('math')\npi = m.pi\n")

        assert isinstance(handle.namespace["m"], ModuleProxy)
        assert handle.namespace["pi"] == math.pi

    def test_disallowed_import_fails_build(self, builder: SandboxBuilder) -> None:
        with pytest.raises(DisallowedDependencyError) as exc_info:
            builder.build("sneaky", "import subprocess\n")

        assert exc_info.value.capability == "subprocess"
        assert exc_info.value.extension_name == "sneaky"

    def test_disallowed_require_fails_build(self, builder: SandboxBuilder) -> None:
        with pytest.raises(DisallowedDependencyError) as exc_info:
            builder.build("sneaky", "require('child_process')\n")

        assert exc_info.value.capability == "child_process"

    def test_import_inside_entry_point_is_gated(self, builder: SandboxBuilder) -> None:
        handle = builder.build(
            "late",
            source(
                """
                def extension(context):
                    import socket
                    return socket
                """
            ),
        )

        with pytest.raises(DisallowedDependencyError):
            handle.entry_point({})

    def test_blocked_builtin_is_unavailable(self, builder: SandboxBuilder) -> None:
        with pytest.raises(InvocationError) as exc_info:
            builder.build("reader", "open('/etc/passwd')\n")

        assert "NameError" in exc_info.value.message
        assert exc_info.value.extension_name == "reader"

    def test_top_level_exception_becomes_invocation_error(self, builder: SandboxBuilder) -> None:
        with pytest.raises(InvocationError) as exc_info:
            builder.build("boom", "raise ValueError('nope')\n")

        assert isinstance(exc_info.value.cause, ValueError)

    def test_syntax_error_rejects_build(self, builder: SandboxBuilder) -> None:
        with pytest.raises(CompilationError) as exc_info:
            builder.build("broken", "def extension(:\n")

        assert exc_info.value.extension_name == "broken"

    def test_builds_are_isolated(self, builder: SandboxBuilder) -> None:
        first = builder.build("one", "exports['n'] = 1\nshared = []\nshared.append(1)\n")
        second = builder.build(
            "two",
            source(
                """
                exports["n"] = 2
                try:
                    shared
                    leak = True
                except NameError:
                    leak = False
                """
            ),
        )

        assert first.exports is not second.exports
        assert first.module is not second.module
        assert first.namespace["__builtins__"] is not second.namespace["__builtins__"]
        assert second.namespace["leak"] is False

    def test_same_source_builds_fresh_module_each_time(self, builder: SandboxBuilder) -> None:
        text = "count = exports.setdefault('count', 0)\ncount += 1\nexports['count'] = count\n"

        assert builder.build("counter", text).exports["count"] == 1
        assert builder.build("counter", text).exports["count"] == 1

    def test_extra_bindings_are_visible(self, builder: SandboxBuilder) -> None:
        handle = builder.build("extra", "value = params['limit'] * 2\n", {"params": {"limit": 21}})

        assert handle.namespace["value"] == 42

    def test_extra_bindings_cannot_replace_builtins(self, builder: SandboxBuilder) -> None:
        handle = builder.build("extra", "x = 1\n", {"__builtins__": __builtins__})

        assert "open" not in handle.namespace["__builtins__"]

    def test_render_binding_uses_renderer(self, whitelist: tuple[str, ...]) -> None:
        builder = SandboxBuilder(whitelist, renderer=lambda text: f"<{text}>")

        handle = builder.build("render", "html = render('hi')\n")

        assert handle.namespace["html"] == "<hi>"

    def test_classes_can_be_defined(self, builder: SandboxBuilder) -> None:
        handle = builder.build(
            "classes",
            source(
                """
                class Alert:
                    def __init__(self, title):
                        self.title = title

                title = Alert("ok").title
                """
            ),
        )

        assert handle.namespace["title"] == "ok"

    def test_print_goes_to_the_extension_console(
        self, builder: SandboxBuilder, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="alertsmith.extensions"):
            builder.build("chatty", "print('hello', 'there')\n")

        assert "ext [chatty]: hello there" in [record.getMessage() for record in caplog.records]

    def test_coroutine_entry_points_compile(self, builder: SandboxBuilder) -> None:
        handle = builder.build(
            "coro",
            source(
                """
                async def extension(context):
                    return await context["fetch"]()
                """
            ),
        )

        assert callable(handle.entry_point)


# =============================================================================
# Escape attempts
# =============================================================================


class TestSandboxEscapes:
    """Scripts must not reach host state beyond their bindings."""

    def test_bound_method_globals_are_unreachable(self) -> None:
        builder = SandboxBuilder(("json",))

        with pytest.raises(CompilationError):
            builder.build("escape", "mod = require.__func__.__globals__['importlib']\n")

    def test_dynamic_private_attribute_lookup_is_blocked(self) -> None:
        builder = SandboxBuilder(("json",))

        with pytest.raises(InvocationError) as exc_info:
            builder.build("escape", "fn = getattr(require, '__func' + '__')\n")

        assert isinstance(exc_info.value.cause, AttributeError)

    def test_private_module_global_is_unreachable(self) -> None:
        builder = SandboxBuilder(("random",))

        with pytest.raises(CompilationError):
            builder.build("escape", "shell = require('random')._os\n")

    def test_reexported_module_is_gated(self) -> None:
        builder = SandboxBuilder(("typing",))

        with pytest.raises(DisallowedDependencyError) as exc_info:
            builder.build("escape", "import typing\nhost = typing.sys\n")

        assert exc_info.value.capability == "typing.sys"

    def test_parent_package_of_whitelisted_submodule_is_opaque(self) -> None:
        builder = SandboxBuilder(("os.path",))

        with pytest.raises(DisallowedDependencyError):
            builder.build("escape", "import os.path\nrun = os.system\n")

    def test_whitelisted_submodule_still_works(self) -> None:
        builder = SandboxBuilder(("os.path",))

        handle = builder.build("paths", "from os import path\njoined = path.join('a', 'b')\n")

        assert handle.namespace["joined"] == os.path.join("a", "b")

    def test_generator_frames_are_unreachable(self, builder: SandboxBuilder) -> None:
        with pytest.raises((CompilationError, InvocationError)):
            builder.build(
                "escape",
                source(
                    """
                    def numbers():
                        yield 1

                    frame = getattr(numbers(), "gi_frame")
                    """
                ),
            )

    def test_format_string_attribute_walk_is_blocked(self, builder: SandboxBuilder) -> None:
        with pytest.raises(InvocationError) as exc_info:
            builder.build("escape", "text = '{0.__class__}'.format(1)\n")

        assert isinstance(exc_info.value.cause, NotImplementedError)

    def test_module_attributes_cannot_be_replaced(self, builder: SandboxBuilder) -> None:
        with pytest.raises(InvocationError):
            builder.build("escape", "import json\njson.dumps = len\n")

        assert json.dumps("x") == '"x"'

    def test_host_objects_are_read_only(self, builder: SandboxBuilder) -> None:
        with pytest.raises(InvocationError) as exc_info:
            builder.build("escape", "console.name = 'someone else'\n")

        assert isinstance(exc_info.value.cause, TypeError)


# =============================================================================
# Concurrent builds
# =============================================================================


class TestConcurrentBuilds:
    """Interleaved invocations keep their own module records."""

    @pytest.mark.asyncio
    async def test_interleaved_entry_points_keep_their_exports(self, builder: SandboxBuilder) -> None:
        arrived = 0
        both_suspended = asyncio.Event()

        async def rendezvous() -> None:
            nonlocal arrived
            arrived += 1
            if arrived == 2:
                both_suspended.set()
            await both_suspended.wait()

        text = source(
            """
            async def extension(context):
                exports["seen"] = context["tag"]
                await context["rendezvous"]()
                return exports["seen"]
            """
        )
        first = Extension(name="first", source=text)
        second = Extension(name="second", source=text)

        results = await asyncio.wait_for(
            asyncio.gather(
                invoke(first, {"tag": "a", "rendezvous": rendezvous}, builder),
                invoke(second, {"tag": "b", "rendezvous": rendezvous}, builder),
            ),
            timeout=5,
        )

        assert arrived == 2
        assert [result.value for result in results] == ["a", "b"]
