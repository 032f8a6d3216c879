"""Pytest fixtures for alertsmith tests."""

from __future__ import annotations

import io
import textwrap
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console

from alertsmith.alerts import AlertSet
from alertsmith.persistence import MemoryStore
from alertsmith.sandbox import SandboxBuilder, reset_whitelist
from alertsmith.sources import Extension

TEST_WHITELIST = ("fs", "path", "json", "math", "os.path")


class RecordingHub:
    """Viewer hub stand-in that records every broadcast."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    def broadcast(self, event: str, data: Any = None) -> int:
        self.events.append((event, data))
        return 1

    @property
    def names(self) -> list[str]:
        return [event for event, _ in self.events]


class ScriptedRunner:
    """Runner stand-in returning one AlertSet per cycle, or raising.

    ``outcomes`` is consumed in order; an exception instance is raised, any
    other value is used as the title of the cycle's single alert.
    """

    def __init__(self, outcomes: list[Any] | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.cycles: list[int] = []

    async def compute(self, cycle: int = 1) -> AlertSet:
        self.cycles.append(cycle)
        outcome = self.outcomes.pop(0) if self.outcomes else f"cycle {cycle}"
        if isinstance(outcome, Exception):
            raise outcome
        return AlertSet(alerts=({"title": outcome, "extension": "scripted"},), cycle=cycle, elapsed_ms=1.5)


def source(text: str) -> str:
    """Dedent an inline extension script."""
    return textwrap.dedent(text).lstrip("\n")


@pytest.fixture(autouse=True)
def clean_whitelist_cache():
    """Reset the process-wide whitelist cache around each test."""
    reset_whitelist()
    yield
    reset_whitelist()


@pytest.fixture
def whitelist() -> tuple[str, ...]:
    return TEST_WHITELIST


@pytest.fixture
def builder(whitelist: tuple[str, ...]) -> SandboxBuilder:
    return SandboxBuilder(whitelist)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def make_extension() -> Callable[[str, str], Extension]:
    def _make(name: str, text: str) -> Extension:
        return Extension(name=name, source=source(text))

    return _make


@pytest.fixture
def extensions_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "extensions"
    directory.mkdir()
    return directory


@pytest.fixture
def write_extension(extensions_dir: Path) -> Callable[[str, str], Path]:
    def _write(name: str, text: str) -> Path:
        path = extensions_dir / f"{name}.py"
        path.write_text(source(text), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def whitelist_file(tmp_path: Path) -> Path:
    path = tmp_path / "packages.txt"
    path.write_text("\n".join(TEST_WHITELIST) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def recording_hub() -> RecordingHub:
    return RecordingHub()


@pytest.fixture
def quiet_console() -> Console:
    return Console(file=io.StringIO(), width=120)
