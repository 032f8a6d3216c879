"""Runs the whole extension set once and assembles the AlertSet.

For every extension, in declared order:

1. read and compile its source
2. build its sandbox and invoke its entry point with
   ``{"name", "params", "db"}`` as context
3. apply the persistence side effect of its result

Any failure aborts the run: a partial AlertSet is never produced.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from alertsmith.alerts import AlertSet
from alertsmith.config import AlertsmithConfig
from alertsmith.persistence import JsonFileStore, PersistenceStore, apply_persistence, load_persisted
from alertsmith.sandbox import (
    ExecutionHandle,
    SandboxBuilder,
    get_whitelist,
    invoke,
    resolve_params,
)
from alertsmith.sources import Extension, load_extensions

logger = logging.getLogger(__name__)


class ExtensionRunner:
    """Runs every extension of a directory through the sandbox.

    Attributes:
        extensions_dir: Directory holding extension scripts
        store: Persistence store for ``db`` records
        whitelist_path: Whitelist file, None for the bundled default
        params: Parameter overrides keyed by extension name
    """

    def __init__(
        self,
        extensions_dir: str | Path,
        store: PersistenceStore,
        whitelist_path: str | Path | None = None,
        params: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> None:
        self.extensions_dir = Path(extensions_dir)
        self.store = store
        self.whitelist_path = whitelist_path
        self.params = dict(params or {})

    @classmethod
    def from_config(cls, config: AlertsmithConfig, store: PersistenceStore | None = None) -> ExtensionRunner:
        return cls(
            extensions_dir=config.extensions_path,
            store=store or JsonFileStore(config.store_path),
            whitelist_path=config.whitelist_path,
            params=config.params,
        )

    def builder(self) -> SandboxBuilder:
        """Sandbox builder over the process-wide whitelist (fail-closed)."""
        return SandboxBuilder(get_whitelist(self.whitelist_path))

    def load(self) -> list[Extension]:
        return load_extensions(self.extensions_dir)

    async def run_extension(self, extension: Extension, builder: SandboxBuilder) -> Any:
        """Invoke one extension and apply its persistence side effect."""
        persisted = await load_persisted(extension.name, self.store)
        overrides = self.params.get(extension.name) or {}

        def make_context(handle: ExecutionHandle) -> dict[str, Any]:
            return {
                "name": extension.name,
                "params": resolve_params(handle.config, overrides),
                "db": persisted,
            }

        result = await invoke(extension, make_context, builder)
        await apply_persistence(extension.name, result, self.store)
        return result.value

    async def run_all(self) -> list[tuple[str, Any]]:
        """Run the whole set sequentially, in declared order."""
        builder = self.builder()
        results: list[tuple[str, Any]] = []
        for extension in self.load():
            value = await self.run_extension(extension, builder)
            results.append((extension.name, value))
        return results

    async def compute(self, cycle: int = 1) -> AlertSet:
        """Run every extension and build the resulting AlertSet."""
        start = time.monotonic()
        results = await self.run_all()
        elapsed_ms = (time.monotonic() - start) * 1000
        alert_set = AlertSet.from_results(results, cycle=cycle, elapsed_ms=elapsed_ms)
        logger.info(f"Cycle {cycle}: {len(alert_set)} alert(s) from {len(results)} extension(s)")
        return alert_set
