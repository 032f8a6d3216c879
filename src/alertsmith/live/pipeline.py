"""Hot-reload pipeline: re-run every extension when sources change.

State machine::

    IDLE --trigger--> RECOMPILING --success--> BROADCASTING --> IDLE
                          |
                          +--failure--> IDLE (current AlertSet kept)

    any state --stop--> STOPPED

Triggers arriving while a cycle is in flight set a single pending flag, so
any number of them yields exactly one trailing cycle. All state changes
happen on the event loop thread; the file watcher only schedules
``trigger()`` there.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from enum import Enum
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from alertsmith.alerts import CurrentAlerts
from alertsmith.errors import AlertsmithError
from alertsmith.live.sessions import FAILURE, LOAD, UPDATE, ViewerHub
from alertsmith.live.watch import DEBOUNCE_DELAY, FileWatcher
from alertsmith.runner import ExtensionRunner

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    """Lifecycle state of the hot-reload pipeline."""

    IDLE = "idle"
    RECOMPILING = "recompiling"
    BROADCASTING = "broadcasting"
    STOPPED = "stopped"


def describe_failure(error: BaseException) -> str:
    """Human-readable failure text sent to viewers."""
    if isinstance(error, AlertsmithError):
        return str(error)
    return f"{type(error).__name__}: {error}"


class HotReloadPipeline:
    """Recompiles and re-runs extensions, then notifies viewers.

    Attributes:
        runner: Runs the whole extension set once
        hub: Viewer sessions to broadcast to
        current: Holder of the current AlertSet (this pipeline is its only writer)
        state: Current PipelineState
        cycle: Number of the last started cycle
    """

    def __init__(
        self,
        runner: ExtensionRunner,
        hub: ViewerHub,
        current: CurrentAlerts | None = None,
        console: Console | None = None,
    ) -> None:
        self.runner = runner
        self.hub = hub
        self.current = current or CurrentAlerts()
        self.console = console or Console()
        self.state = PipelineState.IDLE
        self.cycle = self.current.get().cycle
        self._pending = False
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> bool:
        return self._pending

    def trigger(self) -> None:
        """Request a reload cycle. Must be called on the event loop thread."""
        if self.state is PipelineState.STOPPED:
            return
        if self.state is not PipelineState.IDLE:
            self._pending = True
            return
        self.state = PipelineState.RECOMPILING
        self._task = asyncio.get_running_loop().create_task(self._run())

    def _set_state(self, state: PipelineState) -> None:
        if self.state is not PipelineState.STOPPED:
            self.state = state

    async def _run(self) -> None:
        try:
            while True:
                try:
                    await self._cycle()
                except Exception as e:
                    self._report_failure(e, self.cycle)
                if not self._pending or self.state is PipelineState.STOPPED:
                    break
                self._pending = False
        finally:
            self._set_state(PipelineState.IDLE)

    async def _cycle(self) -> bool:
        """Run one reload cycle. Returns whether it succeeded."""
        self.cycle += 1
        cycle = self.cycle
        self._set_state(PipelineState.RECOMPILING)
        self.console.print("[cyan]changes detected. Recompiling...[/cyan]")
        self.hub.broadcast(LOAD)

        try:
            alert_set = await self.runner.compute(cycle)
        except Exception as e:
            self._report_failure(e, cycle)
            return False

        # A set that cannot be encoded never becomes current.
        self._set_state(PipelineState.BROADCASTING)
        self.hub.broadcast(UPDATE, alert_set.to_payload())
        self.current.replace(alert_set)
        self.console.print(f"[green]wow! recompiled and executed in {alert_set.elapsed_ms or 0:.0f}ms![/green]")
        return True

    def _report_failure(self, error: Exception, cycle: int) -> None:
        message = describe_failure(error)
        if isinstance(error, AlertsmithError):
            if error.context.cycle is None:
                error.context.cycle = cycle
            category = error.error_code.category
            logger.debug(error.format_verbose())
        else:
            category = "internal"
            logger.exception(f"Unexpected failure in cycle {cycle}")
        self.console.print(f"[red]hot compilation error ({category}): {escape(message)}[/red]")
        self.hub.broadcast(FAILURE, message)

    async def wait_idle(self) -> None:
        """Wait until no cycle is running or pending."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def stop(self, timeout: float | None = None) -> None:
        """Stop accepting triggers and let the in-flight cycle finish.

        With a timeout, a cycle still running afterwards is cancelled.
        """
        self.state = PipelineState.STOPPED
        self._pending = False
        task = self._task
        if task is None or task.done():
            return
        _, still_running = await asyncio.wait({task}, timeout=timeout)
        if still_running:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    def watch(
        self,
        paths: Sequence[Path],
        debounce_delay: float = DEBOUNCE_DELAY,
    ) -> FileWatcher:
        """Start a FileWatcher that triggers this pipeline on the running loop."""
        loop = asyncio.get_running_loop()

        def on_change(changes) -> None:
            logger.debug(f"{len(changes)} file change(s) detected")
            loop.call_soon_threadsafe(self.trigger)

        watcher = FileWatcher(list(paths), on_change, debounce_delay=debounce_delay)
        watcher.start()
        return watcher
