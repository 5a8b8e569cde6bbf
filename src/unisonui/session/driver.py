"""Unison session: owns the Engine and the process, and applies Updates.

All Engine calls happen on the event loop thread: process callbacks,
backdoor lines and UI operations are serialized there.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
from typing import Any, Callable, Iterable, Mapping

from unisonui.config import AppConfig
from unisonui.core.backdoor import apply_backdoor
from unisonui.core.engine import Engine, Phase
from unisonui.core.model import Action, Alert, Operation, Update
from unisonui.proc.process import UnisonProcess
from unisonui.session.diffs import save_diff
from unisonui.session.trace import TraceWriter
from unisonui.session.wire import EventType, Wire, WireEvent

logger = logging.getLogger(__name__)

INTERRUPT_PROMPT = "Interrupt Unison?"
KILL_PROMPT = "Unison is still running. Force it to stop?"
ABORT_PROMPT = "Abort the operation?"


class CloseDecision(enum.Enum):
    """What the UI should do when the user asks to close the window."""

    CLOSE = "close"  # Unison is not running
    QUITTING = "quitting"  # quit was sent; close once Unison exits
    CONFIRM_INTERRUPT = "confirm_interrupt"
    CONFIRM_KILL = "confirm_kill"


class UnisonSession:
    """One Unison run, driven by the Engine and reported on a Wire."""

    def __init__(
        self,
        config: AppConfig,
        args: list[str],
        wire: Wire | None = None,
        process_factory: Callable[..., UnisonProcess] = UnisonProcess,
    ) -> None:
        self.config = config
        self.args = list(args)
        self.wire = wire or Wire()
        self.engine = Engine()
        self.want_quit = False
        self.exit_code: int | None = None
        self.exited = asyncio.Event()

        self.process = process_factory(
            command=config.unison.command(self.args),
            cwd=config.unison.cwd,
            on_output=self._on_output,
            on_error=self._on_error,
            on_exit=self._on_exit,
        )
        self._trace: TraceWriter | None = None
        self._backdoor_task: asyncio.Task | None = None

    # --- Lifecycle ---

    async def start(self) -> None:
        """Spawn Unison. Failure to spawn is reported, not raised."""
        if self.config.trace_path:
            self._trace = TraceWriter(self.config.trace_path)
        try:
            await self.process.start()
        except OSError as e:
            logger.error("Failed to start %s: %s", self.config.unison.executable, e)
            self.apply(self.engine.proc_error(e))
            self.exited.set()
            self.wire.send_exit(None, self.engine.status)
            return
        self.apply(self.engine.proc_start())

        if self.config.backdoor_path:
            self._backdoor_task = asyncio.create_task(
                self._watch_backdoor(self.config.backdoor_path)
            )

    async def wait(self) -> int | None:
        await self.exited.wait()
        return self.exit_code

    def shutdown(self) -> None:
        """Release everything. Unison is killed if it is still running."""
        if self.engine.running and self.process.alive:
            logger.warning("Killing Unison on shutdown")
            try:
                self.process.kill()
            except OSError as e:
                logger.warning("Error killing Unison: %s", e)
        if self._backdoor_task is not None:
            self._backdoor_task.cancel()
            self._backdoor_task = None
        if self._trace is not None:
            self._trace.close()
            self._trace = None

    # --- Process callbacks ---

    def _on_output(self, data: bytes) -> None:
        if self._trace:
            self._trace.output(data)
        self.apply(self.engine.proc_output(data))

    def _on_error(self, error: OSError) -> None:
        if self._trace:
            self._trace.error(error)
        self.apply(self.engine.proc_error(error))

    def _on_exit(self, code: int) -> None:
        if self._trace:
            self._trace.exit(code)
        self.exit_code = code
        self.apply(self.engine.proc_exit(code))
        self.wire.send_exit(code, self.engine.status)
        self.exited.set()

    async def _watch_backdoor(self, path: str) -> None:
        loop = asyncio.get_running_loop()
        try:
            with open(os.path.expanduser(path)) as f:
                while True:
                    line = await loop.run_in_executor(None, f.readline)
                    if not line:
                        break
                    self.apply(apply_backdoor(self.engine, line))
        except OSError as e:
            logger.warning("Backdoor %s unavailable: %s", path, e)

    # --- Applying updates ---

    def apply(self, update: Update) -> None:
        """Carry out an Update: I/O first, then publish it on the wire."""
        if update.input:
            self._guard(lambda: self.process.write(update.input), "write to Unison")
            if self._trace:
                self._trace.input(update.input)
        if update.interrupt:
            self._guard(self.process.interrupt, "interrupt Unison")
            if self._trace:
                self._trace.signal("SIGINT")
        if update.kill:
            self._guard(self.process.kill, "kill Unison")
            if self._trace:
                self._trace.signal("SIGKILL")

        if update.diff is not None:
            self._publish_diff(update.diff)
        if update.plan_ready:
            self.wire.send(
                WireEvent(type=EventType.PLAN_READY, data={"items": self.engine.items})
            )
        for message in update.messages:
            self.wire.send(
                WireEvent(
                    type=EventType.MESSAGE,
                    data={"text": message.text, "importance": message.importance},
                )
            )
        if update.alert is not None:
            self.wire.send(WireEvent(type=EventType.ALERT, data={"alert": update.alert}))
        if update.progressed:
            self.wire.send(
                WireEvent(
                    type=EventType.PROGRESS,
                    data={
                        "progress": self.engine.progress,
                        "fraction": self.engine.progress_fraction,
                    },
                )
            )
        self.wire.send(WireEvent(type=EventType.STATE, data=self.state()))

    def _guard(self, action: Callable[[], None], what: str) -> None:
        """Run an I/O action, feeding failures back to the Engine."""
        try:
            action()
        except OSError as e:
            logger.warning("Failed to %s: %s", what, e)
            if self._trace:
                self._trace.error(e)
            self.apply(self.engine.proc_error(e))

    def _publish_diff(self, diff: bytes) -> None:
        try:
            path = save_diff(diff, self.config.ui.diff_dir)
        except OSError as e:
            logger.error("Failed to save diff: %s", e)
            self.wire.send_error(f"Failed to save diff: {e}")
            return
        self.wire.send(
            WireEvent(
                type=EventType.DIFF,
                data={"path": str(path), "text": diff.decode("utf-8", errors="replace")},
            )
        )

    def state(self) -> dict[str, Any]:
        """Snapshot of what the UI displays."""
        engine = self.engine
        return {
            "status": engine.status,
            "running": engine.running,
            "busy": engine.busy,
            "progress": engine.progress,
            "fraction": engine.progress_fraction,
            "left": engine.left,
            "right": engine.right,
            "phase": engine.phase,
            "operations": engine.operations,
            "want_quit": self.want_quit,
        }

    # --- User actions ---

    def perform(self, op: Operation, *args: Any) -> None:
        """Invoke an Engine operation and apply its Update.

        Raises OperationNotAllowed if ``op`` is not enabled.
        """
        methods: dict[Operation, Callable[..., Update]] = {
            Operation.SYNC: self.engine.sync,
            Operation.DIFF: self.engine.diff,
            Operation.QUIT: self.engine.quit,
            Operation.ABORT: self.engine.abort,
            Operation.INTERRUPT: self.engine.interrupt,
            Operation.KILL: self.engine.kill,
        }
        logger.debug("perform %s%r", op.value, args)
        self.apply(methods[op](*args))

    def answer(self, alert: Alert, proceed: bool) -> None:
        self.apply(self.engine.answer(alert, proceed))

    def set_action(self, paths: Iterable[str], action: Action) -> None:
        self.engine.set_action(paths, action)
        self.wire.send(WireEvent(type=EventType.STATE, data=self.state()))

    def update_plan(self, plan: Mapping[str, Action]) -> None:
        """Make the Engine's plan match ``plan``, changing only what differs."""
        changes: dict[Action, list[str]] = {}
        for path, action in plan.items():
            if self.engine.plan.get(path) is not action:
                changes.setdefault(action, []).append(path)
        for action, paths in changes.items():
            self.engine.set_action(paths, action)
        self.wire.send(WireEvent(type=EventType.STATE, data=self.state()))

    def close_requested(self) -> CloseDecision:
        """Handle a request to close the window.

        Quits Unison when it can be quitted; otherwise tells the caller which
        confirmation to ask for before ``perform(INTERRUPT)`` or
        ``perform(KILL)``.
        """
        engine = self.engine
        if not engine.running:
            return CloseDecision.CLOSE
        self.want_quit = True
        if engine.enabled(Operation.QUIT):
            self.perform(Operation.QUIT)
            return CloseDecision.QUITTING
        stopping = engine.phase in (Phase.QUITTING, Phase.INTERRUPTING, Phase.KILLING)
        if engine.enabled(Operation.INTERRUPT) and not stopping:
            self.wire.send(WireEvent(type=EventType.STATE, data=self.state()))
            return CloseDecision.CONFIRM_INTERRUPT
        self.wire.send(WireEvent(type=EventType.STATE, data=self.state()))
        return CloseDecision.CONFIRM_KILL
