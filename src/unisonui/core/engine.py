"""Engine: the state machine that interprets Unison and decides what to send.

The engine does no I/O. The session feeds it Unison's output and exit
status, and invokes operations on behalf of the user. Every call returns an
Update describing what the session must write, signal or display.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import re
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

from unisonui.core import patterns as pat
from unisonui.core.buffer import Expectation, Expecter, InputBuffer
from unisonui.core.model import (
    ABORT_REPLY,
    Action,
    Alert,
    AlertKind,
    Importance,
    Item,
    Message,
    Operation,
    Update,
)

logger = logging.getLogger(__name__)


class OperationNotAllowed(RuntimeError):
    """An operation was invoked in a phase where it is disabled."""


class StaleAlert(RuntimeError):
    """An alert was answered twice, or is not the one currently shown."""


class Phase(enum.Enum):
    IDLE = "idle"  # Unison not started yet
    WORKING = "working"  # scanning replicas
    ASSEMBLING = "assembling"  # reading the long listing of the plan
    READY = "ready"  # plan known, Unison waits at an item prompt
    SEEKING_DIFF = "seeking_diff"
    DIFF_REQUESTED = "diff_requested"
    DIFF_ABORTING = "diff_aborting"
    STARTING_SYNC = "starting_sync"  # answering item prompts from the plan
    SYNCING = "syncing"
    COMPLETED = "completed"  # summary printed, waiting for exit
    QUITTING = "quitting"
    INTERRUPTING = "interrupting"
    KILLING = "killing"
    EXITED = "exited"
    FAILED = "failed"  # Unison could not be started


_STOPPABLE = frozenset({Operation.INTERRUPT, Operation.KILL})

OPERATIONS: dict[Phase, frozenset[Operation]] = {
    Phase.IDLE: frozenset(),
    Phase.WORKING: _STOPPABLE,
    Phase.ASSEMBLING: _STOPPABLE,
    Phase.READY: _STOPPABLE | {Operation.SYNC, Operation.DIFF, Operation.QUIT},
    Phase.SEEKING_DIFF: _STOPPABLE | {Operation.ABORT},
    Phase.DIFF_REQUESTED: _STOPPABLE | {Operation.ABORT},
    Phase.DIFF_ABORTING: _STOPPABLE,
    Phase.STARTING_SYNC: _STOPPABLE | {Operation.ABORT},
    Phase.SYNCING: _STOPPABLE | {Operation.ABORT},
    Phase.COMPLETED: _STOPPABLE | {Operation.QUIT},
    Phase.QUITTING: _STOPPABLE,
    Phase.INTERRUPTING: _STOPPABLE,
    Phase.KILLING: _STOPPABLE,
    Phase.EXITED: frozenset(),
    Phase.FAILED: frozenset(),
}

_IDLE_PHASES = frozenset({Phase.READY, Phase.COMPLETED})
_STOPPING_PHASES = frozenset({Phase.QUITTING, Phase.INTERRUPTING, Phase.KILLING})

# Exit codes only carry meaning once propagation has begun.
_EXIT_STATUS = {0: "Finished successfully"}
_SYNC_EXIT_STATUS = {
    0: "Finished successfully",
    1: "Finished successfully (some files skipped)",
    2: "Finished with errors",
}

STATUS_READY = "Ready to synchronize"
STATUS_UNEXPECTED_EXIT = "Unison exited unexpectedly"
FATAL_SUFFIX = "\nThis is a fatal error. Unison will be stopped now."

_WORKING = Expecter(
    {
        "contacting": pat.CONTACTING_SERVER,
        "connected": pat.CONNECTED,
        "looking": pat.LOOKING_FOR_CHANGES,
        "waiting": pat.WAITING_FOR_CHANGES,
        "reconciling": pat.RECONCILING_CHANGES,
        "plan": pat.PLAN_BEGINNING,
        "erase": pat.ERASE_LINE,
        "progress": pat.FILE_PROGRESS,
    }
)
_PROGRESS_CONT = Expecter({"more": pat.FILE_PROGRESS_CONT})
_STARTING_SYNC = Expecter(
    {
        "prompt": pat.ITEM_PROMPT,
        "item": pat.ITEM_HEADER,
        "proceed": pat.PROCEED_UPDATES,
    },
    raw=True,
)
_SYNCING = Expecter(
    {
        "erase": pat.ERASE_LINE,
        "propagating": pat.PROPAGATING_UPDATES,
        "saving": pat.SAVING_STATE,
        "noise": pat.STARTED_FINISHED_PROPAGATING,
        "thread": pat.SYNC_THREAD_STATUS,
        "progress": pat.SYNC_PROGRESS,
        "skipped": pat.WHY_SKIPPED,
        "merge": pat.MERGE_NOISE,
        "merge_failed": pat.MERGE_FAILED,
        "summary": pat.SUMMARY,
        "line": pat.ANY_LINE,
    }
)
_SEEKING = Expecter(
    {
        "prompt": pat.ITEM_PROMPT,
        "item": pat.ITEM_HEADER,
        "proceed": pat.PROCEED_UPDATES,
    }
)
_DIFF_REPLY = Expecter(
    {
        "diff": pat.DIFF_REPLY,
        "cant": pat.CANT_DIFF,
        "prompt": pat.ITEM_PROMPT,
    }
)
_ALERTS = Expecter(
    {
        "really": pat.REALLY_PROCEED,
        "press": pat.PRESS_RETURN,
        "question": pat.QUESTION,
    }
)
_DIFF_START = re.compile(rb"(?m:^)--- ")
_ANSI_CLEAR = re.compile(pat.ANSI_CLEAR_LINE)


def summarize_banner(output: str, code: int) -> str:
    """Collapse what Unison printed before dying into one message."""
    lines = [line.strip() for line in output.strip().splitlines() if line.strip()]
    if not lines:
        return f"{STATUS_UNEXPECTED_EXIT} (exit code {code})"
    if len(lines) <= 2:
        return "Unison exited, saying:\n" + "\n".join(lines)
    return f"Unison exited, saying:\n{lines[0]}\n[...] {lines[-1]}"


class Engine:
    """Interprets one run of ``unison ... -dumbtty``.

    Construct one per Unison process. All methods run to completion without
    blocking; callers serialize them.
    """

    def __init__(self) -> None:
        self.status = "Starting Unison"
        self.running = False
        self.busy = True
        self.progress = ""
        self.progress_fraction = 0.0
        self.left = ""
        self.right = ""
        self.items: tuple[Item, ...] | None = None
        self.alert: Alert | None = None
        self.phase = Phase.IDLE

        self._buf = InputBuffer()
        self._plan: dict[str, Action] = {}
        self._progress_tail = False
        self._pending: list[Item] = []
        self._sides_seen: set[tuple[int, str]] = set()
        self._side_names: tuple[bytes, bytes] = (b"", b"")
        self._assembling: Expecter | None = None
        self._target: str | None = None
        self._first_seen: str | None = None
        self._sync_started = False
        self._failed = False

        self._handlers: dict[Phase, Callable[[], Update | None]] = {
            Phase.WORKING: self._proc_working,
            Phase.ASSEMBLING: self._proc_assembling,
            Phase.SEEKING_DIFF: self._proc_seeking,
            Phase.DIFF_ABORTING: self._proc_seeking,
            Phase.DIFF_REQUESTED: self._proc_diff_reply,
            Phase.STARTING_SYNC: self._proc_starting_sync,
            Phase.SYNCING: self._proc_syncing,
            Phase.COMPLETED: self._proc_syncing,
        }

    # --- Observable state ---

    @property
    def plan(self) -> Mapping[str, Action]:
        """The actions that ``sync()`` will apply, by path."""
        return MappingProxyType(self._plan)

    @property
    def operations(self) -> frozenset[Operation]:
        if not self.running:
            return frozenset()
        ops = OPERATIONS[self.phase]
        if self.alert is not None:
            return ops & _STOPPABLE
        return ops

    def enabled(self, op: Operation) -> bool:
        return op in self.operations

    def _require(self, op: Operation) -> None:
        if not self.enabled(op):
            raise OperationNotAllowed(
                f"{op.value} is not available while {self.phase.value}"
            )

    # --- Entry points from the process glue ---

    def proc_start(self) -> Update:
        if self.phase is not Phase.IDLE:
            raise OperationNotAllowed("Unison has already been started")
        self.running = True
        self.busy = True
        self.status = "Starting Unison"
        self.phase = Phase.WORKING
        return Update()

    def proc_output(self, data: bytes) -> Update:
        if not self.running:
            logger.warning("ignoring %d bytes of output after exit", len(data))
            return Update()
        if _ANSI_CLEAR.search(data):
            logger.warning("unexpected terminal control sequence in output: %r", data)
        self._buf.append(data)
        return self._drain()

    def proc_exit(self, code: int, error: BaseException | str | None = None) -> Update:
        if self.phase in (Phase.EXITED, Phase.FAILED):
            logger.warning("ignoring duplicate exit notification (code=%s)", code)
            return Update()

        output = pat.text(self._buf.take_all())
        codes = _SYNC_EXIT_STATUS if self._sync_started else _EXIT_STATUS
        if self._failed:
            status = STATUS_UNEXPECTED_EXIT
            messages = pat.echo(output)
        elif code in codes:
            status = codes[code]
            messages = pat.echo(output)
        elif self.phase in _STOPPING_PHASES:
            status = "Unison exited"
            messages = pat.echo(output)
        else:
            status = STATUS_UNEXPECTED_EXIT
            messages = [Message(summarize_banner(output, code), Importance.ERROR)]
        if error is not None:
            messages.append(Message(str(error), Importance.ERROR))

        self._finish(Phase.EXITED, status)
        return Update(messages=messages)

    def proc_error(self, error: BaseException | str) -> Update:
        if self.phase is Phase.IDLE:
            self._finish(Phase.FAILED, "Failed to start Unison")
            return Update(messages=[Message(str(error), Importance.ERROR)])
        if not self.running:
            logger.warning("ignoring error after exit: %s", error)
            return Update()

        self._failed = True
        text = f"Unison I/O error: {error}"
        if self._sync_started or self.phase in _STOPPING_PHASES:
            # Interrupting now could leave replicas half-updated.
            return Update(messages=[Message(text, Importance.ERROR)])
        return Update(messages=[Message(text + FATAL_SUFFIX, Importance.ERROR)]).join(
            self._interrupt()
        )

    # --- Operations ---

    def sync(self) -> Update:
        self._require(Operation.SYNC)
        self._set_status("Starting synchronization", Phase.STARTING_SYNC)
        return Update(input=b"0\n")

    def diff(self, path: str) -> Update:
        self._require(Operation.DIFF)
        if path not in self._plan:
            return Update(messages=[self._diff_not_found(path)])
        self._target = path
        self._first_seen = None
        self._set_status("Requesting diff", Phase.SEEKING_DIFF)
        return Update(input=b"0\n")

    def quit(self) -> Update:
        self._require(Operation.QUIT)
        if self.phase is Phase.COMPLETED:
            # Unison exits by itself after printing the summary.
            self._set_status("Waiting for Unison to exit", Phase.QUITTING)
            return Update()
        return self._quit()

    def abort(self) -> Update:
        self._require(Operation.ABORT)
        if self.phase is Phase.SEEKING_DIFF:
            # The next prompt is where we stop; nothing to send.
            self._set_status("Waiting for Unison", Phase.DIFF_ABORTING)
            return Update()
        return self._interrupt()

    def interrupt(self) -> Update:
        self._require(Operation.INTERRUPT)
        return self._interrupt()

    def kill(self) -> Update:
        self._require(Operation.KILL)
        self._set_status("Killing Unison", Phase.KILLING)
        return Update(kill=True)

    def answer(self, alert: Alert, proceed: bool) -> Update:
        """Continue after an alert: ``proceed`` or abort (quit Unison)."""
        if alert is not self.alert:
            raise StaleAlert("this alert has already been answered")
        self.alert = None
        if not proceed:
            return self._quit()
        return Update(input=alert.kind.reply).join(self._drain())

    def set_action(self, paths: Iterable[str], action: Action) -> None:
        """Override what ``sync()`` will do with the given paths."""
        if self.phase is not Phase.READY or self.alert is not None:
            raise OperationNotAllowed(f"cannot change the plan while {self.phase.value}")
        if action is Action.MIXED:
            raise ValueError("mixed is not an action Unison can perform")
        paths = list(paths)
        unknown = [p for p in paths if p not in self._plan]
        if unknown:
            raise ValueError(f"not in the plan: {', '.join(map(repr, unknown))}")
        for path in paths:
            self._plan[path] = action

    # --- Transitions ---

    def _set_status(self, status: str, phase: Phase | None = None) -> None:
        self.status = status
        if phase is not None:
            self.phase = phase
            self.busy = phase not in _IDLE_PHASES
        self._clear_progress()

    def _clear_progress(self) -> None:
        self.progress = ""
        self.progress_fraction = 0.0
        self._progress_tail = False

    def _finish(self, phase: Phase, status: str) -> None:
        self._set_status(status, phase)
        self.running = False
        self.busy = False
        self.alert = None
        self._target = None

    def _quit(self) -> Update:
        self._set_status("Quitting Unison", Phase.QUITTING)
        return Update(input=ABORT_REPLY)

    def _interrupt(self) -> Update:
        self._set_status("Interrupting Unison", Phase.INTERRUPTING)
        return Update(interrupt=True)

    def _fatal(self, text: str) -> Update:
        self._buf.clear()
        self._failed = True
        return Update(messages=[Message(text + FATAL_SUFFIX, Importance.ERROR)]).join(
            self._interrupt()
        )

    def _unparsed(self, extra: bytes) -> Update:
        return self._fatal(
            "Cannot parse the following output from Unison:\n" + pat.text(extra).strip()
        )

    def _leftover(self, exp: Expectation) -> Update:
        """Echo what preceded a match, or reject it if the expecter is raw."""
        if not exp.raw:
            return Update(messages=pat.echo(exp.extra))
        if exp.extra.strip():
            return self._unparsed(exp.extra)
        return Update()

    def _back_to_ready(self) -> None:
        self._target = None
        self._first_seen = None
        self._set_status(STATUS_READY, Phase.READY)

    # --- Drain loop ---

    def _drain(self) -> Update:
        upd = Update()
        while self.alert is None and len(self._buf) > 0:
            handler = self._handlers.get(self.phase)
            if handler is None and self.phase in _STOPPING_PHASES and self._sync_started:
                handler = self._proc_syncing
            step = handler() if handler is not None else None
            if step is None:
                step = self._proc_alerts()
            if step is None:
                break
            upd = upd.join(step)
        return upd

    def _proc_alerts(self) -> Update | None:
        exp = _ALERTS(self._buf)
        if exp is None:
            return None
        preamble = pat.text(exp.extra).strip()
        if exp.name == "really":
            text = _paragraphs(preamble, "Do you really want to proceed?")
            alert = Alert(text, AlertKind.CONFIRM)
        elif exp.name == "press":
            alert = Alert(preamble or "Press return to continue.", AlertKind.CONTINUE)
        else:
            question = pat.text(exp.group(1)).strip()
            alert = Alert(_paragraphs(preamble, question), AlertKind.CONFIRM)
        self.alert = alert
        return Update(alert=alert)

    def _proc_working(self) -> Update | None:
        if self._progress_tail:
            self._progress_tail = False
            more = _PROGRESS_CONT(self._buf)
            if more is not None:
                self.progress += pat.text(more.group(0))
                self._progress_tail = True
                return Update(progressed=True)

        exp = _WORKING(self._buf)
        if exp is None:
            return None
        upd = self._leftover(exp)

        if exp.name in ("contacting", "looking", "waiting", "reconciling"):
            self._set_status(pat.text(exp.group(1)))
        elif exp.name == "progress":
            self.progress = pat.text(exp.group(1))
            self.progress_fraction = -1.0
            self._progress_tail = True
            upd = upd.join(Update(progressed=True))
        elif exp.name == "plan":
            upd = upd.join(self._begin_plan(exp))
        return upd

    def _begin_plan(self, exp: Expectation) -> Update:
        left, right = exp.group(1).strip(), exp.group(2).strip()
        self.left, self.right = pat.text(left), pat.text(right)
        self._side_names = (left, right)
        self._pending = []
        self._sides_seen = set()
        self._assembling = Expecter(
            {
                "item": pat.ITEM_HEADER,
                "side": pat.item_side(left, right),
                "prompt": pat.ITEM_PROMPT,
            },
            raw=True,
        )
        self._set_status("Assembling plan", Phase.ASSEMBLING)
        return Update(input=b"l\n")

    def _proc_assembling(self) -> Update | None:
        assert self._assembling is not None
        exp = self._assembling(self._buf)
        if exp is None:
            return None
        stray = self._leftover(exp)
        if stray:
            return stray

        if exp.name == "item":
            self._pending.append(
                Item(
                    path=pat.parse_item_path(exp.group(2)),
                    action=pat.parse_action(exp.group(1)),
                )
            )
            return Update()

        if exp.name == "side":
            return self._add_side(exp)

        self.items = tuple(self._pending)
        self._plan = {item.path: item.action for item in self.items}
        self._pending = []
        self._back_to_ready()
        return Update(plan_ready=True)

    def _add_side(self, exp: Expectation) -> Update:
        if not self._pending:
            return self._fatal("Got item details before item header")
        index = len(self._pending) - 1
        item = self._pending[index]
        name = exp.group(1)
        left, right = self._side_names
        side = "right" if name == right and name != left else "left"
        if left == right and (index, "left") in self._sides_seen:
            side = "right"
        if (index, side) in self._sides_seen:
            return self._fatal(
                f"Got duplicate details for {item.path!r} in {pat.text(name)}"
            )
        self._sides_seen.add((index, side))

        content = pat.parse_content(
            exp.match.group(2),
            exp.match.group(3),
            exp.match.group(4),
            exp.match.group(5),
            exp.match.group(6),
        )
        self._pending[index] = dataclasses.replace(item, **{side: content})
        return Update()

    def _proc_seeking(self) -> Update | None:
        exp = _SEEKING(self._buf)
        if exp is None:
            return None
        upd = self._leftover(exp)

        if exp.name == "proceed":
            # Walked past the last item; "n" goes back to the first one.
            return upd.join(Update(input=b"n\n"))
        if exp.name != "prompt":
            return upd

        if self.phase is Phase.DIFF_ABORTING:
            self._back_to_ready()
            return upd

        path = pat.parse_item_path(exp.group(2))
        if path == self._target:
            self.phase = Phase.DIFF_REQUESTED
            return upd.join(Update(input=b"d\n"))
        if self._first_seen is None:
            self._first_seen = path
        elif path == self._first_seen:
            target = self._target or ""
            self._back_to_ready()
            return upd.join(Update(messages=[self._diff_not_found(target)]))
        return upd.join(Update(input=b"n\n"))

    def _proc_diff_reply(self) -> Update | None:
        exp = _DIFF_REPLY(self._buf)
        if exp is None:
            return None
        # Unison puts a blank line and the command line before diff output,
        # so anything earlier came from the diff program's stderr.
        upd = Update(messages=[
            Message(m.text, Importance.WARNING) for m in pat.echo(exp.extra)
        ])

        if exp.name == "diff":
            body = exp.group(2)
            start = _DIFF_START.search(body)
            if start is not None:
                upd = upd.join(Update(diff=body[start.start():]))
            elif body.strip():
                upd = upd.join(Update(diff=body))
        elif exp.name == "cant":
            upd = upd.join(
                Update(messages=[Message(pat.text(exp.group(1)), Importance.ERROR)])
            )
        self._back_to_ready()
        return upd

    def _proc_starting_sync(self) -> Update | None:
        exp = _STARTING_SYNC(self._buf)
        if exp is None:
            return None
        stray = self._leftover(exp)
        if stray:
            return stray

        if exp.name == "prompt":
            path = pat.parse_item_path(exp.group(2))
            action = self._plan.get(path)
            if action is None:
                return self._fatal(
                    "Failed to start synchronization because this path is missing "
                    f"from the plan: {path}\nThis is probably a bug in unisonui."
                )
            return Update(input=pat.ACTION_INPUT[action])
        if exp.name == "proceed":
            self._sync_started = True
            self.phase = Phase.SYNCING
            return Update(input=b"y\n")
        return Update()  # Unison echoing the item we just answered

    def _proc_syncing(self) -> Update | None:
        exp = _SYNCING(self._buf)
        if exp is None:
            return None
        upd = self._leftover(exp)
        name = exp.name

        if name in ("propagating", "saving"):
            if self.phase is Phase.SYNCING:
                self._set_status(pat.text(exp.group(1)))
        elif name == "progress":
            self.progress = pat.text(exp.group(0)).strip()
            self.progress_fraction = int(exp.group(1)) / 100
            upd = upd.join(Update(progressed=True))
        elif name == "merge_failed":
            upd = upd.join(
                Update(messages=[Message(pat.text(exp.group(1)), Importance.WARNING)])
            )
        elif name == "summary":
            line = pat.text(exp.group(1))
            if self.phase is Phase.SYNCING:
                outcome = pat.text(exp.group(2))
                self._set_status(
                    f"Sync {outcome} ({pat.text(exp.group(3))})", Phase.COMPLETED
                )
            upd = upd.join(Update(messages=pat.echo(line)))
        elif name == "line":
            upd = upd.join(Update(messages=pat.echo(exp.group(1))))
        return upd

    def _diff_not_found(self, path: str) -> Message:
        return Message(
            f"Failed to get diff for: {path}\nThere is no such path in Unison's plan. "
            "This is probably a bug in unisonui.",
            Importance.ERROR,
        )


def _paragraphs(*parts: str) -> str:
    return "\n\n".join(p for p in parts if p)
