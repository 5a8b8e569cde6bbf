"""Data model shared by the engine, the plan tree and the front-ends."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime


class ContentType(enum.Enum):
    ABSENT = "absent"
    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


class ContentStatus(enum.Enum):
    UNCHANGED = "unchanged"
    CREATED = "created"
    MODIFIED = "modified"
    PROPS_CHANGED = "props-changed"
    DELETED = "deleted"


@dataclass(frozen=True)
class Content:
    """One side of a plan entry, as Unison describes it."""

    type: ContentType = ContentType.ABSENT
    status: ContentStatus = ContentStatus.UNCHANGED
    props: str = ""  # "modified on ... size ... perms", opaque
    modified: datetime | None = None
    size: int = 0


class Action(enum.Enum):
    """What Unison proposes to do with an item."""

    SKIP = "skip"
    LEFT_TO_RIGHT = "left-to-right"
    MAYBE_LEFT_TO_RIGHT = "maybe-left-to-right"
    RIGHT_TO_LEFT = "right-to-left"
    MAYBE_RIGHT_TO_LEFT = "maybe-right-to-left"
    MERGE = "merge"
    MIXED = "mixed"  # aggregate tree nodes only
    ERROR = "error"


@dataclass(frozen=True)
class Item:
    path: str
    left: Content = field(default_factory=Content)
    right: Content = field(default_factory=Content)
    action: Action = Action.SKIP


class Importance(enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Message:
    text: str
    importance: Importance = Importance.INFO


class AlertKind(enum.Enum):
    """Kinds of modal prompts, each carrying its affirmative reply."""

    CONFIRM = b"y\n"
    CONTINUE = b"\n"

    @property
    def reply(self) -> bytes:
        return self.value


# Reply sent when the user declines any alert.
ABORT_REPLY = b"q\n"


@dataclass(frozen=True)
class Alert:
    """A prompt from Unison that needs the user's decision.

    Alerts are plain values. They are answered through
    ``Engine.answer(alert, proceed)``, which accepts each alert once.
    """

    text: str
    kind: AlertKind = AlertKind.CONFIRM
    importance: Importance = Importance.WARNING


class Operation(enum.Enum):
    SYNC = "sync"
    DIFF = "diff"
    QUIT = "quit"
    ABORT = "abort"
    INTERRUPT = "interrupt"
    KILL = "kill"


@dataclass
class Update:
    """What the caller must do after an Engine call.

    ``input`` is written to Unison first, then ``interrupt`` and ``kill``
    are honored in that order. Everything else is for display.
    """

    progressed: bool = False
    input: bytes = b""
    interrupt: bool = False
    kill: bool = False
    plan_ready: bool = False
    diff: bytes | None = None
    messages: list[Message] = field(default_factory=list)
    alert: Alert | None = None

    def join(self, other: Update) -> Update:
        """Combine two updates, ``self`` happening first."""
        if self.alert is not None and other.alert is not None:
            raise ValueError("cannot join two updates that both carry an alert")
        if self.diff is not None and other.diff is not None:
            raise ValueError("cannot join two updates that both carry a diff")
        return Update(
            progressed=self.progressed or other.progressed,
            input=self.input + other.input,
            interrupt=self.interrupt or other.interrupt,
            kill=self.kill or other.kill,
            plan_ready=self.plan_ready or other.plan_ready,
            diff=self.diff if self.diff is not None else other.diff,
            messages=self.messages + other.messages,
            alert=self.alert or other.alert,
        )

    def __bool__(self) -> bool:
        return bool(
            self.progressed
            or self.input
            or self.interrupt
            or self.kill
            or self.plan_ready
            or self.diff is not None
            or self.messages
            or self.alert is not None
        )
