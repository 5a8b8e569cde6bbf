"""Byte patterns for Unison's ``-dumbtty`` output, and their parsers.

Every pattern works on raw bytes from the child. ``(?m:^)`` anchors a
pattern at the start of any line, ``\\Z`` at the end of the buffer (that is,
Unison is now waiting for input).
"""

from __future__ import annotations

import re
from datetime import datetime

from unisonui.core.model import (
    Action,
    Content,
    ContentStatus,
    ContentType,
    Importance,
    Message,
)


def any_of(keys) -> bytes:
    """A capturing alternation of the literal ``keys``."""
    return b"(" + b"|".join(re.escape(k) for k in keys) + b")"


ARROWS: dict[bytes, Action] = {
    b"<-?->": Action.SKIP,
    b"<=?=>": Action.SKIP,
    b"---->": Action.LEFT_TO_RIGHT,
    b"====>": Action.LEFT_TO_RIGHT,
    b"--?->": Action.MAYBE_LEFT_TO_RIGHT,
    b"==?=>": Action.MAYBE_LEFT_TO_RIGHT,
    b"<----": Action.RIGHT_TO_LEFT,
    b"<====": Action.RIGHT_TO_LEFT,
    b"<-?--": Action.MAYBE_RIGHT_TO_LEFT,
    b"<=?==": Action.MAYBE_RIGHT_TO_LEFT,
    b"<-M->": Action.MERGE,
    b"<=M=>": Action.MERGE,
    b"error": Action.ERROR,
}

# Replies to an item prompt while starting synchronization. An empty line
# accepts Unison's own default for the item.
ACTION_INPUT: dict[Action, bytes] = {
    Action.SKIP: b"/\n",
    Action.LEFT_TO_RIGHT: b">\n",
    Action.RIGHT_TO_LEFT: b"<\n",
    Action.MERGE: b"m\n",
    Action.MAYBE_LEFT_TO_RIGHT: b"\n",
    Action.MAYBE_RIGHT_TO_LEFT: b"\n",
    Action.ERROR: b"\n",
}

# The 17-column type/status field of the long item listing.
TYPE_STATUS: dict[bytes, tuple[ContentType, ContentStatus]] = {
    b"unchanged file   ": (ContentType.FILE, ContentStatus.UNCHANGED),
    b"unchanged symlink": (ContentType.SYMLINK, ContentStatus.UNCHANGED),
    b"unchanged dir    ": (ContentType.DIRECTORY, ContentStatus.UNCHANGED),
    b"new file         ": (ContentType.FILE, ContentStatus.CREATED),
    b"file             ": (ContentType.FILE, ContentStatus.CREATED),
    b"changed file     ": (ContentType.FILE, ContentStatus.MODIFIED),
    b"changed props    ": (ContentType.FILE, ContentStatus.PROPS_CHANGED),
    b"new symlink      ": (ContentType.SYMLINK, ContentStatus.CREATED),
    b"symlink          ": (ContentType.SYMLINK, ContentStatus.CREATED),
    b"changed symlink  ": (ContentType.SYMLINK, ContentStatus.MODIFIED),
    b"new dir          ": (ContentType.DIRECTORY, ContentStatus.CREATED),
    b"dir              ": (ContentType.DIRECTORY, ContentStatus.CREATED),
    b"changed dir      ": (ContentType.DIRECTORY, ContentStatus.MODIFIED),
    b"dir props changed": (ContentType.DIRECTORY, ContentStatus.PROPS_CHANGED),
}

PROMPT = rb"\s*\[[^\]]*\] \Z"

# Startup
CONTACTING_SERVER = rb"(?m:^)Unison [^:\n]+: (Contacting server)\.\.\.\n"
CONNECTED = rb"(?m:^)Connected \[[^\]]+\]\n"
LOOKING_FOR_CHANGES = rb"(?m:^)(Looking for changes)\n"
WAITING_FOR_CHANGES = rb"(?m:^)\s*(Waiting for changes from server)\n"
RECONCILING_CHANGES = rb"(?m:^)(Reconciling changes)\n"
FILE_PROGRESS = rb"(?m:^)[-/|\\] ([^\r\n]+)"
FILE_PROGRESS_CONT = rb"\A[^\r\n]+"
ERASE_LINE = rb"\A\r *\r"
ANSI_CLEAR_LINE = rb"\x1b\[[0-2]?K"

# Plan
SHORT_TYPE_STATUS = (
    rb"(?:        |deleted |new file|file    |changed |props   |new link"
    rb"|link    |chgd lnk|new dir |dir     |chgd dir)"
)
ITEM = SHORT_TYPE_STATUS + b" " + any_of(ARROWS) + b" " + SHORT_TYPE_STATUS + rb"   (.*)  "
ITEM_PROMPT = rb"(?m:^)[ \t]*" + ITEM + PROMPT
REPLICAS_HEADER = rb"(?m:^)(.{12})   (.{12}) +\n"
PLAN_BEGINNING = REPLICAS_HEADER + ITEM_PROMPT
ITEM_HEADER = rb"(?m:^)\s*" + ITEM + rb"\n"
ITEM_SIDE_INFO = (
    rb" : (?:(absent|deleted)|"
    + any_of(TYPE_STATUS)
    + rb"  (modified on ([0-9-]{10} at [ 0-9:]{8})  size ([0-9]+) .*))\n"
)


def item_side(left: bytes, right: bytes) -> bytes:
    """Pattern for the ``<replica> : <description>`` lines of one item."""
    return rb"(?m:^)" + any_of([left, right]) + rb"\s*" + ITEM_SIDE_INFO


# Synchronization
PROCEED_UPDATES = rb"(?m:^)Proceed with propagating updates\?" + PROMPT
PROPAGATING_UPDATES = rb"(?m:^)(Propagating updates)\n"
SAVING_STATE = rb"(?m:^)(Saving synchronizer state)\n"
STARTED_FINISHED_PROPAGATING = (
    rb"(?m:^)UNISON [0-9.]+ \(OCAML [0-9.]+\) (?:started|finished) propagating changes at .*\n"
)
SYNC_THREAD_STATUS = rb"(?m:^)\[(?:BGN|END|CONFLICT)\] [^\n]*\n"
SYNC_PROGRESS = rb"(?m:^)\s*([0-9]+)%  (?:[0-9]+:[0-9]{2}|--:--) ETA"
WHY_SKIPPED = (
    rb"(?m:^)\s*(?:conflicting updates|skip requested|contents changed on both sides)\n"
)
MERGE_NOISE = (
    rb"(?m:^)(?:Merge command: [^\n]*|Merge result \(exited \(0\)\):|No outputs detected *"
    rb"|No output from merge cmd[^\n]*|Merge program made files equal)\n"
)
MERGE_FAILED = rb"(?m:^)(Merge result \(exited \((?!0\)\):)[^\n]*\)\):)\n"
SUMMARY = rb"(?m:^)(Synchronization (complete|incomplete) at [^\n(]*\(([^)\n]*)\))\n"
ANY_LINE = rb"(?m:^)([^\n]*)\n"

# Diff
DIFF_REPLY = rb"\n([^\n]* '[^\n]*' '[^\n]*')\n\n((?s:.*))\n" + ITEM_PROMPT
CANT_DIFF = rb"(?m:^)(Can't diff:[^\n]*)\n" + ITEM_PROMPT

# Alerts
REALLY_PROCEED = rb"Do you really want to proceed\?" + PROMPT
PRESS_RETURN = rb"Press return to continue\." + PROMPT
QUESTION = rb"(?m:^)([^\n]*\?) \[[^\]]*\] \Z"

_WARNING = re.compile(r"(?i)^(?:warning|synchronization incomplete)")
_ERROR = re.compile(r"(?i)^((?:fatal )?error|can't |failed)")


def text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def classify(line: str) -> Importance:
    if _WARNING.match(line):
        return Importance.WARNING
    if _ERROR.match(line):
        return Importance.ERROR
    return Importance.INFO


def echo(output: bytes | str) -> list[Message]:
    """Turn leftover output into (at most one) message."""
    if isinstance(output, bytes):
        output = text(output)
    stripped = output.strip()
    if not stripped:
        return []
    return [Message(stripped, classify(stripped))]


def parse_action(arrow: bytes) -> Action:
    return ARROWS[arrow]


def parse_item_path(raw: bytes) -> str:
    path = text(raw)
    if path.endswith("/"):
        path = path.rstrip("/")
    return path


def parse_modified(stamp: bytes) -> datetime | None:
    try:
        return datetime.strptime(text(stamp), "%Y-%m-%d at %H:%M:%S")
    except ValueError:
        return None


def parse_content(
    simple: bytes | None,
    type_status: bytes | None,
    props: bytes | None,
    modified: bytes | None,
    size: bytes | None,
) -> Content:
    """Build a Content from the groups of an item-side line."""
    if simple == b"absent":
        return Content(ContentType.ABSENT, ContentStatus.UNCHANGED)
    if simple == b"deleted":
        return Content(ContentType.ABSENT, ContentStatus.DELETED)
    kind, status = TYPE_STATUS[type_status or b""]
    return Content(
        type=kind,
        status=status,
        props=text(props or b""),
        modified=parse_modified(modified) if modified else None,
        size=int(size) if size else 0,
    )
