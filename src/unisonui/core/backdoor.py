"""Development back-channel: poke the Engine with JSON commands.

Each line is one JSON object. Engine fields present in it are overwritten,
and the Update fields present in it are returned for the session to apply,
so the UI can be exercised without a real Unison.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, ValidationError

from unisonui.core.model import Importance, Message, Update

if TYPE_CHECKING:
    from unisonui.core.engine import Engine

logger = logging.getLogger(__name__)

_ENGINE_FIELDS = ("status", "busy", "progress", "progress_fraction", "left", "right")


class BackdoorMessage(BaseModel):
    text: str
    importance: Importance = Importance.INFO


class BackdoorCommand(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str | None = None
    busy: bool | None = None
    progress: str | None = None
    progress_fraction: float | None = None
    left: str | None = None
    right: str | None = None

    input: str | None = None
    interrupt: bool = False
    kill: bool = False
    diff: str | None = None
    messages: list[BackdoorMessage] = []


def apply_backdoor(engine: Engine, line: str) -> Update:
    """Apply one command line to ``engine`` and return the Update it asks for."""
    line = line.strip()
    if not line:
        return Update()
    try:
        cmd = BackdoorCommand.model_validate_json(line)
    except ValidationError as e:
        logger.warning("ignoring malformed backdoor command %r: %s", line, e)
        return Update()

    for name in _ENGINE_FIELDS:
        value = getattr(cmd, name)
        if value is not None:
            setattr(engine, name, value)

    return Update(
        input=cmd.input.encode() if cmd.input else b"",
        interrupt=cmd.interrupt,
        kill=cmd.kill,
        diff=cmd.diff.encode() if cmd.diff is not None else None,
        messages=[Message(m.text, m.importance) for m in cmd.messages],
    )
