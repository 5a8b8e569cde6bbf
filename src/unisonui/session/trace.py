"""Session transcripts: record what Unison said and what we answered.

A transcript is a JSON-lines file of TraceEvent records. Byte payloads are
stored latin-1 decoded, which keeps them exact and mostly readable. Replaying
a transcript through a fresh Engine reproduces a session without Unison,
which is how parser bugs get turned into tests.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import IO, Iterable, Iterator, Literal

from pydantic import BaseModel, Field, ValidationError

from unisonui.core.engine import Engine
from unisonui.core.model import Update

logger = logging.getLogger(__name__)

TraceKind = Literal["out", "in", "signal", "exit", "error"]


class TraceEvent(BaseModel):
    kind: TraceKind
    data: str = Field(default="", description="latin-1 decoded bytes, or text")
    code: int | None = None
    time: float = Field(default_factory=time.time)

    @property
    def payload(self) -> bytes:
        return self.data.encode("latin-1")


class TraceWriter:
    """Appends TraceEvents to a file, one JSON object per line."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file: IO[str] | None = open(self.path, "w", encoding="utf-8")
        logger.info("Recording transcript to %s", self.path)

    def record(self, kind: TraceKind, data: bytes | str = b"", code: int | None = None) -> None:
        if self._file is None:
            return
        if isinstance(data, bytes):
            data = data.decode("latin-1")
        event = TraceEvent(kind=kind, data=data, code=code)
        self._file.write(event.model_dump_json() + "\n")
        self._file.flush()

    def output(self, data: bytes) -> None:
        self.record("out", data)

    def input(self, data: bytes) -> None:
        self.record("in", data)

    def signal(self, name: str) -> None:
        self.record("signal", name)

    def exit(self, code: int) -> None:
        self.record("exit", code=code)

    def error(self, error: BaseException | str) -> None:
        self.record("error", str(error))

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> TraceWriter:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def read_trace(path: str | Path) -> list[TraceEvent]:
    """Load a transcript. Raises ValueError naming the first bad line."""
    events: list[TraceEvent] = []
    with open(Path(path).expanduser(), encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                events.append(TraceEvent.model_validate_json(line))
            except ValidationError as e:
                raise ValueError(f"{path}:{lineno}: not a trace event: {e}") from e
    return events


def _chunks(data: bytes, size: int | None) -> Iterator[bytes]:
    if not size or size >= len(data):
        yield data
        return
    for i in range(0, len(data), size):
        yield data[i : i + size]


def replay(
    events: Iterable[TraceEvent],
    chunk: int | None = None,
    engine: Engine | None = None,
) -> Iterator[tuple[TraceEvent, Update]]:
    """Feed a transcript to ``engine`` (a fresh one by default).

    Output is re-split into ``chunk``-byte pieces when given. Recorded input
    that answers a live alert is replayed as that answer; other input and
    signals only mark where they happened.
    """
    engine = engine or Engine()
    engine.proc_start()
    for event in events:
        if event.kind == "out":
            upd = Update()
            for piece in _chunks(event.payload, chunk):
                if piece:
                    upd = upd.join(engine.proc_output(piece))
        elif event.kind == "in" and engine.alert is not None:
            alert = engine.alert
            upd = engine.answer(alert, event.payload == alert.kind.reply)
        elif event.kind == "exit":
            upd = engine.proc_exit(event.code if event.code is not None else -1)
        elif event.kind == "error":
            upd = engine.proc_error(event.data)
        else:
            upd = Update()
        yield event, upd
