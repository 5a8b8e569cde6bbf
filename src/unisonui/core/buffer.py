"""Input buffer for Unison output, with multi-pattern matching."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class InputBuffer:
    """Bytes received from Unison that no recognizer has consumed yet.

    Chunks are appended as they arrive; recognizers consume matched
    prefixes from the front.
    """

    def __init__(self) -> None:
        self._data = bytearray()

    def append(self, data: bytes) -> None:
        self._data.extend(data)

    def consume(self, n: int) -> bytes:
        """Remove and return the first ``n`` bytes."""
        head = bytes(self._data[:n])
        del self._data[:n]
        return head

    def take_all(self) -> bytes:
        return self.consume(len(self._data))

    def clear(self) -> None:
        self._data.clear()

    def view(self) -> bytes:
        return bytes(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __bytes__(self) -> bytes:
        return self.view()


@dataclass
class Expectation:
    """A successful match, already consumed from the buffer."""

    name: str
    match: re.Match[bytes]
    extra: bytes = b""  # unclaimed bytes that preceded the match
    raw: bool = False

    def group(self, n: int = 0) -> bytes:
        return self.match.group(n) or b""


class Expecter:
    """Finds the first of several named patterns in an InputBuffer.

    The leftmost match wins; on a tie the pattern listed first wins. The
    match and everything before it are consumed. The Expectation carries the
    ``raw`` flag: with ``raw=False`` the engine echoes ``extra`` to the user,
    with ``raw=True`` any non-blank ``extra`` is output that should not be
    there. Expecters whose preamble is part of what they recognize (alerts,
    diff replies) read ``extra`` themselves.
    """

    def __init__(self, patterns: dict[str, bytes], raw: bool = False) -> None:
        self.raw = raw
        self._patterns = [(name, re.compile(pat)) for name, pat in patterns.items()]

    def __call__(self, buf: InputBuffer) -> Expectation | None:
        data = buf.view()
        best: tuple[str, re.Match[bytes]] | None = None
        for name, pattern in self._patterns:
            m = pattern.search(data)
            if m is None:
                continue
            if best is None or m.start() < best[1].start():
                best = (name, m)
        if best is None:
            return None

        name, m = best
        extra = buf.consume(m.end())[: m.start()]
        logger.debug("match %s: %r (extra %r)", name, m.group(0), extra)
        return Expectation(name=name, match=m, extra=extra, raw=self.raw)
