"""The Unison child process and its pipes."""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import signal
import subprocess
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)

READ_SIZE = 4096


class ProcessStatus(enum.Enum):
    """Lifecycle states for the Unison process."""

    NEW = "new"
    RUNNING = "running"
    EXITED = "exited"


@dataclass
class UnisonProcess:
    """One Unison run with its stdio on pipes.

    - stdout and stderr are merged onto one pipe
    - the child leads its own process group (start_new_session), so
      signals also reach helpers such as ssh
    - output, read errors and the exit code are reported through callbacks,
      always from the event loop thread

    Uses pipes rather than a pty: ``-dumbtty`` needs no terminal and a pty
    would echo everything written to it.
    """

    command: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)

    on_output: Callable[[bytes], None] | None = None
    on_error: Callable[[OSError], None] | None = None
    on_exit: Callable[[int], None] | None = None

    _proc: subprocess.Popen | None = field(default=None, init=False)
    _pid: int = field(default=0, init=False)
    _pgid: int = field(default=0, init=False)
    _reader_task: asyncio.Task | None = field(default=None, init=False)
    _status: ProcessStatus = field(default=ProcessStatus.NEW, init=False)

    async def start(self) -> None:
        """Spawn Unison. Raises OSError if it cannot be executed."""
        env = {**os.environ, **self.env}
        self._proc = subprocess.Popen(
            self.command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=True,
            env=env,
            cwd=self.cwd,
        )
        self._pid = self._proc.pid
        try:
            self._pgid = os.getpgid(self._pid)
        except ProcessLookupError:
            self._pgid = 0
        self._status = ProcessStatus.RUNNING

        self._reader_task = asyncio.create_task(self._read_loop())

        logger.info(
            "Unison started: pid=%d pgid=%d cmd=%s",
            self._pid,
            self._pgid,
            " ".join(self.command),
        )

    async def _read_loop(self) -> None:
        """Forward output until EOF, then report the exit code."""
        assert self._proc is not None and self._proc.stdout is not None
        loop = asyncio.get_running_loop()
        fd = self._proc.stdout.fileno()
        try:
            while True:
                try:
                    data = await loop.run_in_executor(None, lambda: os.read(fd, READ_SIZE))
                except OSError as e:
                    logger.warning("reading from Unison failed: %s", e)
                    if self.on_error:
                        self.on_error(e)
                    break
                if not data:
                    break
                if self.on_output:
                    self.on_output(data)
        finally:
            code = await loop.run_in_executor(None, self._proc.wait)
            self._status = ProcessStatus.EXITED
            logger.info("Unison exited (code=%s)", code)
            self._close_pipes()
            if self.on_exit:
                self.on_exit(code)

    def write(self, data: bytes) -> None:
        """Write to Unison's stdin. Raises OSError on failure."""
        proc = self._proc
        if (
            self._status is not ProcessStatus.RUNNING
            or proc is None
            or proc.stdin is None
            or proc.stdin.closed
        ):
            raise OSError("Unison is not running")
        logger.debug("-> %r", data)
        fd = self._proc.stdin.fileno()
        view = memoryview(data)
        while view:
            n = os.write(fd, view)
            view = view[n:]

    def interrupt(self) -> None:
        self._signal(signal.SIGINT)

    def kill(self) -> None:
        self._signal(signal.SIGKILL)

    def _signal(self, sig: signal.Signals) -> None:
        """Signal the process group, falling back on the process alone."""
        if self._status is not ProcessStatus.RUNNING:
            logger.debug("not sending %s: Unison is %s", sig.name, self._status.value)
            return
        if self._pgid:
            try:
                os.killpg(self._pgid, sig)
                logger.info("Sent %s to Unison (pgid=%d)", sig.name, self._pgid)
                return
            except ProcessLookupError:
                logger.debug("Process group already gone: %d", self._pgid)
            except PermissionError as e:
                logger.debug("Cannot signal process group %d: %s", self._pgid, e)
        try:
            os.kill(self._pid, sig)
            logger.info("Sent %s to Unison (pid=%d)", sig.name, self._pid)
        except ProcessLookupError:
            logger.debug("Process already gone: %d", self._pid)

    async def wait(self) -> int | None:
        """Wait until the reader has reported the exit."""
        if self._reader_task is not None:
            await self._reader_task
        return self._proc.returncode if self._proc else None

    def _close_pipes(self) -> None:
        if self._proc is None:
            return
        for pipe in (self._proc.stdin, self._proc.stdout):
            if pipe is None:
                continue
            try:
                pipe.close()
            except OSError:
                pass

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def alive(self) -> bool:
        return self._status is ProcessStatus.RUNNING

    @property
    def status(self) -> ProcessStatus:
        return self._status
