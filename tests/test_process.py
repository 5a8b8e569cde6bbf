"""Tests for unisonui.proc.process (UnisonProcess) against short real commands."""

from __future__ import annotations

import pytest

from unisonui.proc.process import ProcessStatus, UnisonProcess


# ---------------------------------------------------------------------------
# Not running
# ---------------------------------------------------------------------------


class TestNotRunning:
    def test_write_before_start(self) -> None:
        proc = UnisonProcess(command=["unison"])
        assert proc.status == ProcessStatus.NEW
        with pytest.raises(OSError, match="not running"):
            proc.write(b"y\n")

    def test_signals_before_start_are_ignored(self) -> None:
        proc = UnisonProcess(command=["unison"])
        proc.interrupt()
        proc.kill()
        assert proc.status == ProcessStatus.NEW

    async def test_write_after_exit(self) -> None:
        proc = UnisonProcess(command=["true"])
        await proc.start()
        assert await proc.wait() == 0
        assert proc.status == ProcessStatus.EXITED
        with pytest.raises(OSError, match="not running"):
            proc.write(b"y\n")

    async def test_signals_after_exit_are_ignored(self) -> None:
        proc = UnisonProcess(command=["true"])
        await proc.start()
        await proc.wait()
        proc.interrupt()
        proc.kill()
        assert not proc.alive


# ---------------------------------------------------------------------------
# Running
# ---------------------------------------------------------------------------


class TestRunning:
    async def test_output_and_exit_code(self) -> None:
        output: list[bytes] = []
        codes: list[int] = []
        proc = UnisonProcess(
            command=["sh", "-c", "echo hello; exit 2"],
            on_output=output.append,
            on_exit=codes.append,
        )
        await proc.start()
        assert await proc.wait() == 2
        assert b"".join(output) == b"hello\n"
        assert codes == [2]

    async def test_write_reaches_stdin(self) -> None:
        output: list[bytes] = []
        proc = UnisonProcess(command=["head", "-n", "1"], on_output=output.append)
        await proc.start()
        proc.write(b"y\n")
        assert await proc.wait() == 0
        assert b"".join(output) == b"y\n"

    async def test_missing_executable(self) -> None:
        proc = UnisonProcess(command=["/nonexistent/unison"])
        with pytest.raises(OSError):
            await proc.start()
        assert proc.status == ProcessStatus.NEW
