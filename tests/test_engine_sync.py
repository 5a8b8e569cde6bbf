"""Tests for unisonui.core.engine: propagating the plan."""

from __future__ import annotations

import pytest

from unisonui.core.engine import Engine, Phase
from unisonui.core.model import Action, Importance, Message, Operation, Update

from transcripts import HEADER, ITEM_ONE, PROCEED, PROMPT_ONE, feed

MERGE_ITEM_ONE = b"changed  <=M=>            one  \n"
FATAL = "\nThis is a fatal error. Unison will be stopped now."


def merging(engine: Engine) -> Engine:
    engine.set_action(["one"], Action.MERGE)
    assert engine.sync() == Update(input=b"0\n")
    assert engine.proc_output(PROMPT_ONE) == Update(input=b"m\n")
    assert not engine.proc_output(MERGE_ITEM_ONE)
    assert engine.proc_output(PROCEED) == Update(input=b"y\n")
    return engine


# ---------------------------------------------------------------------------
# Starting synchronization
# ---------------------------------------------------------------------------


class TestStartSync:
    def test_answers_prompts_from_plan(self, ready_engine: Engine) -> None:
        assert ready_engine.sync() == Update(input=b"0\n")
        assert ready_engine.status == "Starting synchronization"
        assert ready_engine.busy
        assert ready_engine.operations == {Operation.ABORT, Operation.INTERRUPT, Operation.KILL}
        assert ready_engine.proc_output(PROMPT_ONE) == Update(input=b">\n")
        assert not ready_engine.proc_output(ITEM_ONE)
        assert ready_engine.proc_output(PROCEED) == Update(input=b"y\n")
        assert ready_engine.phase == Phase.SYNCING
        assert ready_engine.status == "Starting synchronization"

    @pytest.mark.parametrize(
        "action, reply",
        [
            (Action.SKIP, b"/\n"),
            (Action.LEFT_TO_RIGHT, b">\n"),
            (Action.RIGHT_TO_LEFT, b"<\n"),
            (Action.MERGE, b"m\n"),
            (Action.MAYBE_LEFT_TO_RIGHT, b"\n"),
        ],
    )
    def test_reply_per_action(self, ready_engine: Engine, action: Action, reply: bytes) -> None:
        ready_engine.set_action(["one"], action)
        ready_engine.sync()
        assert ready_engine.proc_output(PROMPT_ONE) == Update(input=reply)

    def test_unexpected_line(self, ready_engine: Engine) -> None:
        ready_engine.set_action(["one"], Action.RIGHT_TO_LEFT)
        ready_engine.sync()
        upd = ready_engine.proc_output(b"some unexpected line here\n" + PROMPT_ONE)
        assert upd == Update(
            interrupt=True,
            messages=[
                Message(
                    "Cannot parse the following output from Unison:\n"
                    "some unexpected line here" + FATAL,
                    Importance.ERROR,
                )
            ],
        )
        assert ready_engine.status == "Interrupting Unison"
        assert ready_engine.items is not None
        assert ready_engine.plan["one"] == Action.RIGHT_TO_LEFT

    def test_path_missing_from_plan(self, ready_engine: Engine) -> None:
        ready_engine.sync()
        upd = ready_engine.proc_output(b"changed  ---->            two  [f] ")
        assert upd == Update(
            interrupt=True,
            messages=[
                Message(
                    "Failed to start synchronization because this path is missing "
                    "from the plan: two\nThis is probably a bug in unisonui." + FATAL,
                    Importance.ERROR,
                )
            ],
        )
        assert ready_engine.status == "Interrupting Unison"

    def test_abort_interrupts(self, ready_engine: Engine) -> None:
        ready_engine.sync()
        assert ready_engine.abort() == Update(interrupt=True)


# ---------------------------------------------------------------------------
# Propagation
# ---------------------------------------------------------------------------


class TestPropagation:
    def test_full_run(self, syncing_engine: Engine) -> None:
        engine = syncing_engine
        assert not engine.proc_output(b"Propagating updates\n")
        assert engine.status == "Propagating updates"
        assert not engine.proc_output(
            b"\n\nUNISON 2.51.3 (OCAML 4.11.1) started propagating changes at 18:31:20.92 on 08 Feb 2021\n"
        )
        assert not engine.proc_output(
            b"[BGN] Updating file one from /home/user/left to /home/user/right\n"
        )
        assert engine.proc_output(b"100%  00:00 ETA") == Update(progressed=True)
        assert engine.progress == "100%  00:00 ETA"
        assert engine.progress_fraction == 1.0
        assert not engine.proc_output(b"\r               \r")
        assert not engine.proc_output(b"[END] Updating file one\n")
        assert not engine.proc_output(
            b"UNISON 2.51.3 (OCAML 4.11.1) finished propagating changes at 18:31:20.92 on 08 Feb 2021\n\n\n"
        )
        assert not engine.proc_output(b"Saving synchronizer state\n")
        assert engine.status == "Saving synchronizer state"
        assert engine.progress == ""
        assert engine.progress_fraction == 0

        summary = "Synchronization complete at 18:31:20  (1 item transferred, 0 skipped, 0 failed)"
        assert engine.proc_output(summary.encode() + b"\n") == Update(messages=[Message(summary)])
        assert engine.status == "Sync complete (1 item transferred, 0 skipped, 0 failed)"
        assert engine.phase == Phase.COMPLETED
        assert not engine.busy
        assert engine.running
        assert engine.operations == {Operation.QUIT, Operation.INTERRUPT, Operation.KILL}

        assert not engine.proc_exit(0)
        assert engine.status == "Finished successfully"
        assert not engine.busy
        assert not engine.running
        assert engine.items is not None

    def test_terse(self, ready_engine: Engine) -> None:
        ready_engine.sync()
        feed(ready_engine, PROMPT_ONE, ITEM_ONE, PROCEED)
        assert not feed(
            ready_engine,
            b"[BGN] Updating file one from /home/user/left to /home/user/right\n",
            b"[END] Updating file one\n",
        )
        assert ready_engine.status == "Starting synchronization"
        upd = ready_engine.proc_output(
            b"Synchronization complete at 01:50:54  (1 item transferred, 0 skipped, 0 failed)\n"
        )
        assert upd.messages[0].importance == Importance.INFO
        ready_engine.proc_exit(0)
        assert ready_engine.status == "Finished successfully"

    @pytest.mark.parametrize(
        "line, text, fraction",
        [
            (b"  0%  73:28 ETA", "0%  73:28 ETA", 0.0),
            (b"  8%  07:45 ETA", "8%  07:45 ETA", 0.08),
            (b" 13%  07:51 ETA", "13%  07:51 ETA", 0.13),
            (b" 14%  --:-- ETA", "14%  --:-- ETA", 0.14),
            (b" 94%  00:01 ETA", "94%  00:01 ETA", 0.94),
        ],
    )
    def test_progress(
        self, syncing_engine: Engine, line: bytes, text: str, fraction: float
    ) -> None:
        syncing_engine.proc_output(
            b"[BGN] Updating file one from /home/user/left to /home/user/right\n"
        )
        assert syncing_engine.progress == ""
        assert syncing_engine.proc_output(line) == Update(progressed=True)
        assert syncing_engine.progress == text
        assert syncing_engine.progress_fraction == pytest.approx(fraction)
        assert not syncing_engine.proc_output(b"\r               \r")
        syncing_engine.proc_output(b"[END] Updating file one\n")
        assert syncing_engine.progress == text

    def test_modified_during_sync(self, syncing_engine: Engine) -> None:
        feed(
            syncing_engine,
            b"Propagating updates\n",
            b"[BGN] Updating file one from /home/user/left to /home/user/right\n",
            b"100%  00:00 ETA",
            b"\r               \r",
        )
        upd = syncing_engine.proc_output(
            b"Failed: The source file /home/user/left/one\n"
            b"has been modified during synchronization.  Transfer aborted.\n"
        )
        assert upd == Update(
            messages=[
                Message("Failed: The source file /home/user/left/one", Importance.ERROR),
                Message("has been modified during synchronization.  Transfer aborted."),
            ]
        )
        upd = syncing_engine.proc_output(
            b"Synchronization incomplete at 20:13:49  (0 items transferred, 0 skipped, 1 failed)\n"
        )
        assert upd.messages[0].importance == Importance.WARNING
        assert syncing_engine.status == "Sync incomplete (0 items transferred, 0 skipped, 1 failed)"
        assert syncing_engine.proc_output(b"  failed: one\n") == Update(
            messages=[Message("failed: one", Importance.ERROR)]
        )
        syncing_engine.proc_exit(2)
        assert syncing_engine.status == "Finished with errors"

    def test_skipped(self, syncing_engine: Engine) -> None:
        syncing_engine.proc_output(
            b"Synchronization complete at 10:00:00  (0 items transferred, 1 skipped, 0 failed)\n"
        )
        assert not syncing_engine.proc_output(b"  skip requested\n")
        syncing_engine.proc_exit(1)
        assert syncing_engine.status == "Finished successfully (some files skipped)"

    def test_connection_lost(self, syncing_engine: Engine) -> None:
        syncing_engine.proc_output(b"Propagating updates\n")
        upd = syncing_engine.proc_output(b"Fatal error: Lost connection with the server\n")
        assert upd == Update(
            messages=[Message("Fatal error: Lost connection with the server", Importance.ERROR)]
        )
        assert syncing_engine.busy
        syncing_engine.proc_exit(3)
        assert syncing_engine.status == "Unison exited unexpectedly"
        assert not syncing_engine.busy
        assert syncing_engine.items is not None

    def test_output_after_interrupt_is_still_echoed(self, syncing_engine: Engine) -> None:
        syncing_engine.abort()
        assert syncing_engine.phase == Phase.INTERRUPTING
        upd = syncing_engine.proc_output(b"Terminated!\n")
        assert upd == Update(messages=[Message("Terminated!")])
        syncing_engine.proc_exit(3)
        assert syncing_engine.status == "Unison exited"

    def test_quit_after_completion_waits(self, syncing_engine: Engine) -> None:
        syncing_engine.proc_output(
            b"Synchronization complete at 18:31:20  (1 item transferred, 0 skipped, 0 failed)\n"
        )
        assert not syncing_engine.quit()
        assert syncing_engine.status == "Waiting for Unison to exit"
        assert syncing_engine.phase == Phase.QUITTING
        syncing_engine.proc_exit(0)
        assert syncing_engine.status == "Finished successfully"


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


class TestMerge:
    def test_merge(self, ready_engine: Engine) -> None:
        engine = merging(ready_engine)
        assert not feed(
            engine,
            b"Merge command: meld ''/home/user/left/.unison.merge1-one'' ''/home/user/left/.unison.merge2-one''\n",
            b"Merge result (exited (0)):\n\n",
            b"No outputs detected \n",
            b"No output from merge cmd and both original files are still present\n",
            b"Merge program made files equal\n",
        )
        assert engine.proc_output(b"Warning: 'backupcurrent' is not set for path one\n") == Update(
            messages=[
                Message("Warning: 'backupcurrent' is not set for path one", Importance.WARNING)
            ]
        )
        engine.proc_output(
            b"Synchronization complete at 16:40:04  (1 item transferred, 0 skipped, 0 failed)\n"
        )
        engine.proc_exit(0)
        assert engine.status == "Finished successfully"

    def test_merge_failed(self, ready_engine: Engine) -> None:
        engine = merging(ready_engine)
        feed(
            engine,
            b"Merge command: meld ''/home/user/left/.unison.merge1-one'' ''/home/user/left/.unison.merge2-one''\n",
            b"Merge result (exited (0)):\n\n",
        )
        upd = engine.proc_output(b"\nFailed [one]: Merge program didn't change either temp file\n")
        assert upd == Update(
            messages=[
                Message(
                    "Failed [one]: Merge program didn't change either temp file",
                    Importance.ERROR,
                )
            ]
        )
        upd = engine.proc_output(
            b"Synchronization incomplete at 16:49:21  (0 items transferred, 0 skipped, 1 failed)\n"
        )
        assert upd == Update(
            messages=[
                Message(
                    "Synchronization incomplete at 16:49:21  (0 items transferred, 0 skipped, 1 failed)",
                    Importance.WARNING,
                )
            ]
        )
        engine.proc_exit(2)
        assert engine.status == "Finished with errors"

    def test_merge_bad_program(self, ready_engine: Engine) -> None:
        engine = merging(ready_engine)
        assert not engine.proc_output(b"Merge command: nonexistent-program\n")
        upd = engine.proc_output(
            b"Merge result (exited (127)):\n/bin/sh: 1: nonexistent-program: not found\n\n"
            b"Exited with status 127\n"
        )
        assert upd == Update(
            messages=[
                Message("Merge result (exited (127)):", Importance.WARNING),
                Message("/bin/sh: 1: nonexistent-program: not found"),
                Message("Exited with status 127"),
            ]
        )

    def test_merge_result_split_across_reads(self, ready_engine: Engine) -> None:
        engine = merging(ready_engine)
        assert not feed(engine, b"Merge result (exi", b"ted (0)):", b"\n\n")

    def test_merge_dir(self) -> None:
        engine = Engine()
        engine.proc_start()
        prompt = b"new dir  ---->            one  [f] "
        feed(engine, HEADER, prompt, b"  ")
        feed(
            engine,
            b"new dir  ---->            one  \n",
            b"left         : new dir            modified on 2021-02-25 at 17:06:22  size 0         rwxrwxr-x\n"
            b"right        : absent\n",
        )
        assert engine.proc_output(prompt).plan_ready
        engine.set_action(["one"], Action.MERGE)
        engine.sync()
        assert engine.proc_output(prompt) == Update(input=b"m\n")
        feed(engine, b"new dir  <=M=>            one  \n")
        assert engine.proc_output(PROCEED) == Update(input=b"y\n")
        assert engine.proc_output(b"Failed [one]: Can only merge two existing files\n") == Update(
            messages=[Message("Failed [one]: Can only merge two existing files", Importance.ERROR)]
        )
