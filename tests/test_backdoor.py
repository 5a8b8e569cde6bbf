"""Tests for unisonui.core.backdoor and unisonui.session.diffs."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path

import pytest

from unisonui.core.backdoor import apply_backdoor
from unisonui.core.engine import Engine
from unisonui.core.model import Importance, Message, Update
from unisonui.session.diffs import save_diff


# ---------------------------------------------------------------------------
# Backdoor commands
# ---------------------------------------------------------------------------


class TestBackdoor:
    def test_sets_engine_fields(self) -> None:
        engine = Engine()
        upd = apply_backdoor(
            engine,
            json.dumps({"status": "Testing", "busy": False, "progress": "42%", "left": "L"}),
        )
        assert not upd
        assert engine.status == "Testing"
        assert not engine.busy
        assert engine.progress == "42%"
        assert engine.left == "L"

    def test_absent_fields_are_untouched(self) -> None:
        engine = Engine()
        engine.right = "remote"
        apply_backdoor(engine, '{"left": "local"}')
        assert engine.right == "remote"

    def test_returns_requested_update(self) -> None:
        engine = Engine()
        upd = apply_backdoor(
            engine,
            json.dumps(
                {
                    "input": "y\n",
                    "interrupt": True,
                    "diff": "--- a\n+++ b\n",
                    "messages": [{"text": "hi", "importance": "warning"}, {"text": "ok"}],
                }
            ),
        )
        assert upd == Update(
            input=b"y\n",
            interrupt=True,
            diff=b"--- a\n+++ b\n",
            messages=[Message("hi", Importance.WARNING), Message("ok", Importance.INFO)],
        )

    def test_empty_diff_is_kept(self) -> None:
        upd = apply_backdoor(Engine(), '{"diff": ""}')
        assert upd.diff == b""

    @pytest.mark.parametrize(
        "line",
        ["", "   \n", "not json", '{"bogus": 1}', '{"busy": "very"}', "[1, 2]"],
    )
    def test_ignored_lines(self, line: str) -> None:
        engine = Engine()
        assert apply_backdoor(engine, line) == Update()
        assert engine.status == "Starting Unison"


# ---------------------------------------------------------------------------
# Diff files
# ---------------------------------------------------------------------------


class TestSaveDiff:
    def test_into_directory(self, tmp_path: Path) -> None:
        directory = tmp_path / "diffs"
        path = save_diff(b"--- a\n+++ b\n", str(directory))
        assert path.parent == directory
        assert path.name.startswith("unisonui-")
        assert path.suffix == ".diff"
        assert path.read_bytes() == b"--- a\n+++ b\n"

    def test_default_temp_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
        path = save_diff(b"x")
        assert path.parent == tmp_path

    def test_each_diff_gets_its_own_file(self, tmp_path: Path) -> None:
        first = save_diff(b"1", str(tmp_path))
        second = save_diff(b"2", str(tmp_path))
        assert first != second
        assert first.read_bytes() == b"1"
        assert second.read_bytes() == b"2"
