"""Tests for unisonui.core.buffer (InputBuffer, Expecter)."""

from __future__ import annotations

from unisonui.core.buffer import Expecter, InputBuffer


class TestInputBuffer:
    def test_empty(self) -> None:
        buf = InputBuffer()
        assert len(buf) == 0
        assert buf.view() == b""

    def test_append_and_view(self) -> None:
        buf = InputBuffer()
        buf.append(b"hello ")
        buf.append(b"world")
        assert len(buf) == 11
        assert bytes(buf) == b"hello world"

    def test_consume(self) -> None:
        buf = InputBuffer()
        buf.append(b"abcdef")
        assert buf.consume(2) == b"ab"
        assert buf.view() == b"cdef"

    def test_consume_more_than_available(self) -> None:
        buf = InputBuffer()
        buf.append(b"abc")
        assert buf.consume(10) == b"abc"
        assert len(buf) == 0

    def test_take_all(self) -> None:
        buf = InputBuffer()
        buf.append(b"rest")
        assert buf.take_all() == b"rest"
        assert len(buf) == 0

    def test_clear(self) -> None:
        buf = InputBuffer()
        buf.append(b"junk")
        buf.clear()
        assert buf.view() == b""

    def test_view_is_a_copy(self) -> None:
        buf = InputBuffer()
        buf.append(b"abc")
        view = buf.view()
        buf.consume(1)
        assert view == b"abc"


class TestExpecter:
    def test_no_match_leaves_buffer(self) -> None:
        buf = InputBuffer()
        buf.append(b"partial line")
        exp = Expecter({"line": rb"(?m:^)([^\n]*)\n"})
        assert exp(buf) is None
        assert buf.view() == b"partial line"

    def test_match_consumes_through_end(self) -> None:
        buf = InputBuffer()
        buf.append(b"first\nsecond")
        result = Expecter({"line": rb"(?m:^)([^\n]*)\n"})(buf)
        assert result is not None
        assert result.name == "line"
        assert result.group(1) == b"first"
        assert result.extra == b""
        assert buf.view() == b"second"

    def test_leftmost_wins(self) -> None:
        buf = InputBuffer()
        buf.append(b"xx B yy A")
        result = Expecter({"a": rb"A", "b": rb"B"})(buf)
        assert result is not None
        assert result.name == "b"
        assert result.extra == b"xx "
        assert buf.view() == b" yy A"

    def test_tie_goes_to_first_pattern(self) -> None:
        buf = InputBuffer()
        buf.append(b"Propagating updates\n")
        result = Expecter({"status": rb"(Propagating updates)\n", "line": rb"([^\n]*)\n"})(buf)
        assert result is not None
        assert result.name == "status"

    def test_extra_is_returned(self) -> None:
        buf = InputBuffer()
        buf.append(b"noise\nKEY")
        result = Expecter({"key": rb"KEY"}, raw=True)(buf)
        assert result is not None
        assert result.extra == b"noise\n"
        assert result.raw
        assert len(buf) == 0

    def test_not_raw_by_default(self) -> None:
        buf = InputBuffer()
        buf.append(b"noise\nKEY")
        result = Expecter({"key": rb"KEY"})(buf)
        assert result is not None
        assert result.extra == b"noise\n"
        assert not result.raw

    def test_missing_group_is_empty(self) -> None:
        buf = InputBuffer()
        buf.append(b"b")
        result = Expecter({"x": rb"(a)?b"})(buf)
        assert result is not None
        assert result.group(1) == b""
