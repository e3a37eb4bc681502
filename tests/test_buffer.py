"""Tests for shellpilot.session.buffer.CaptureBuffer."""

from __future__ import annotations

import pytest

from shellpilot.session.buffer import CaptureBuffer


class TestCaptureBufferBasics:
    def test_empty(self) -> None:
        buf = CaptureBuffer()
        assert buf.text == ""
        assert len(buf) == 0

    def test_append(self) -> None:
        buf = CaptureBuffer()
        assert buf.append("hello ") == 0
        assert buf.append("world") == 0
        assert buf.text == "hello world"
        assert len(buf) == 11

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError):
            CaptureBuffer(0)


class TestCaptureBufferOverflow:
    def test_drops_oldest(self) -> None:
        buf = CaptureBuffer(max_size=5)
        buf.append("abc")
        trimmed = buf.append("defg")
        assert trimmed == 2
        assert buf.text == "cdefg"

    def test_single_oversized_append(self) -> None:
        buf = CaptureBuffer(max_size=4)
        assert buf.append("abcdef") == 2
        assert buf.text == "cdef"
        assert len(buf) == 4


class TestCaptureBufferRead:
    def test_read_from(self) -> None:
        buf = CaptureBuffer()
        buf.append("0123456789")
        assert buf.read_from(7) == "789"
        assert buf.read_from(20) == ""

    def test_read_tail(self) -> None:
        buf = CaptureBuffer()
        buf.append("0123456789")
        assert buf.read_tail(3) == "789"
        assert buf.read_tail(50) == "0123456789"
        assert buf.read_tail(0) == ""


class TestCaptureBufferClear:
    def test_clear(self) -> None:
        buf = CaptureBuffer()
        buf.append("stale")
        buf.clear()
        assert buf.text == ""
        assert len(buf) == 0
