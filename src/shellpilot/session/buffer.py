"""Capture buffer for pseudo-terminal output."""

from __future__ import annotations


class CaptureBuffer:
    """Append-only, size-bounded text accumulator.

    Holds at most ``max_size`` characters; when an append overflows, the
    oldest characters are dropped and ``append()`` reports how many, so a
    caller tracking a read cursor into the buffer can shift it down.
    """

    def __init__(self, max_size: int = 1024 * 1024) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._text = ""

    def append(self, data: str) -> int:
        """Append ``data``; return the number of leading characters evicted."""
        self._text += data
        trimmed = 0
        if len(self._text) > self.max_size:
            trimmed = len(self._text) - self.max_size
            self._text = self._text[trimmed:]
        return trimmed

    @property
    def text(self) -> str:
        return self._text

    def read_from(self, position: int) -> str:
        """Everything from ``position`` to the current end."""
        return self._text[position:]

    def read_tail(self, n: int) -> str:
        """The last ``n`` characters."""
        return self._text[-n:] if n > 0 else ""

    def clear(self) -> None:
        self._text = ""

    def __len__(self) -> int:
        return len(self._text)
