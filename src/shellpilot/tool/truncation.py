"""Bound tool output before it is handed back to the caller."""

from __future__ import annotations

MAX_LINES = 2000
MAX_BYTES = 50 * 1024  # 50KB


def truncate_output(text: str, max_lines: int = MAX_LINES, max_bytes: int = MAX_BYTES) -> str:
    """Keep the tail of ``text`` within ``max_lines`` and ``max_bytes``.

    The tail is kept because a failing command usually reports at the end.
    A one-line notice is prepended when anything is dropped.
    """
    if not text:
        return text

    lines = text.split("\n")
    total_bytes = len(text.encode("utf-8", errors="replace"))
    if len(lines) <= max_lines and total_bytes <= max_bytes:
        return text

    skipped_lines = max(0, len(lines) - max_lines)
    kept = "\n".join(lines[skipped_lines:])

    encoded = kept.encode("utf-8", errors="replace")
    skipped_bytes = 0
    if len(encoded) > max_bytes:
        skipped_bytes = len(encoded) - max_bytes
        # Cut from the front; a split multi-byte char is dropped
        kept = encoded[-max_bytes:].decode("utf-8", errors="ignore")

    parts = []
    if skipped_lines:
        parts.append(f"{skipped_lines} lines skipped")
    if skipped_bytes:
        parts.append(f"{skipped_bytes} bytes skipped")
    notice = (
        f"[Output truncated: {', '.join(parts)}. "
        f"Total: {len(lines)} lines, {total_bytes} bytes]"
    )
    return f"{notice}\n{kept}"
