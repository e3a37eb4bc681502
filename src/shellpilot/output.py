"""Output cleaning — turn raw pseudo-terminal capture into plain command output.

Four order-sensitive stages, each run over the whole text:

1. ``clean_output``        strip escape sequences and control bytes, normalise
                           line endings and blank runs
2. ``clean_markers``       drop sentinel marker lines and their echo commands
3. ``clean_command_echo``  drop the first line carrying the command's leading
                           token (the shell's echo of what we typed)
4. ``clean_prompt``        drop lines shaped like shell prompts, including a
                           prompt followed by the exact command (readline
                           redraws each typed line after the prompt)

Stages 3 and 4 are heuristics. They can remove a legitimate line that happens
to look like a prompt or contain the command's first word, and they will miss
prompt styles they do not recognise.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass

# Stage 1 patterns, applied in this order.
_OSC_RE = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
_CSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
_CHARSET_RE = re.compile(r"\x1b[()#+.*\-/][A-Za-z0-9]?")
_KEYPAD_RE = re.compile(r"\x1b[><=]")
_TWO_BYTE_ESC_RE = re.compile(r"\x1b[@-Z\\^_]")
# Private-mode toggles whose ESC was lost in transit, e.g. "[?2004h"
_ORPHAN_PRIVATE_MODE_RE = re.compile(r"\[\?[0-9]+[hl]")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_BLANK_RUN_RE = re.compile(r"\n{3,}")

_PROMPT_PATTERNS = [
    re.compile(p)
    for p in (
        r"^\([^)]*\)\s*[@$#>%]",  # (venv) $
        r"^\([^)]*\)\s*\S*@\S*:.*[$#%]\s*$",  # (base) user@host:~$
        r"^\[[^\]]+\]\s*[@$#%]",  # [READY]$
        r"^\S+@\S+:\S*\s*[$#%>]\s*$",  # user@host:~/src$
        r"^\S+@\S+\s*[$#%>]\s*$",  # user@host$
        r"^[$#>%~]\s*$",
        r"^❯\s*$",
    )
]

# Prompt shapes that can prefix a redisplayed command line
_PROMPT_PREFIX = (
    r"(?:\([^)]*\)\s*)?"  # (venv)
    r"(?:\S+@\S+(?::\S*)?\s*|\[[^\]]+\]\s*)?"  # user@host:path or [READY]
    r"[$#%>❯]\s*"
)


@dataclass(frozen=True)
class Markers:
    """The three sentinel tokens framing one command in the shell stream.

    Uniqueness comes only from the millisecond timestamp. Two commands issued
    in the same millisecond share markers, and command output that happens to
    contain a marker string confuses the "last occurrence" parse.
    """

    start: str
    end: str
    exit: str
    prefix: str = "==="

    @classmethod
    def generate(cls, prefix: str = "===", timestamp_ms: int | None = None) -> Markers:
        ts = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
        return cls(
            start=f"{prefix}START{ts}{prefix}",
            end=f"{prefix}END{ts}{prefix}",
            exit=f"{prefix}EXIT{ts}{prefix}",
            prefix=prefix,
        )

    def writes(self, command: str) -> list[str]:
        """The four lines written to the shell, in order."""
        return [
            f"echo '{self.start}'\n",
            f"{command}\n",
            f"echo '{self.exit}'$?\n",
            f"echo '{self.end}'\n",
        ]

    def exit_code_pattern(self) -> re.Pattern[str]:
        return re.compile(re.escape(self.exit) + r"(\d+)")


def clean_output(text: str) -> str:
    """Strip terminal control sequences and normalise whitespace."""
    result = _OSC_RE.sub("", text)
    result = _CSI_RE.sub("", result)
    result = _CHARSET_RE.sub("", result)
    result = _KEYPAD_RE.sub("", result)
    result = _TWO_BYTE_ESC_RE.sub("", result)
    result = _ORPHAN_PRIVATE_MODE_RE.sub("", result)

    result = result.replace("\r\n", "\n").replace("\r", "\n")
    # Also drops backspace, bell and any ESC left unpaired
    result = _CONTROL_RE.sub("", result)

    result = "\n".join(line.rstrip() for line in result.split("\n"))
    result = _BLANK_RUN_RE.sub("\n\n", result)
    return result.strip("\n")


def clean_markers(text: str, markers: Markers) -> str:
    """Drop lines carrying any sentinel, and bare marker-echo commands."""
    echo_re = re.compile(r"^echo\s+['\"]" + re.escape(markers.prefix))
    kept = []
    for line in text.split("\n"):
        stripped = line.strip()
        if markers.start in stripped or markers.end in stripped or markers.exit in stripped:
            continue
        if echo_re.match(stripped):
            continue
        kept.append(line)
    return "\n".join(kept)


def clean_command_echo(text: str, command: str) -> str:
    """Drop the first line containing the command's leading token."""
    tokens = command.strip().split()
    if not tokens:
        return text
    first = tokens[0]

    lines = text.split("\n")
    for i, line in enumerate(lines):
        if first in line:
            del lines[i]
            break
    return "\n".join(lines)


def clean_prompt(text: str, marker_prefix: str = "===", command: str | None = None) -> str:
    """Drop lines that look like shell prompts or prompt+echo artifacts.

    With ``command``, a prompt followed by exactly that command is dropped too.
    """
    prefix = re.escape(marker_prefix)
    echo_artifacts = [
        re.compile(r"^.*@.*:.*[$#%]\s*echo\s*['\"]?" + prefix),
        re.compile(r"^\([^)]*\).*echo\s*['\"]?" + prefix),
        re.compile(r"echo['\"]" + prefix),
    ]
    if command and command.strip():
        echo_artifacts.append(
            re.compile("^" + _PROMPT_PREFIX + re.escape(command.strip()) + r"\s*$")
        )
    kept = []
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped and any(p.search(stripped) for p in _PROMPT_PATTERNS):
            continue
        if any(p.search(stripped) for p in echo_artifacts):
            continue
        kept.append(line)
    return "\n".join(kept)


def clean_command_output(raw: str, command: str, markers: Markers) -> str:
    """Run the full pipeline in its fixed order."""
    result = clean_output(raw)
    result = clean_markers(result, markers)
    result = clean_command_echo(result, command)
    result = clean_prompt(result, markers.prefix, command)
    return result.strip("\n")
