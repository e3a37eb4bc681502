"""Execution backends — allocate pseudo-terminal shells and run one-shot commands.

The session core only talks to the ``Backend`` and ``PtyHandle`` protocols;
``LocalBackend`` and ``DockerBackend`` are the shipped implementations.
"""

from shellpilot.pty.backend import (
    Backend,
    ExecuteOptions,
    ExecuteResult,
    PtyHandle,
    PtyOptions,
    SystemInfo,
)
from shellpilot.pty.local import DockerBackend, LocalBackend, create_backend
from shellpilot.pty.process import LocalPty, PtyStatus

__all__ = [
    "Backend",
    "ExecuteOptions",
    "ExecuteResult",
    "PtyHandle",
    "PtyOptions",
    "SystemInfo",
    "DockerBackend",
    "LocalBackend",
    "create_backend",
    "LocalPty",
    "PtyStatus",
]
