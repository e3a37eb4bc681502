"""Built-in terminal tools."""

from __future__ import annotations

from shellpilot.polling.log_tailer import LogTailer
from shellpilot.polling.output_poller import OutputPoller
from shellpilot.pty.backend import Backend
from shellpilot.session.manager import SessionManager
from shellpilot.tool.base import BaseTool
from shellpilot.tool.builtin.logs import GetLogsTool, StopTailTool, TailLogsTool
from shellpilot.tool.builtin.process import (
    ListProcessesTool,
    PollOutputTool,
    StartProcessTool,
    StopProcessTool,
)
from shellpilot.tool.builtin.session import (
    CloseSessionTool,
    ExecuteTool,
    ListSessionsTool,
    NewSessionTool,
)
from shellpilot.tool.builtin.system import DirectoryInfoTool, SystemInfoTool

__all__ = [
    "CloseSessionTool",
    "DirectoryInfoTool",
    "ExecuteTool",
    "GetLogsTool",
    "ListProcessesTool",
    "ListSessionsTool",
    "NewSessionTool",
    "PollOutputTool",
    "StartProcessTool",
    "StopProcessTool",
    "StopTailTool",
    "SystemInfoTool",
    "TailLogsTool",
    "create_terminal_tools",
]


def create_terminal_tools(
    backend: Backend,
    session_manager: SessionManager,
    output_poller: OutputPoller,
    log_tailer: LogTailer,
) -> list[BaseTool]:
    """Every terminal tool, wired to one set of components."""
    return [
        ExecuteTool(session_manager),
        StartProcessTool(session_manager, output_poller),
        PollOutputTool(output_poller),
        StopProcessTool(output_poller),
        ListProcessesTool(output_poller),
        TailLogsTool(session_manager, log_tailer),
        GetLogsTool(log_tailer),
        StopTailTool(log_tailer),
        NewSessionTool(session_manager),
        ListSessionsTool(session_manager),
        CloseSessionTool(session_manager),
        SystemInfoTool(backend),
        DirectoryInfoTool(session_manager),
    ]
