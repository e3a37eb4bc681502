"""Log tail tools."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, Field

from shellpilot.polling.log_tailer import LogTailer
from shellpilot.polling.models import TailOptions
from shellpilot.session.manager import SessionManager
from shellpilot.tool.base import BaseTool, ToolResult


class TailLogsParams(BaseModel):
    file_path: str = Field(description="Path of the log file, as seen by the session's shell.")
    session_id: str = Field(
        default="default", description="Session to read through. Created on first use."
    )
    lines: int = Field(default=100, ge=0, description="How many existing lines to show.")
    follow: bool = Field(default=True, description="Keep following new lines.")


class TailLogsTool(BaseTool[TailLogsParams]):
    name: ClassVar[str] = "terminal_tail_logs"
    description: ClassVar[str] = (
        "Start following a log file. Returns the last lines and a tail_id; "
        "fetch new lines later with terminal_get_logs."
    )
    param_model: ClassVar[type[BaseModel]] = TailLogsParams

    def __init__(self, session_manager: SessionManager, log_tailer: LogTailer) -> None:
        self._sessions = session_manager
        self._tailer = log_tailer

    async def execute(self, params: TailLogsParams) -> ToolResult:
        await self._sessions.get_or_create_session(params.session_id)
        tail_id = await self._tailer.start_tailing(
            params.session_id,
            params.file_path,
            TailOptions(lines=params.lines, follow=params.follow),
        )
        state = self._tailer.get_tail(tail_id)
        initial = [e.to_dict() for e in state.initial_lines] if state else []
        return ToolResult.json(
            {
                "success": True,
                "tail_id": tail_id,
                "file_path": params.file_path,
                "status": state.status.value if state else None,
                "error": state.error if state else None,
                "initial_lines": initial,
                "message": (
                    f'Log tailing started. Use terminal_get_logs with tail_id "{tail_id}" '
                    "to get logs."
                ),
            },
            brief=f"Tailing {params.file_path}",
        )


class GetLogsParams(BaseModel):
    tail_id: str = Field(description="Id returned by terminal_tail_logs.")
    incremental: bool = Field(
        default=True, description="Only return lines appended since the last read."
    )


class GetLogsTool(BaseTool[GetLogsParams]):
    name: ClassVar[str] = "terminal_get_logs"
    description: ClassVar[str] = "Read entries from a followed log file."
    param_model: ClassVar[type[BaseModel]] = GetLogsParams

    def __init__(self, log_tailer: LogTailer) -> None:
        self._tailer = log_tailer

    async def execute(self, params: GetLogsParams) -> ToolResult:
        if params.incremental:
            logs = await self._tailer.get_incremental_logs(params.tail_id)
        else:
            logs = await self._tailer.get_logs(params.tail_id)
        return ToolResult.json(
            {
                "success": True,
                "tail_id": params.tail_id,
                "count": len(logs),
                "logs": [e.to_dict() for e in logs],
            }
        )


class StopTailParams(BaseModel):
    tail_id: str = Field(description="Tail to stop.")


class StopTailTool(BaseTool[StopTailParams]):
    name: ClassVar[str] = "terminal_stop_tail"
    description: ClassVar[str] = "Stop following a log file."
    param_model: ClassVar[type[BaseModel]] = StopTailParams

    def __init__(self, log_tailer: LogTailer) -> None:
        self._tailer = log_tailer

    async def execute(self, params: StopTailParams) -> ToolResult:
        await self._tailer.stop_tailing(params.tail_id)
        return ToolResult.json(
            {
                "success": True,
                "tail_id": params.tail_id,
                "message": "Log tailing stopped.",
            }
        )
