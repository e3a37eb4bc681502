"""Session tools — run commands and manage persistent shells."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, Field

from shellpilot.session.manager import SessionManager
from shellpilot.session.models import CommandContext, CommandResult, SessionOptions
from shellpilot.tool.base import BaseTool, ToolResult


def format_command_result(result: CommandResult) -> str:
    lines = [
        f"Command: {result.command}",
        f"Exit Code: {result.exit_code}",
        f"Duration: {result.duration:.3f}s",
    ]
    if result.timed_out:
        lines.append("Command timed out")
    lines += ["", "--- Output ---", result.output or "(no output)"]
    return "\n".join(lines)


class ExecuteParams(BaseModel):
    command: str = Field(description="The shell command to execute.")
    session_id: str = Field(
        default="default",
        description="Session to run in. Created on first use.",
    )
    timeout: float = Field(default=30.0, gt=0, description="Timeout in seconds.")


class ExecuteTool(BaseTool[ExecuteParams]):
    """Run one command in a persistent session and wait for it to finish."""

    name: ClassVar[str] = "terminal_execute"
    description: ClassVar[str] = (
        "Execute a command in a persistent terminal session and return its output "
        "and exit code. cd, environment variables and other shell state persist "
        "between calls in the same session. Long-running commands should use "
        "terminal_start_process instead."
    )
    param_model: ClassVar[type[BaseModel]] = ExecuteParams

    def __init__(self, session_manager: SessionManager) -> None:
        self._sessions = session_manager

    async def execute(self, params: ExecuteParams) -> ToolResult:
        result = await self._sessions.execute_command(
            CommandContext(
                session_id=params.session_id,
                command=params.command,
                timeout=params.timeout,
            )
        )
        brief = f"exit={result.exit_code}: {params.command[:50]}"
        if not result.success:
            return ToolResult.failure(format_command_result(result), brief=brief)
        return ToolResult(output=format_command_result(result), brief=brief)


class NewSessionParams(BaseModel):
    session_id: str | None = Field(
        default=None, description="Id for the new session. Generated if omitted."
    )
    name: str | None = Field(default=None, description="Human-readable name.")
    working_dir: str | None = Field(default=None, description="Initial directory.")
    shell: str | None = Field(default=None, description="Shell to start.")


class NewSessionTool(BaseTool[NewSessionParams]):
    name: ClassVar[str] = "terminal_new_session"
    description: ClassVar[str] = (
        "Create a new persistent terminal session. Use separate sessions to run "
        "independent work side by side."
    )
    param_model: ClassVar[type[BaseModel]] = NewSessionParams

    def __init__(self, session_manager: SessionManager) -> None:
        self._sessions = session_manager

    async def execute(self, params: NewSessionParams) -> ToolResult:
        session = await self._sessions.create_session(
            SessionOptions(
                id=params.session_id,
                name=params.name,
                cwd=params.working_dir,
                shell=params.shell,
            )
        )
        return ToolResult.json(
            {"success": True, "session": session.info().to_dict()},
            brief=f"Created session {session.id}",
        )


class ListSessionsParams(BaseModel):
    pass


class ListSessionsTool(BaseTool[ListSessionsParams]):
    name: ClassVar[str] = "terminal_list_sessions"
    description: ClassVar[str] = "List all live terminal sessions."
    param_model: ClassVar[type[BaseModel]] = ListSessionsParams

    def __init__(self, session_manager: SessionManager) -> None:
        self._sessions = session_manager

    async def execute(self, params: ListSessionsParams) -> ToolResult:
        sessions = self._sessions.list_sessions()
        return ToolResult.json(
            {
                "success": True,
                "count": len(sessions),
                "sessions": [s.to_dict() for s in sessions],
            }
        )


class CloseSessionParams(BaseModel):
    session_id: str = Field(description="Session to close.")


class CloseSessionTool(BaseTool[CloseSessionParams]):
    name: ClassVar[str] = "terminal_close_session"
    description: ClassVar[str] = "Close a terminal session and kill its shell."
    param_model: ClassVar[type[BaseModel]] = CloseSessionParams

    def __init__(self, session_manager: SessionManager) -> None:
        self._sessions = session_manager

    async def execute(self, params: CloseSessionParams) -> ToolResult:
        await self._sessions.close_session(params.session_id)
        return ToolResult.json(
            {
                "success": True,
                "session_id": params.session_id,
                "message": "Session closed.",
            }
        )
