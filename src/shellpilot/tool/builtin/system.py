"""Host inspection tools."""

from __future__ import annotations

import dataclasses
import shlex
from typing import ClassVar

from pydantic import BaseModel, Field

from shellpilot.pty.backend import Backend
from shellpilot.session.manager import SessionManager
from shellpilot.session.models import CommandContext
from shellpilot.tool.base import BaseTool, ToolResult

_DIRECTORY_TIMEOUT = 10.0


class SystemInfoParams(BaseModel):
    pass


class SystemInfoTool(BaseTool[SystemInfoParams]):
    name: ClassVar[str] = "get_system_info"
    description: ClassVar[str] = (
        "Describe the host the terminal runs on: OS, architecture, user, "
        "default shell and backend."
    )
    param_model: ClassVar[type[BaseModel]] = SystemInfoParams

    def __init__(self, backend: Backend) -> None:
        self._backend = backend

    async def execute(self, params: SystemInfoParams) -> ToolResult:
        info = await self._backend.get_system_info()
        return ToolResult.json({"success": True, "system": dataclasses.asdict(info)})


class DirectoryInfoParams(BaseModel):
    path: str = Field(default=".", description="Directory to list.")
    session_id: str = Field(
        default="default", description="Session to run in. Created on first use."
    )


class DirectoryInfoTool(BaseTool[DirectoryInfoParams]):
    """``ls -la`` plus ``pwd`` through a session, so relative paths follow its cwd."""

    name: ClassVar[str] = "get_directory_info"
    description: ClassVar[str] = (
        "List a directory (ls -la) and print the session's current directory."
    )
    param_model: ClassVar[type[BaseModel]] = DirectoryInfoParams

    def __init__(self, session_manager: SessionManager) -> None:
        self._sessions = session_manager

    async def execute(self, params: DirectoryInfoParams) -> ToolResult:
        result = await self._sessions.execute_command(
            CommandContext(
                session_id=params.session_id,
                command=f'ls -la {shlex.quote(params.path)} && echo "---" && pwd',
                timeout=_DIRECTORY_TIMEOUT,
            )
        )
        if not result.success:
            reason = result.error or result.output or f"exit code {result.exit_code}"
            return ToolResult.failure(f"Failed to get directory info: {reason}")
        return ToolResult(output=result.output, brief=f"Listed {params.path}")
