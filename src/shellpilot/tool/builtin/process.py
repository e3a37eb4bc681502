"""Background process tools — start, poll, stop, list."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, Field

from shellpilot.output import clean_output
from shellpilot.polling.models import PollingOptions, PollResult
from shellpilot.polling.output_poller import OutputPoller
from shellpilot.session.manager import SessionManager
from shellpilot.tool.base import BaseTool, ToolResult


def format_poll_result(result: PollResult) -> str:
    lines = [
        f"Process ID: {result.process_id}",
        f"Status: {result.status}",
        f"Has New Content: {result.has_new_content}",
        f"Is Complete: {result.is_complete}",
    ]
    if result.exit_code is not None:
        lines.append(f"Exit Code: {result.exit_code}")
    if result.error:
        lines.append(f"Error: {result.error}")
    lines += ["", "--- Output ---", clean_output(result.output) or "(no output)"]
    return "\n".join(lines)


class StartProcessParams(BaseModel):
    command: str = Field(description="The command to run in the background.")
    session_id: str = Field(
        default="default", description="Session to run in. Created on first use."
    )
    poll_interval: float = Field(
        default=1.0, gt=0, description="Suggested polling interval in seconds."
    )
    timeout: float = Field(default=300.0, gt=0, description="Timeout in seconds.")


class StartProcessTool(BaseTool[StartProcessParams]):
    """Start a long-running command without waiting for it."""

    name: ClassVar[str] = "terminal_start_process"
    description: ClassVar[str] = (
        "Start a long-running command (build, server, test suite) in the background. "
        "Returns a process_id; read its output with terminal_poll_output. The "
        "session stays busy until the command finishes."
    )
    param_model: ClassVar[type[BaseModel]] = StartProcessParams

    def __init__(self, session_manager: SessionManager, output_poller: OutputPoller) -> None:
        self._sessions = session_manager
        self._poller = output_poller

    async def execute(self, params: StartProcessParams) -> ToolResult:
        await self._sessions.get_or_create_session(params.session_id)
        process_id = await self._poller.start_process(
            params.session_id,
            params.command,
            PollingOptions(interval=params.poll_interval, timeout=params.timeout),
        )
        return ToolResult.json(
            {
                "success": True,
                "process_id": process_id,
                "session_id": params.session_id,
                "command": params.command,
                "message": (
                    f'Process started. Use terminal_poll_output with process_id "{process_id}" '
                    "to get output."
                ),
            },
            brief=f"Started {params.command[:50]}",
        )


class PollOutputParams(BaseModel):
    process_id: str = Field(description="Id returned by terminal_start_process.")
    incremental: bool = Field(
        default=True, description="Only return output not returned by a previous poll."
    )


class PollOutputTool(BaseTool[PollOutputParams]):
    name: ClassVar[str] = "terminal_poll_output"
    description: ClassVar[str] = (
        "Read the output of a background process. By default only new output "
        "since the last poll is returned."
    )
    param_model: ClassVar[type[BaseModel]] = PollOutputParams

    def __init__(self, output_poller: OutputPoller) -> None:
        self._poller = output_poller

    async def execute(self, params: PollOutputParams) -> ToolResult:
        result = await self._poller.poll(params.process_id, params.incremental)
        return ToolResult(output=format_poll_result(result))


class StopProcessParams(BaseModel):
    process_id: str = Field(description="Process to stop.")


class StopProcessTool(BaseTool[StopProcessParams]):
    name: ClassVar[str] = "terminal_stop_process"
    description: ClassVar[str] = "Interrupt a background process with Ctrl+C."
    param_model: ClassVar[type[BaseModel]] = StopProcessParams

    def __init__(self, output_poller: OutputPoller) -> None:
        self._poller = output_poller

    async def execute(self, params: StopProcessParams) -> ToolResult:
        await self._poller.stop_process(params.process_id)
        return ToolResult.json(
            {
                "success": True,
                "process_id": params.process_id,
                "message": "Process stopped.",
            }
        )


class ListProcessesParams(BaseModel):
    active_only: bool = Field(default=True, description="Only list running processes.")


class ListProcessesTool(BaseTool[ListProcessesParams]):
    name: ClassVar[str] = "terminal_list_processes"
    description: ClassVar[str] = "List background processes."
    param_model: ClassVar[type[BaseModel]] = ListProcessesParams

    def __init__(self, output_poller: OutputPoller) -> None:
        self._poller = output_poller

    async def execute(self, params: ListProcessesParams) -> ToolResult:
        processes = (
            self._poller.get_active_processes()
            if params.active_only
            else self._poller.get_all_processes()
        )
        return ToolResult.json(
            {
                "success": True,
                "count": len(processes),
                "processes": [p.to_dict() for p in processes],
            }
        )
