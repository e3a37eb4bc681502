"""CLI entry point for shellpilot."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from dataclasses import dataclass

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from shellpilot.config import ShellPilotConfig
from shellpilot.errors import TerminalError
from shellpilot.polling.log_tailer import LogTailer
from shellpilot.polling.output_poller import OutputPoller
from shellpilot.pty.backend import Backend
from shellpilot.pty.local import create_backend
from shellpilot.session.events import EventBus
from shellpilot.session.manager import SessionManager
from shellpilot.session.models import CommandContext, CommandResult
from shellpilot.tool.builtin import create_terminal_tools
from shellpilot.tool.registry import ToolRegistry

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="shellpilot",
    help="Persistent, programmatically driven terminal sessions.",
    no_args_is_help=True,
)
console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@dataclass
class Runtime:
    """Everything a front-end needs, built from one config."""

    config: ShellPilotConfig
    backend: Backend
    events: EventBus
    session_manager: SessionManager
    output_poller: OutputPoller
    log_tailer: LogTailer
    tool_registry: ToolRegistry

    async def shutdown(self) -> None:
        for process in self.output_poller.get_active_processes():
            await self.output_poller.stop_process(process.id)
        await self.session_manager.close_all_sessions()
        self.events.close()


def build_runtime(config: ShellPilotConfig, backend: Backend | None = None) -> Runtime:
    """Wire backend, session store, poller, tailer and tools together."""
    backend = backend or create_backend(config.backend)
    events = EventBus()
    session_manager = SessionManager(backend, config.session, events=events)
    output_poller = OutputPoller(session_manager, config.polling, events=events)
    log_tailer = LogTailer(session_manager, config.tail, events=events)

    registry = ToolRegistry()
    registry.register_many(
        create_terminal_tools(backend, session_manager, output_poller, log_tailer)
    )

    return Runtime(
        config=config,
        backend=backend,
        events=events,
        session_manager=session_manager,
        output_poller=output_poller,
        log_tailer=log_tailer,
        tool_registry=registry,
    )


async def _log_events(events: EventBus) -> None:
    queue = events.subscribe()
    while True:
        event = await queue.get()
        if event is None:
            break
        logger.debug("event %s %s", event.type.value, event.data)


def _print_result(result: CommandResult) -> None:
    if result.timed_out:
        style, status = "yellow", "timed out"
    elif result.success:
        style, status = "green", f"exit {result.exit_code}"
    else:
        style, status = "red", f"exit {result.exit_code}"

    console.print(
        Panel(
            escape(result.output) if result.output else "[dim](no output)[/dim]",
            title=f"$ {escape(result.command)}",
            subtitle=f"{status} · {result.duration:.2f}s",
            border_style=style,
            title_align="left",
        )
    )


@app.command()
def run(
    commands: list[str] = typer.Argument(help="Commands to run, in order, in one session."),
    session_id: str = typer.Option("default", "--session", "-s", help="Session id."),
    timeout: float | None = typer.Option(
        None, "--timeout", "-t", help="Per-command timeout in seconds."
    ),
    stop_on_error: bool = typer.Option(
        False, "--stop-on-error", "-e", help="Stop at the first failing command."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Run commands in one persistent session and print each result."""
    setup_logging(verbose)
    config = ShellPilotConfig.load(config_file)

    failed = asyncio.run(_run_commands(config, commands, session_id, timeout, stop_on_error))
    if failed:
        raise typer.Exit(1)


async def _run_commands(
    config: ShellPilotConfig,
    commands: list[str],
    session_id: str,
    timeout: float | None,
    stop_on_error: bool,
) -> bool:
    runtime = build_runtime(config)
    event_task = asyncio.create_task(_log_events(runtime.events))
    failed = False
    try:
        for command in commands:
            try:
                result = await runtime.session_manager.execute_command(
                    CommandContext(session_id=session_id, command=command, timeout=timeout)
                )
            except TerminalError as e:
                console.print(f"[red]Error:[/red] {escape(e.message)}")
                failed = True
                if stop_on_error:
                    break
                continue

            _print_result(result)
            if not result.success:
                failed = True
                if stop_on_error:
                    break
    finally:
        await runtime.shutdown()
        await event_task
    return failed


@app.command()
def tools(
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Print the tool specs as JSON."""
    setup_logging()
    runtime = build_runtime(ShellPilotConfig.load(config_file))
    typer.echo(json.dumps(runtime.tool_registry.get_specs(), indent=2))


@app.command()
def call(
    tool: str = typer.Argument(help="Tool name, e.g. terminal_execute."),
    arguments: str = typer.Argument("{}", help="Tool arguments as a JSON object."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Dispatch one tool call and print its result."""
    setup_logging(verbose)

    try:
        args = json.loads(arguments)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: arguments are not valid JSON: {e}", err=True)
        raise typer.Exit(2)
    if not isinstance(args, dict):
        typer.echo("Error: arguments must be a JSON object", err=True)
        raise typer.Exit(2)

    config = ShellPilotConfig.load(config_file)
    content, is_error = asyncio.run(_call_tool(config, tool, args))
    typer.echo(content, err=is_error)
    if is_error:
        raise typer.Exit(1)


async def _call_tool(config: ShellPilotConfig, tool: str, args: dict) -> tuple[str, bool]:
    runtime = build_runtime(config)
    try:
        return await runtime.tool_registry.dispatch(tool, args)
    finally:
        await runtime.shutdown()


@app.command()
def info(
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Show the execution backend's system information."""
    setup_logging()
    config = ShellPilotConfig.load(config_file)

    try:
        backend = create_backend(config.backend)
    except TerminalError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(1)

    if not asyncio.run(backend.is_available()):
        typer.echo(f"Error: backend {backend.type} is not available", err=True)
        raise typer.Exit(1)

    system = asyncio.run(backend.get_system_info())
    table = Table(title="System", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in dataclasses.asdict(system).items():
        if value is not None:
            table.add_row(key, escape(str(value)))
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
