"""Concrete backends: the local host and a running Docker container."""

from __future__ import annotations

import asyncio
import getpass
import logging
import os
import platform
import shutil
import signal
import socket
import time
from typing import TYPE_CHECKING

from shellpilot.errors import BackendNotAvailable
from shellpilot.pty.backend import ExecuteOptions, ExecuteResult, PtyOptions, SystemInfo
from shellpilot.pty.process import LocalPty

if TYPE_CHECKING:
    from shellpilot.config import BackendConfig

logger = logging.getLogger(__name__)


async def _run_oneshot(
    argv: list[str] | None,
    shell_command: str,
    options: ExecuteOptions,
    cwd: str | None,
) -> ExecuteResult:
    """Run a command to completion outside any session.

    ``argv`` runs via exec; otherwise ``shell_command`` runs through the
    host shell. Times out by killing the whole process group.
    """
    started = time.monotonic()
    stdin = asyncio.subprocess.PIPE if options.input else asyncio.subprocess.DEVNULL
    env = {**os.environ, **options.env, "TERM": "dumb"}

    if argv is not None:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=stdin,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            start_new_session=True,
            env=env,
        )
    else:
        process = await asyncio.create_subprocess_shell(
            shell_command,
            stdin=stdin,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            start_new_session=True,
            env=env,
        )

    try:
        stdin_bytes = options.input.encode("utf-8") if options.input else None
        stdout, stderr = await asyncio.wait_for(
            process.communicate(input=stdin_bytes), timeout=options.timeout
        )
    except asyncio.TimeoutError:
        try:
            os.killpg(os.getpgid(process.pid), signal.SIGKILL)
        except ProcessLookupError:
            pass
        await process.wait()
        return ExecuteResult(
            stdout="",
            stderr="",
            exit_code=None,
            command=shell_command,
            duration=time.monotonic() - started,
            timed_out=True,
            cwd=cwd,
        )

    return ExecuteResult(
        stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
        stderr=stderr.decode("utf-8", errors="replace") if stderr else "",
        exit_code=process.returncode,
        command=shell_command,
        duration=time.monotonic() - started,
        cwd=cwd,
    )


def _memory_info() -> tuple[int | None, int | None]:
    try:
        page = os.sysconf("SC_PAGE_SIZE")
        total = os.sysconf("SC_PHYS_PAGES") * page
        free = os.sysconf("SC_AVPHYS_PAGES") * page
    except (ValueError, OSError, AttributeError):
        return None, None
    return total, free


class LocalBackend:
    """Runs shells directly on this host."""

    type = "local"

    def __init__(self, shell: str | None = None, cwd: str | None = None) -> None:
        self._shell = shell or os.environ.get("SHELL") or "/bin/bash"
        self._cwd = cwd or os.getcwd()
        self._system_info: SystemInfo | None = None

    async def is_available(self) -> bool:
        return os.name == "posix" and shutil.which(self._shell) is not None

    async def get_system_info(self) -> SystemInfo:
        if self._system_info is not None:
            return self._system_info

        total, free = _memory_info()
        info = SystemInfo(
            backend=self.type,
            os=platform.system(),
            arch=platform.machine(),
            default_shell=self._shell,
            os_version=platform.version(),
            kernel=platform.release(),
            hostname=socket.gethostname(),
            user=getpass.getuser(),
            home_dir=os.path.expanduser("~"),
            total_memory=total,
            free_memory=free,
        )
        self._system_info = info
        return info

    async def create_pty(self, options: PtyOptions) -> LocalPty:
        process = LocalPty(
            command=[options.shell],
            cwd=options.cwd or self._cwd,
            env=options.env,
            cols=options.cols,
            rows=options.rows,
            term=options.term,
        )
        await process.start()
        return process

    async def execute(
        self, command: str, options: ExecuteOptions | None = None
    ) -> ExecuteResult:
        options = options or ExecuteOptions()
        return await _run_oneshot(None, command, options, options.cwd or self._cwd)

    def get_default_shell(self) -> str:
        return self._shell

    def get_default_cwd(self) -> str:
        return self._cwd


class DockerBackend:
    """Runs shells inside an already-running Docker container via ``docker exec``."""

    type = "docker"

    def __init__(
        self,
        container: str,
        shell: str = "/bin/bash",
        cwd: str = "/",
        docker_executable: str = "docker",
    ) -> None:
        self.container = container
        self._shell = shell
        self._cwd = cwd
        self._docker = docker_executable
        self._system_info: SystemInfo | None = None

    async def is_available(self) -> bool:
        if shutil.which(self._docker) is None:
            return False
        result = await _run_oneshot(
            [self._docker, "info"],
            f"{self._docker} info",
            ExecuteOptions(timeout=5.0),
            None,
        )
        return result.exit_code == 0

    async def get_system_info(self) -> SystemInfo:
        if self._system_info is not None:
            return self._system_info

        info = SystemInfo(
            backend=self.type,
            os="Linux",
            arch=platform.machine(),
            default_shell=self._shell,
            docker={"container_id": self.container},
        )

        uname, hostname, user, home = await asyncio.gather(
            self.execute("uname -a"),
            self.execute("hostname"),
            self.execute("whoami"),
            self.execute("echo $HOME"),
        )
        info.os_version = uname.stdout.strip() or None
        info.hostname = hostname.stdout.strip() or None
        info.user = user.stdout.strip() or None
        info.home_dir = home.stdout.strip() or None

        version = await _run_oneshot(
            [self._docker, "version", "--format", "{{.Server.Version}}"],
            f"{self._docker} version",
            ExecuteOptions(timeout=5.0),
            None,
        )
        if version.exit_code == 0:
            info.docker["version"] = version.stdout.strip()

        self._system_info = info
        return info

    def _exec_prefix(self, cwd: str | None, env: dict[str, str], tty: bool) -> list[str]:
        argv = [self._docker, "exec", "-i"]
        if tty:
            argv.append("-t")
        argv += ["-w", cwd or self._cwd]
        for key, value in env.items():
            argv += ["-e", f"{key}={value}"]
        argv.append(self.container)
        return argv

    async def create_pty(self, options: PtyOptions) -> LocalPty:
        env = {"TERM": options.term, **options.env}
        process = LocalPty(
            command=self._exec_prefix(options.cwd, env, tty=True) + [options.shell],
            cols=options.cols,
            rows=options.rows,
            term=options.term,
        )
        await process.start()
        return process

    async def execute(
        self, command: str, options: ExecuteOptions | None = None
    ) -> ExecuteResult:
        options = options or ExecuteOptions()
        argv = self._exec_prefix(options.cwd, options.env, tty=False)
        argv += ["sh", "-c", command]
        return await _run_oneshot(argv, command, options, None)

    def get_default_shell(self) -> str:
        return self._shell

    def get_default_cwd(self) -> str:
        return self._cwd


def create_backend(config: BackendConfig) -> LocalBackend | DockerBackend:
    """Build the backend named by ``config.type``."""
    if config.type == "local":
        return LocalBackend(shell=config.shell, cwd=config.cwd)
    if config.type == "docker":
        if not config.docker_container:
            raise BackendNotAvailable("docker (no container configured)")
        return DockerBackend(
            container=config.docker_container,
            shell=config.shell or config.docker_shell,
            cwd=config.cwd or "/",
        )
    raise BackendNotAvailable(str(config.type))
