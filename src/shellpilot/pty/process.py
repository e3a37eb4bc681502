"""Local pseudo-terminal process — the handle every session wraps."""

from __future__ import annotations

import asyncio
import codecs
import enum
import fcntl
import logging
import os
import pty
import signal
import struct
import subprocess
import termios
from typing import Callable

logger = logging.getLogger(__name__)

DataListener = Callable[[str], None]
ExitListener = Callable[[int | None], None]


class PtyStatus(enum.Enum):
    """Lifecycle states for a pseudo-terminal process."""

    PENDING = "pending"
    RUNNING = "running"
    KILLING = "killing"  # Kill requested, waiting for process to die
    KILLED = "killed"  # Killed by us (SIGKILL)
    EXITED = "exited"  # Process exited on its own


class LocalPty:
    """A child process attached to a fresh pseudo-terminal.

    Output is decoded incrementally and fanned out to every registered data
    listener as it arrives. Exit listeners fire once, only when the child goes
    away on its own (not after ``kill()``).

    Uses subprocess.Popen (not os.fork) to avoid deadlocks when spawned from
    within an asyncio event loop.
    """

    def __init__(
        self,
        command: list[str],
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        cols: int = 160,
        rows: int = 40,
        term: str = "dumb",
    ) -> None:
        self.command = command
        self.cwd = cwd
        self.env = env or {}
        self.cols = cols
        self.rows = rows
        self.term = term

        self._master_fd: int = -1
        self._proc: subprocess.Popen | None = None
        self._pgid: int = 0
        self._reader_task: asyncio.Task | None = None
        self._status = PtyStatus.PENDING
        self._data_listeners: list[DataListener] = []
        self._exit_listeners: list[ExitListener] = []
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    async def start(self) -> None:
        """Spawn the process in a new PTY with its own process group."""
        master_fd, slave_fd = pty.openpty()
        self._master_fd = master_fd
        _set_winsize(slave_fd, self.rows, self.cols)

        env = {**os.environ, **self.env}
        env["TERM"] = self.term
        env.pop("PROMPT_COMMAND", None)

        try:
            self._proc = subprocess.Popen(
                self.command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                env=env,
                cwd=self.cwd,
            )
        except OSError:
            os.close(master_fd)
            self._master_fd = -1
            raise
        finally:
            os.close(slave_fd)

        self._pgid = os.getpgid(self._proc.pid)
        self._status = PtyStatus.RUNNING
        self._reader_task = asyncio.create_task(self._read_loop())

        logger.info(
            "PTY started: pid=%d pgid=%d cmd=%s",
            self._proc.pid,
            self._pgid,
            " ".join(self.command),
        )

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def on_data(self, listener: DataListener) -> None:
        self._data_listeners.append(listener)

    def remove_data_listener(self, listener: DataListener) -> None:
        if listener in self._data_listeners:
            self._data_listeners.remove(listener)

    def on_exit(self, listener: ExitListener) -> None:
        self._exit_listeners.append(listener)

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def write(self, text: str) -> None:
        if self._status != PtyStatus.RUNNING:
            raise RuntimeError(f"PTY {self.pid} is not running")
        os.write(self._master_fd, text.encode("utf-8"))

    def _emit(self, text: str) -> None:
        # Snapshot: listeners may detach themselves while we iterate
        for listener in list(self._data_listeners):
            try:
                listener(text)
            except Exception:
                logger.exception("Error in PTY data listener (pid=%s)", self.pid)

    async def _read_loop(self) -> None:
        """Continuously read output from the PTY master fd."""
        loop = asyncio.get_running_loop()
        try:
            while self._status == PtyStatus.RUNNING:
                try:
                    data = await loop.run_in_executor(
                        None, os.read, self._master_fd, 4096
                    )
                except OSError:
                    break

                if not data:
                    break

                text = self._decoder.decode(data)
                if text:
                    self._emit(text)
        finally:
            if self._status == PtyStatus.RUNNING:
                exit_code = self._proc.poll() if self._proc else None
                self._status = PtyStatus.EXITED
                try:
                    os.close(self._master_fd)
                except OSError:
                    pass
                logger.info("PTY %s exited (code=%s)", self.pid, exit_code)
                for listener in list(self._exit_listeners):
                    try:
                        listener(exit_code)
                    except Exception:
                        logger.exception("Error in PTY exit listener (pid=%s)", self.pid)

    def kill(self) -> None:
        """Kill the entire process tree."""
        if self._status not in (PtyStatus.RUNNING, PtyStatus.KILLING):
            return

        self._status = PtyStatus.KILLING
        try:
            os.killpg(self._pgid, signal.SIGKILL)
            logger.info("Killed PTY (pgid=%d)", self._pgid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)

        if self._proc is not None:
            try:
                self._proc.wait(timeout=2)
            except subprocess.TimeoutExpired:
                logger.warning("PTY pid=%s did not exit after SIGKILL", self.pid)

        try:
            os.close(self._master_fd)
        except OSError:
            pass

        self._status = PtyStatus.KILLED

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def alive(self) -> bool:
        return self._status == PtyStatus.RUNNING

    @property
    def status(self) -> PtyStatus:
        return self._status


def _set_winsize(fd: int, rows: int, cols: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))
