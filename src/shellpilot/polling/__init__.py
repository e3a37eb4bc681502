"""Background processes and log tailing on top of shell sessions."""

from shellpilot.polling.log_tailer import LogTailer, detect_log_level, parse_log_line
from shellpilot.polling.models import (
    BackgroundProcess,
    LogEntry,
    LogLevel,
    LogTailState,
    PollingOptions,
    PollingStatus,
    PollResult,
    ProcessInfo,
    TailOptions,
)
from shellpilot.polling.output_poller import OutputPoller

__all__ = [
    "BackgroundProcess",
    "LogEntry",
    "LogLevel",
    "LogTailState",
    "LogTailer",
    "OutputPoller",
    "PollResult",
    "PollingOptions",
    "PollingStatus",
    "ProcessInfo",
    "TailOptions",
    "detect_log_level",
    "parse_log_line",
]
