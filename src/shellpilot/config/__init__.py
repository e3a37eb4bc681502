"""Configuration — Pydantic models for shellpilot settings."""

from __future__ import annotations

import json
import os
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class SessionConfig(BaseModel):
    """Session store and command protocol settings.

    All durations are seconds. The ``*_delay`` values are protocol
    stabilisation pauses, not user-facing latency; tests shrink them.
    """

    max_sessions: int = Field(default=10, ge=1)
    default_timeout: float = Field(default=30.0, gt=0)
    max_buffer_size: int = Field(
        default=1024 * 1024, ge=1, description="Capture buffer cap in characters"
    )
    marker_prefix: str = Field(default="===")
    cols: int = Field(default=160, ge=1)
    rows: int = Field(default=40, ge=1)
    startup_delay: float = Field(
        default=0.5, ge=0, description="Pause after spawning before marking ready"
    )
    settle_delay: float = Field(
        default=0.1,
        ge=0,
        description="Pause after clearing the buffer, lets late writes land",
    )
    write_delay: float = Field(
        default=0.05, ge=0, description="Pacing between marker/command writes"
    )
    trailing_delay: float = Field(
        default=0.2, ge=0, description="Pause after the end marker is seen"
    )


class PollingConfig(BaseModel):
    """Background process defaults."""

    interval: float = Field(default=1.0, gt=0)
    timeout: float = Field(default=300.0, gt=0)
    max_buffer_size: int = Field(default=10 * 1024 * 1024, ge=1)


class TailConfig(BaseModel):
    """Log tail defaults."""

    lines: int = Field(default=100, ge=0)
    follow: bool = Field(default=True)
    command_timeout: float = Field(
        default=10.0, gt=0, description="Timeout for tail/cat reads"
    )
    size_timeout: float = Field(default=5.0, gt=0, description="Timeout for stat")


class BackendConfig(BaseModel):
    """Which execution backend allocates the pseudo-terminals."""

    type: Literal["local", "docker"] = Field(default="local")
    shell: str | None = Field(
        default=None, description="Shell for new sessions (backend default if unset)"
    )
    cwd: str | None = Field(default=None)
    docker_container: str | None = Field(default=None)
    docker_shell: str = Field(default="/bin/bash")


class ShellPilotConfig(BaseModel):
    """Top-level shellpilot configuration."""

    backend: BackendConfig = Field(default_factory=BackendConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    tail: TailConfig = Field(default_factory=TailConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> ShellPilotConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            SHELLPILOT_BACKEND           - Backend type (local/docker)
            SHELLPILOT_SHELL             - Shell for new sessions
            SHELLPILOT_CWD               - Default working directory
            SHELLPILOT_DOCKER_CONTAINER  - Container for the docker backend
            SHELLPILOT_MAX_SESSIONS      - Session store capacity
            SHELLPILOT_DEFAULT_TIMEOUT   - Foreground command timeout (seconds)
            SHELLPILOT_MAX_BUFFER_SIZE   - Session capture buffer cap
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        backend = config_data.get("backend", {})
        session = config_data.get("session", {})

        env_backend = os.environ.get("SHELLPILOT_BACKEND")
        if env_backend:
            backend["type"] = env_backend.lower()

        env_shell = os.environ.get("SHELLPILOT_SHELL")
        if env_shell:
            backend["shell"] = env_shell

        env_cwd = os.environ.get("SHELLPILOT_CWD")
        if env_cwd:
            backend["cwd"] = env_cwd

        env_container = os.environ.get("SHELLPILOT_DOCKER_CONTAINER")
        if env_container:
            backend["docker_container"] = env_container

        env_max_sessions = os.environ.get("SHELLPILOT_MAX_SESSIONS")
        if env_max_sessions:
            session["max_sessions"] = int(env_max_sessions)

        env_timeout = os.environ.get("SHELLPILOT_DEFAULT_TIMEOUT")
        if env_timeout:
            session["default_timeout"] = float(env_timeout)

        env_buffer = os.environ.get("SHELLPILOT_MAX_BUFFER_SIZE")
        if env_buffer:
            session["max_buffer_size"] = int(env_buffer)

        if backend:
            config_data["backend"] = backend
        if session:
            config_data["session"] = session

        return cls.model_validate(config_data)
