"""Configuration — Pydantic models for ptyhost settings."""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field


class TerminalConfig(BaseModel):
    """Interactive (PTY) session configuration.

    ``shell`` overrides the platform default. When unset, POSIX hosts use
    ``$SHELL`` and then the first of ``bash``/``sh`` found on PATH;
    Windows hosts use ``powershell``.
    """

    shell: str | None = Field(default=None, description="Shell executable override")
    shell_args: list[str] = Field(default_factory=list)
    term: str = Field(default="xterm-256color", description="Value of TERM for shells")
    colorterm: str = Field(default="truecolor", description="Value of COLORTERM")
    read_chunk_size: int = Field(default=4096, gt=0)
    scrollback_lines: int = Field(
        default=5000, gt=0, description="Lines of recent output kept per session"
    )
    max_sessions: int = Field(
        default=32, gt=0, description="Upper bound on live interactive sessions"
    )


class ProcessConfig(BaseModel):
    """One-shot process configuration."""

    drain_timeout: float = Field(
        default=2.0,
        ge=0,
        description=(
            "Seconds the exit watcher waits for stdout/stderr readers after the "
            "process exits. Output still arriving after this is dropped."
        ),
    )
    encoding: str = Field(default="utf-8")
    scrollback_lines: int = Field(default=5000, gt=0)


class HostConfig(BaseModel):
    """Top-level ptyhost configuration."""

    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    process: ProcessConfig = Field(default_factory=ProcessConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> HostConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            PTYHOST_SHELL             - Shell executable for interactive sessions
            PTYHOST_TERM              - TERM value exported to shells
            PTYHOST_SCROLLBACK_LINES  - Lines of scrollback per session
            PTYHOST_MAX_SESSIONS      - Max live interactive sessions
            PTYHOST_DRAIN_TIMEOUT     - Seconds to drain output after exit
        """
        # .env is looked up from the working directory, not from this package.
        load_dotenv(find_dotenv(usecwd=True))

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        terminal = config_data.get("terminal", {})
        process = config_data.get("process", {})

        env_shell = os.environ.get("PTYHOST_SHELL")
        if env_shell:
            terminal["shell"] = env_shell

        env_term = os.environ.get("PTYHOST_TERM")
        if env_term:
            terminal["term"] = env_term

        env_scrollback = os.environ.get("PTYHOST_SCROLLBACK_LINES")
        if env_scrollback:
            terminal["scrollback_lines"] = int(env_scrollback)
            process["scrollback_lines"] = int(env_scrollback)

        env_max_sessions = os.environ.get("PTYHOST_MAX_SESSIONS")
        if env_max_sessions:
            terminal["max_sessions"] = int(env_max_sessions)

        env_drain = os.environ.get("PTYHOST_DRAIN_TIMEOUT")
        if env_drain:
            process["drain_timeout"] = float(env_drain)

        if terminal:
            config_data["terminal"] = terminal
        if process:
            config_data["process"] = process

        return cls.model_validate(config_data)
