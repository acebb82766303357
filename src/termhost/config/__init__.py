"""Configuration: Pydantic models for termhost settings."""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class TerminalConfig(BaseModel):
    """Terminal session configuration.

    The environment handed to spawned shells is not configurable beyond
    ``term``, ``colorterm`` and ``fallback_lang``: it is built from scratch
    so nothing else from the host process leaks into the child.
    """

    default_shell: str = Field(
        default="/bin/bash",
        description="Shell used when neither an explicit shell nor $SHELL is set",
    )
    cols: int = Field(default=80, ge=1, le=65535, description="Initial columns")
    rows: int = Field(default=24, ge=1, le=65535, description="Initial rows")
    read_chunk_size: int = Field(
        default=4096, ge=1, description="Max bytes per PTY read / output event"
    )
    term: str = Field(default="xterm-256color")
    colorterm: str = Field(default="truecolor")
    fallback_lang: str = Field(
        default="en_US.UTF-8", description="LANG used when the host has none"
    )
    event_queue_size: int = Field(
        default=1024,
        ge=1,
        description="Capacity of the reader -> dispatcher channel; readers block when full",
    )
    reap_interval: float = Field(
        default=0.1, gt=0, description="Seconds between child process polls"
    )
    shutdown_timeout: float = Field(
        default=2.0, ge=0, description="Seconds to wait for readers/children on shutdown"
    )


class BuildConfig(BaseModel):
    """Build layer configuration."""

    compiler: str = Field(
        default="flux", description="Compiler executable invoked as `<compiler> build`"
    )


class TermhostConfig(BaseModel):
    """Top-level termhost configuration."""

    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> TermhostConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            TERMHOST_DEFAULT_SHELL     - Fallback shell when $SHELL is unset
            TERMHOST_READ_CHUNK_SIZE   - Max bytes per PTY read
            TERMHOST_COMPILER          - Build layer compiler executable
        """
        load_dotenv()

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        terminal = config_data.get("terminal", {})

        env_shell = os.environ.get("TERMHOST_DEFAULT_SHELL")
        if env_shell:
            terminal["default_shell"] = env_shell

        env_chunk = os.environ.get("TERMHOST_READ_CHUNK_SIZE")
        if env_chunk:
            terminal["read_chunk_size"] = int(env_chunk)

        if terminal:
            config_data["terminal"] = terminal

        env_compiler = os.environ.get("TERMHOST_COMPILER")
        if env_compiler:
            build = config_data.get("build", {})
            build["compiler"] = env_compiler
            config_data["build"] = build

        return cls.model_validate(config_data)
