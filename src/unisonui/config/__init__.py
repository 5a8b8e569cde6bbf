"""Configuration: Pydantic models for unisonui settings."""

from __future__ import annotations

import json
import os
import shlex
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class UnisonConfig(BaseModel):
    """How to run Unison."""

    executable: str = Field(default="unison", description="Unison binary to run")
    extra_args: list[str] = Field(
        default_factory=list,
        description="Arguments placed before the ones given on the command line",
    )
    cwd: str | None = Field(default=None, description="Working directory for Unison")

    def command(self, args: list[str]) -> list[str]:
        """Full command line for one run. ``-dumbtty`` is always last."""
        return [self.executable, *self.extra_args, *args, "-dumbtty"]


class UIConfig(BaseModel):
    diff_dir: str | None = Field(
        default=None, description="Where diff files are written (default: temp dir)"
    )
    open_diffs: bool = Field(
        default=True, description="Open diff files with the system viewer"
    )


class AppConfig(BaseModel):
    """Top-level unisonui configuration."""

    unison: UnisonConfig = Field(default_factory=UnisonConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    trace_path: str | None = Field(
        default=None, description="Record a JSON-lines transcript of the session here"
    )
    backdoor_path: str | None = Field(
        default=None, description="File or FIFO to read development commands from"
    )

    @classmethod
    def load(cls, config_path: str | None = None) -> AppConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            UNISONUI_UNISON       - Unison executable
            UNISONUI_EXTRA_ARGS   - Extra Unison arguments (shell syntax)
            UNISONUI_DIFF_DIR     - Directory for diff files
            UNISONUI_OPEN_DIFFS   - "0"/"false" to keep diffs closed
            UNISONUI_TRACE        - Transcript path
            UNISONUI_BACKDOOR     - Backdoor command file
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        unison = config_data.get("unison", {})

        env_unison = os.environ.get("UNISONUI_UNISON")
        if env_unison:
            unison["executable"] = env_unison

        env_extra_args = os.environ.get("UNISONUI_EXTRA_ARGS")
        if env_extra_args:
            unison["extra_args"] = shlex.split(env_extra_args)

        if unison:
            config_data["unison"] = unison

        ui = config_data.get("ui", {})

        env_diff_dir = os.environ.get("UNISONUI_DIFF_DIR")
        if env_diff_dir:
            ui["diff_dir"] = env_diff_dir

        env_open_diffs = os.environ.get("UNISONUI_OPEN_DIFFS")
        if env_open_diffs:
            ui["open_diffs"] = env_open_diffs.strip().lower() not in ("0", "false", "no", "off")

        if ui:
            config_data["ui"] = ui

        env_trace = os.environ.get("UNISONUI_TRACE")
        if env_trace:
            config_data["trace_path"] = env_trace

        env_backdoor = os.environ.get("UNISONUI_BACKDOOR")
        if env_backdoor:
            config_data["backdoor_path"] = env_backdoor

        return cls.model_validate(config_data)
