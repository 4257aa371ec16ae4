"""Pydantic settings for the engine and config file loading."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from rich.console import Console

from converse_core.constants import (
    DEFAULT_DEBOUNCE_SECONDS,
    DEFAULT_INVOKE_PATH,
    DEFAULT_MAX_TOOL_ROUNDS,
    DEFAULT_OVERLAP_TOKENS,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_STREAM_PATH,
    DEFAULT_SUMMARY_COOLDOWN_SECONDS,
    DEFAULT_SYSTEM_PROMPT,
    DEFAULT_THRESHOLD,
)

console = Console()

# --- Config File Loading ---

CONFIG_PATH = Path.home() / ".config" / "converse-core" / "config.toml"
CONFIG_PATH_2 = Path("converse-core.toml")


def _replace_dashed_keys(cfg: dict[str, Any]) -> dict[str, Any]:
    """Replace dashed keys with underscores in the config options."""
    return {k.replace("-", "_"): v for k, v in cfg.items()}


def load_config(config_path_str: str | None = None) -> dict[str, Any]:
    """Load the TOML configuration file, one table per settings section."""
    if config_path_str:
        config_path = Path(config_path_str)
    elif CONFIG_PATH.exists():
        config_path = CONFIG_PATH
    elif CONFIG_PATH_2.exists():
        config_path = CONFIG_PATH_2
    else:
        return {}

    if config_path.exists():
        with config_path.open("rb") as f:
            cfg = tomllib.load(f)
            return {
                k.replace("-", "_"): _replace_dashed_keys(v) if isinstance(v, dict) else v
                for k, v in cfg.items()
            }

    # Report error only if an explicit path was given
    if config_path_str:
        console.print(
            f"[bold red]Config file not found at {config_path_str}[/bold red]",
        )
    return {}


# --- Pydantic Models for Configuration ---


class WindowSettings(BaseModel):
    """Active/archived split of the conversation window."""

    threshold: int = Field(DEFAULT_THRESHOLD, ge=1)
    target_tokens: int | None = Field(None, ge=1)
    overlap_tokens: int = Field(DEFAULT_OVERLAP_TOKENS, ge=0)


class SummarySettings(BaseModel):
    """Rolling summarization of archived messages."""

    enabled: bool = True
    cooldown_seconds: float = Field(DEFAULT_SUMMARY_COOLDOWN_SECONDS, ge=0)


class PersistenceSettings(BaseModel):
    """Debounced writes to the persistent store."""

    debounce_seconds: float = Field(DEFAULT_DEBOUNCE_SECONDS, ge=0)


class TransportSettings(BaseModel):
    """HTTP model backend."""

    base_url: str = "http://localhost:3000"
    model_id: str = "anthropic.claude-3-5-sonnet-20240620-v1:0"
    stream_path: str = DEFAULT_STREAM_PATH
    invoke_path: str = DEFAULT_INVOKE_PATH
    request_timeout: float = Field(DEFAULT_REQUEST_TIMEOUT, gt=0)
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("stream_path", "invoke_path")
    @classmethod
    def _leading_slash(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"


class Settings(BaseModel):
    """All engine settings."""

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_tool_rounds: int = Field(DEFAULT_MAX_TOOL_ROUNDS, ge=1)
    window: WindowSettings = Field(default_factory=WindowSettings)
    summary: SummarySettings = Field(default_factory=SummarySettings)
    persistence: PersistenceSettings = Field(default_factory=PersistenceSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)

    @classmethod
    def from_config(cls, cfg: dict[str, Any]) -> Settings:
        """Build settings from a loaded config dict.

        Top-level scalar keys such as ``system_prompt`` live in a
        ``[defaults]`` table; each other table maps to a settings section.
        """
        data: dict[str, Any] = dict(cfg.get("defaults", {}))
        for section in ("window", "summary", "persistence", "transport"):
            if section in cfg:
                data[section] = cfg[section]
        return cls.model_validate(data)


def load_settings(config_path_str: str | None = None) -> Settings:
    """Load settings from the first config file found, or defaults."""
    return Settings.from_config(load_config(config_path_str))
