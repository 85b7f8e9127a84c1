"""Pydantic models for store configuration and config file loading."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from rich.console import Console

from conversation_state.constants import DEFAULT_TOKENIZER_MODEL

console = Console(stderr=True)

# --- Config File Loading ---

CONFIG_PATH = Path.home() / ".config" / "conversation-state" / "config.toml"
CONFIG_PATH_2 = Path("conversation-state.toml")

CompressionStrategy = Literal["summarize", "truncate", "selective"]


def _underscore_keys(table: dict[str, Any]) -> dict[str, Any]:
    """Turn TOML-style ``max-tokens`` keys into ``max_tokens``, in nested tables too."""
    return {
        key.replace("-", "_"): _underscore_keys(value) if isinstance(value, dict) else value
        for key, value in table.items()
    }


def find_config_file(config_path_str: str | None = None) -> Path | None:
    """Return the config file to read: the explicit path, else the first default that exists."""
    if config_path_str:
        return Path(config_path_str)
    return next((path for path in (CONFIG_PATH, CONFIG_PATH_2) if path.exists()), None)


def load_config(config_path_str: str | None = None) -> dict[str, Any]:
    """Load the TOML config file with dashed keys normalized to underscores.

    Problems are printed to the console rather than raised: a missing or
    unparsable file yields an empty dict, so every setting keeps its default.
    """
    config_path = find_config_file(config_path_str)
    if config_path is None:
        return {}
    if not config_path.is_file():
        console.print(f"[bold red]Config file not found at {config_path}[/bold red]")
        return {}
    try:
        with config_path.open("rb") as f:
            return _underscore_keys(tomllib.load(f))
    except tomllib.TOMLDecodeError as e:
        console.print(f"[bold red]Error parsing config file {config_path}: {e}[/bold red]")
        return {}


# --- Pydantic Models for Configuration ---


def _check_unit_interval(value: float) -> float:
    if not 0.0 < value <= 1.0:
        msg = f"must be in (0, 1], got {value}"
        raise ValueError(msg)
    return value


class CompressionConfig(BaseModel):
    """Compression settings snapshot carried by every conversation."""

    enabled: bool = False
    threshold: float = 0.7
    strategy: CompressionStrategy = "summarize"
    preserve_context: bool = True
    max_compression_ratio: float = 0.3

    @field_validator("threshold", "max_compression_ratio")
    @classmethod
    def _in_unit_interval(cls, v: float) -> float:
        return _check_unit_interval(v)


class ConversationConfig(BaseModel):
    """Process-wide configuration read once when a store is constructed."""

    max_tokens: int = Field(8000, gt=0, description="Conversation token budget")
    curation_enabled: bool = True
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    health_check_interval: int = Field(30, ge=1, description="Seconds between health sweeps")
    model: str = Field(DEFAULT_TOKENIZER_MODEL, description="Model used to pick a tokenizer")
    log_events: bool = True

    @classmethod
    def from_file(cls, config_path_str: str | None = None) -> ConversationConfig:
        """Build a config from the ``[conversation]`` table of the TOML config file."""
        cfg = load_config(config_path_str)
        return cls.model_validate(cfg.get("conversation", {}))
