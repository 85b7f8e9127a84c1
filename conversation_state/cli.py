"""Command line tools for inspecting conversation transcripts."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from conversation_state.compression import LocalCompressionService
from conversation_state.config import ConversationConfig
from conversation_state.errors import CompressionError
from conversation_state.logging_setup import setup_rich_logging
from conversation_state.models import parse_items

console = Console()

app = typer.Typer(
    name="conversation-state",
    help="Inspect conversation transcripts with the in-process compression service.",
    add_completion=False,
)

CONFIG_FILE = typer.Option(
    None,
    "--config",
    help="Path to a TOML config file with a [conversation] table.",
)
LOG_LEVEL = typer.Option("warning", "--log-level", help="Set logging level.")


def _print_error(message: str, suggestion: str | None = None) -> None:
    console.print(f"[bold red]Error:[/bold red] {escape(message)}")
    if suggestion:
        console.print(f"[yellow]{escape(suggestion)}[/yellow]")


def _load_transcript(path: Path) -> list[dict[str, Any]]:
    """Read a JSON list of items, or an object with a ``messages`` list."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("messages", [])
    if not isinstance(data, list):
        msg = "expected a JSON list of items or an object with a 'messages' list"
        raise TypeError(msg)
    return data


async def _inspect(
    raw_items: list[dict[str, Any]],
    cfg: ConversationConfig,
    strategy: str | None,
) -> None:
    service = LocalCompressionService(cfg)
    items = parse_items(raw_items)
    usage = await service.analyze_token_usage(items)
    health = await service.validate_conversation_health(items)
    split = await service.find_split_point(items)

    table = Table(title=f"Conversation ({len(items)} items)")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Input tokens", str(usage.input))
    table.add_row("Output tokens", str(usage.output))
    table.add_row("Total tokens", f"{usage.total} / {cfg.max_tokens}")
    over_threshold = usage.total / cfg.max_tokens >= cfg.compression.threshold
    table.add_row("Over threshold", "yes" if over_threshold else "no")
    table.add_row("Healthy", "[green]yes[/green]" if health.is_valid else "[red]no[/red]")
    table.add_row("Continuity score", f"{health.continuity_score:.2f}")
    table.add_row("Split point", f"{split.split_index} ({split.reasoning})")
    console.print(table)

    for issue in health.issues:
        console.print(f"[yellow]- {escape(issue)}[/yellow]")

    if strategy is None:
        return
    try:
        result = await service.compress_conversation(items, strategy)  # type: ignore[arg-type]
    except CompressionError as e:
        _print_error(str(e))
        raise typer.Exit(1) from e
    console.print(
        f"[bold green]{strategy}[/bold green]: {len(items)} -> "
        f"{len(result.compressed_messages)} items (ratio {result.compression_ratio:.2f})",
    )


@app.command("inspect")
def inspect_command(
    file_path: Path = typer.Argument(  # noqa: B008
        ...,
        help="JSON transcript: a list of items or an object with a 'messages' list.",
        exists=True,
        dir_okay=False,
    ),
    strategy: str | None = typer.Option(
        None,
        "--strategy",
        "-s",
        help="Preview compression with 'summarize', 'truncate' or 'selective'.",
    ),
    config_file: str | None = CONFIG_FILE,
    log_level: str = LOG_LEVEL,
) -> None:
    """Report token usage, health and the compression split point of a transcript.

    Examples:
        # Check a transcript against the default token budget
        conversation-state inspect transcript.json

        # Preview what truncation would keep
        conversation-state inspect transcript.json --strategy truncate

    """
    setup_rich_logging(log_level)
    if strategy is not None and strategy not in ("summarize", "truncate", "selective"):
        _print_error(f"Unknown strategy: {strategy}", "Use summarize, truncate or selective.")
        raise typer.Exit(1)

    cfg = ConversationConfig.from_file(config_file)
    try:
        raw_items = _load_transcript(file_path)
    except (json.JSONDecodeError, TypeError) as e:
        _print_error(f"Could not read {file_path}: {e}")
        raise typer.Exit(1) from e

    try:
        asyncio.run(_inspect(raw_items, cfg, strategy))
    except ValidationError as e:
        _print_error(f"Invalid items in {file_path}", str(e))
        raise typer.Exit(1) from e


@app.command("config")
def config_command(config_file: str | None = CONFIG_FILE) -> None:
    """Show the resolved store configuration."""
    cfg = ConversationConfig.from_file(config_file)
    console.print_json(cfg.model_dump_json())
