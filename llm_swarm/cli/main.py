"""
CLI interface for llm-swarm.

Provides command-line access to queries, batches and usage data.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from llm_swarm.config.loader import SwarmConfig, load_config
from llm_swarm.sdk.swarm import ErrorKind, SwarmService, ToolResponse

app = typer.Typer()
console = Console()
err_console = Console(stderr=True)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_RATE_LIMITED = 2

_state = {"config_path": None}


def build_service(config: SwarmConfig) -> SwarmService:
    return SwarmService.from_config(config)


def _load_config() -> SwarmConfig:
    try:
        return load_config(_state["config_path"])
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        err_console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _exit_for(response: ToolResponse) -> None:
    """Print a tool response and exit with the matching code."""
    if not response.is_error:
        console.print_json(response.text)
        sys.exit(EXIT_CODE_PASS)

    err_console.print(f"[red]{response.message}[/]")
    if response.error_kind == ErrorKind.RATE_LIMITED:
        sys.exit(EXIT_CODE_RATE_LIMITED)
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging on stderr"
    )
):
    """llm-swarm CLI."""
    _state["config_path"] = config
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr
    )
    if ctx.invoked_subcommand is None:
        console.print("llm-swarm - Use --help to see available commands")


@app.command()
def status():
    """Show configuration and gateway readiness."""
    config = _load_config()
    service = build_service(config)

    console.print(f"Model: {config.gateway.model} @ {config.gateway.base_url}")
    console.print(f"Ledger: {service.ledger.path}")
    console.print(
        f"Quota: {config.quota.prompts_per_window} prompts / "
        f"{config.quota.window_hours:g}h window"
    )
    if service.client is None:
        console.print("[yellow]![/] Gateway not initialized (MINIMAX_API_KEY missing)")
    else:
        console.print("[green]✓[/] Gateway ready")


@app.command()
def usage():
    """Show the current usage window and daily totals."""
    config = _load_config()
    service = build_service(config)

    response = service.usage_summary()
    if response.is_error:
        _exit_for(response)
    console.print(response.message)

    state = service.ledger.state
    if not state.daily_totals:
        return

    table = Table(title="Daily totals")
    table.add_column("Date")
    table.add_column("Prompts", justify="right")
    table.add_column("Input tokens", justify="right")
    table.add_column("Output tokens", justify="right")
    table.add_column("Est. cost", justify="right")
    for day in state.daily_totals:
        table.add_row(
            day.date,
            f"{day.prompt_count:,}",
            f"{day.total_input_tokens:,}",
            f"{day.total_output_tokens:,}",
            f"${day.estimated_cost_usd:.4f}"
        )
    console.print(table)


@app.command()
def query(
    prompt: str = typer.Argument(..., help="Prompt to send"),
    system: Optional[str] = typer.Option(None, "--system", "-s", help="System prompt"),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens", help="Max response tokens"),
    temperature: Optional[float] = typer.Option(None, "--temperature", "-t", help="Sampling temperature 0-2"),
    caller: Optional[str] = typer.Option(None, "--caller", help="Caller name for usage tracking")
):
    """Send a single prompt to the remote model."""
    service = build_service(_load_config())
    response = asyncio.run(service.query(
        prompt,
        system=system,
        max_tokens=max_tokens,
        temperature=temperature,
        caller=caller
    ))
    _exit_for(response)


@app.command()
def batch(
    tasks_file: Path = typer.Argument(..., help="JSON file with an array of tasks"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-n", help="Max concurrent requests 1-20"),
    caller: Optional[str] = typer.Option(None, "--caller", help="Caller name for usage tracking"),
    skill_chain: Optional[List[str]] = typer.Option(
        None,
        "--skill-chain",
        help="Skill that triggered this batch (repeatable); enables pipeline tracking"
    ),
    findings_total: Optional[int] = typer.Option(None, "--findings-total"),
    minimax_eligible: Optional[int] = typer.Option(None, "--minimax-eligible"),
    opus_required: Optional[int] = typer.Option(None, "--opus-required")
):
    """Run a batch of prompts in parallel."""
    try:
        with open(tasks_file, 'r', encoding='utf-8') as f:
            tasks = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        err_console.print(f"[red]Cannot read tasks file:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not isinstance(tasks, list):
        err_console.print("[red]Tasks file must contain a JSON array[/]")
        sys.exit(EXIT_CODE_FAIL)

    pipeline = None
    if skill_chain:
        pipeline = {
            "skill_chain": list(skill_chain),
            "findings_total": findings_total,
            "minimax_eligible": minimax_eligible,
            "opus_required": opus_required,
        }

    service = build_service(_load_config())
    response = asyncio.run(service.batch(
        tasks,
        concurrency=concurrency,
        caller=caller,
        pipeline=pipeline
    ))
    _exit_for(response)


if __name__ == "__main__":
    app()
