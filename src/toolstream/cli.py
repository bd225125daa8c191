"""Command-line entry point: one-shot chat and provider listing."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.table import Table

from toolstream.config import ToolstreamConfig, load_config
from toolstream.core.cancellation import CancelToken
from toolstream.core.orchestrator import AgenticOrchestrator
from toolstream.errors import ToolstreamError, RequestCancelled

console = Console()
err_console = Console(stderr=True)


@click.group()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to toolstream.yaml (auto-detected from CWD or ~/.config/toolstream/)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """toolstream - multi-provider LLM streaming with agentic tool calls."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)
    ctx.obj = load_config(config_path)


@main.command()
@click.argument("message")
@click.option("--provider", "-p", default=None, help="Provider id (see `toolstream providers`)")
@click.option("--model", "-m", default=None, help="Model name")
@click.option("--no-stream", is_flag=True, help="Wait for the full response")
@click.pass_obj
def chat(config: ToolstreamConfig, message: str, provider: str | None,
         model: str | None, no_stream: bool) -> None:
    """Send MESSAGE and print the reply."""
    settings = config.settings_for(provider, model)
    if not settings.model:
        raise click.UsageError("No model configured; pass --model or set defaults.model")

    try:
        response = asyncio.run(_chat(config, message, settings, stream=not no_stream))
    except RequestCancelled:
        err_console.print("[yellow]Cancelled[/yellow]")
        sys.exit(130)
    except ToolstreamError as e:
        err_console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if no_stream:
        console.print(response.content)
    else:
        console.print()
    usage = response.usage
    if usage is not None:
        approx = "~" if usage.estimated else ""
        console.print(
            f"[dim]{response.model} | {response.rounds} round(s) | "
            f"{approx}{usage.total_tokens} tokens[/dim]"
        )


async def _chat(config, message, settings, stream: bool):
    orchestrator = AgenticOrchestrator(config)
    cancel = CancelToken()

    def on_chunk(text: str) -> None:
        console.print(text, end="", markup=False, highlight=False)

    task = asyncio.ensure_future(orchestrator.send_message(
        message, settings,
        on_stream_chunk=on_chunk if stream else None,
        cancel=cancel,
    ))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        cancel.cancel("Interrupted")
        return await task
    finally:
        await orchestrator.close()


@main.command()
@click.pass_obj
def providers(config: ToolstreamConfig) -> None:
    """List configured providers."""
    table = Table(title="Providers")
    table.add_column("id")
    table.add_column("name")
    table.add_column("family")
    table.add_column("base url")
    table.add_column("key")
    for p in config.providers.values():
        if not p.requires_api_key:
            key = "[dim]not needed[/dim]"
        elif p.id in config.api_keys:
            key = "[green]set[/green]"
        else:
            key = "[red]missing[/red]"
        table.add_row(p.id, p.name, p.family, p.base_url, key)
    console.print(table)


if __name__ == "__main__":
    main()
