"""Command line entry point: send one message, or show provider status."""

import argparse
import asyncio
import base64
import mimetypes
import sys
import time
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from marvin_orchestrator import __version__
from marvin_orchestrator.errors import (
    AgentLoopExceeded,
    AllProvidersExhausted,
    ConfigurationError,
)
from marvin_orchestrator.models import (
    ContentContext,
    MessageCategory,
    OrchestratorInput,
    OrchestratorResult,
)
from marvin_orchestrator.observability import configure_observability
from marvin_orchestrator.orchestrator import Orchestrator
from marvin_orchestrator.settings import get_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marvin-orchestrator",
        description="Route a message to the best available LLM provider",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"{__version__}",
        help="Show version and exit",
    )
    parser.add_argument("text", nargs="*", help="Message text")
    parser.add_argument(
        "--provider",
        "-p",
        type=str,
        help="Force a provider (e.g., --provider gemini)",
    )
    parser.add_argument(
        "--category",
        "-c",
        choices=[c.value for c in MessageCategory],
        help="Force a routing category instead of classifying",
    )
    parser.add_argument("--image", type=Path, help="Attach an image file")
    parser.add_argument("--url", type=str, help="Attach a shared URL as context")
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show registered providers and rate limit state, then exit",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the raw result as JSON",
    )
    return parser


def build_input(args: argparse.Namespace) -> OrchestratorInput:
    context = None
    if args.image or args.url:
        image_data = None
        mime_type = None
        if args.image:
            image_data = base64.b64encode(args.image.read_bytes()).decode("ascii")
            mime_type = mimetypes.guess_type(args.image.name)[0] or "image/jpeg"
        context = ContentContext(
            url=args.url,
            image_base64=image_data,
            image_mime_type=mime_type,
        )
    return OrchestratorInput(
        text=" ".join(args.text),
        content_context=context,
        provider=args.provider,
        category=MessageCategory(args.category) if args.category else None,
    )


def render_status(console: Console, orchestrator: Orchestrator) -> None:
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Provider", style="cyan")
    table.add_column("Capabilities", style="dim")
    table.add_column("Requests", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("State")

    states = orchestrator.get_rate_limit_snapshot()
    now = time.monotonic()
    default = orchestrator.get_default_provider()

    for name in orchestrator.get_available_providers():
        provider = orchestrator.registry.get(name)
        caps = provider.capabilities
        flags = [
            flag
            for flag, enabled in (
                ("vision", caps.vision),
                ("tools", caps.tool_use),
                ("json", caps.json_mode),
                ("search", caps.web_search),
            )
            if enabled
        ]
        state = states.get(name)
        if state is None:
            requests = tokens = "-"
            status = "[green]ready[/green]"
        else:
            requests = f"{state.requests_remaining:,}"
            tokens = f"{state.tokens_remaining:,}"
            if state.is_limited and state.resets_at > now:
                status = f"[red]limited[/red] ({state.resets_at - now:.0f}s)"
            else:
                status = "[green]ready[/green]"
            if state.last_error:
                status += f" [dim]{escape(state.last_error)}[/dim]"

        label = f"{provider.display_name} [dim]({name})[/dim]"
        if name == default:
            label += " [yellow]*[/yellow]"
        table.add_row(label, ", ".join(flags), requests, tokens, status)

    console.print(table)
    console.print()


def render_result(console: Console, result: OrchestratorResult) -> None:
    title = f"{result.provider} · {result.category.value} · {result.classification.value}"
    body = escape(result.response) if result.response else "[dim](empty response)[/dim]"
    console.print(Panel(body, title=title))

    for change in result.state_changes:
        console.print(f"  [yellow]{change.type.value}[/yellow] {escape(str(change.data))}")
    if result.tools_used:
        console.print(
            f"[dim]tools: {', '.join(result.tools_used)} ({result.agent_steps} steps)[/dim]"
        )
    if result.usage is not None:
        console.print(
            f"[dim]tokens: {result.usage.input_tokens} in, {result.usage.output_tokens} out[/dim]"
        )


async def run(args: argparse.Namespace, console: Console) -> int:
    settings = get_settings()
    configure_observability(settings)

    try:
        orchestrator = Orchestrator.from_settings(settings)
    except ConfigurationError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        return 2

    async with orchestrator:
        if args.status:
            render_status(console, orchestrator)
            return 0

        if not args.text:
            console.print("[red]No message given[/red]")
            return 2

        try:
            result = await orchestrator.process_message(build_input(args))
        except (AllProvidersExhausted, AgentLoopExceeded) as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            return 1

    if args.json:
        console.print_json(data=result.to_dict())
    else:
        render_result(console, result)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console()
    try:
        return asyncio.run(run(args, console))
    except KeyboardInterrupt:
        console.print("[yellow]Cancelled[/yellow]")
        return 130


def main_entry() -> None:
    """Entry point for the installed CLI tool."""
    sys.exit(main())
