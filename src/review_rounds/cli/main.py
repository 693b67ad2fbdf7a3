from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from review_rounds.config.loader import clamp_rounds, list_problems, load_problem, load_settings
from review_rounds.core.errors import ConfigError
from review_rounds.core.loop import RoundOrchestrator
from review_rounds.core.types import EventKind, RunEvent, RunResult, RunSettings, RunStatus
from review_rounds.llm.client import build_backends
from review_rounds.logging.run_tracker import RunTracker

console = Console()

_EVENT_STYLES = {
    EventKind.REVIEW: "cyan",
    EventKind.NEW_BEST: "bold green",
    EventKind.SKIPPED: "yellow",
    EventKind.COMPLETED: "bold green",
    EventKind.ERROR: "bold red",
}


class ConsoleSink:
    """Prints run events as they arrive."""

    def __init__(self, out: Console) -> None:
        self.out = out

    async def emit(self, event: RunEvent) -> None:
        self.out.print(
            event.content,
            end="",
            style=_EVENT_STYLES.get(event.kind),
            markup=False,
            highlight=False,
            soft_wrap=True,
        )


def _load(config_path: Path | None) -> RunSettings:
    try:
        return load_settings(config_path)
    except ConfigError as e:
        raise click.UsageError(str(e)) from e


async def _run(
    settings: RunSettings,
    problem: str,
    rounds: int,
    streaming: bool,
    sink: ConsoleSink | None,
) -> RunResult:
    solver, reviewer = build_backends(settings)
    async with solver, reviewer:
        orchestrator = RoundOrchestrator(solver, reviewer, settings, streaming=streaming)
        return await orchestrator.run(problem, rounds, sink=sink)


@click.group()
def cli() -> None:
    """Review Rounds: iterative solve-and-review against two local model backends."""
    load_dotenv()


@cli.command("run")
@click.argument("problem", required=False)
@click.option("--preset", default=None, help="Problem preset name (see list-problems)")
@click.option("--rounds", default=None, type=int, help="Rounds to run, clamped to the configured bounds")
@click.option("--buffered", is_flag=True, help="Ask backends for single-shot JSON instead of token streams")
@click.option("--json", "as_json", is_flag=True, help="Print the final result as JSON instead of live output")
@click.option("--output-dir", default=None, help="Write round artifacts and summary.json under this directory")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML settings file",
)
@click.option("--verbose", "-v", is_flag=True, help="Log full prompts and responses to debug.log")
def run_cmd(
    problem: str | None,
    preset: str | None,
    rounds: int | None,
    buffered: bool,
    as_json: bool,
    output_dir: str | None,
    config_path: Path | None,
    verbose: bool,
) -> None:
    """Run solve/review rounds for PROBLEM."""
    settings = _load(config_path)
    if preset is not None:
        try:
            problem = load_problem(preset)["problem"]
        except (FileNotFoundError, ConfigError) as e:
            raise click.UsageError(str(e)) from e
    if not problem or not problem.strip():
        raise click.UsageError("Provide a PROBLEM argument or --preset")

    budget = clamp_rounds(rounds, settings)
    target_dir = Path(output_dir) if output_dir else settings.output_dir
    tracker = RunTracker(settings, target_dir) if target_dir else None

    if verbose:
        log_path = (tracker.run_dir if tracker else Path.cwd()) / "debug.log"
        rr_logger = logging.getLogger("review_rounds")
        rr_logger.setLevel(logging.DEBUG)
        fh = logging.FileHandler(log_path)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter("%(asctime)s [%(name)s]\n%(message)s\n"))
        rr_logger.addHandler(fh)

    if not as_json:
        console.print(f"[bold]Solver:[/bold] {settings.solver.url} ({settings.solver.model})")
        console.print(f"[bold]Reviewer:[/bold] {settings.reviewer.url} ({settings.reviewer.model})")
        console.print(f"[bold]Rounds:[/bold] {budget}")
        console.print(f"[bold]Mode:[/bold] {'buffered' if buffered else 'streaming'}\n")

    sink = None if as_json else ConsoleSink(console)
    result = asyncio.run(_run(settings, problem, budget, streaming=not buffered, sink=sink))

    if tracker is not None:
        summary_path = tracker.save_result(result)
        if not as_json:
            console.print(f"\n[dim]Run directory: {tracker.run_dir}[/dim]")
            console.print(f"[bold]Summary:[/bold] {summary_path}")
    if verbose and not as_json:
        console.print(f"[bold]Debug log:[/bold] {log_path}")

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    if result.status is RunStatus.ERROR:
        sys.exit(1)


@cli.command("check")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML settings file",
)
def check_cmd(config_path: Path | None) -> None:
    """Check that both backends are up and serve the configured model."""
    settings = _load(config_path)

    async def probe() -> list[tuple[str, str, str, bool, str]]:
        solver, reviewer = build_backends(settings)
        async with solver, reviewer:
            results = await asyncio.gather(solver.check_availability(), reviewer.check_availability())
            return [
                (b.name, b.settings.url, b.model, ok, b.availability_reason)
                for b, ok in zip((solver, reviewer), results)
            ]

    rows = asyncio.run(probe())
    table = Table(title="Backends")
    table.add_column("Backend", style="cyan")
    table.add_column("URL")
    table.add_column("Model")
    table.add_column("Status")
    table.add_column("Reason")
    for name, url, model, ok, reason in rows:
        status = "[green]available[/green]" if ok else "[red]unavailable[/red]"
        table.add_row(name, url, model, status, reason)
    console.print(table)

    if not all(row[3] for row in rows):
        sys.exit(1)


@cli.command("list-problems")
def list_problems_cmd() -> None:
    """List available problem presets."""
    table = Table(title="Available Problems")
    table.add_column("Name", style="cyan")
    table.add_column("Description")

    for name in list_problems():
        preset = load_problem(name)
        desc = (preset.get("description") or "").strip()[:80]
        table.add_row(name, desc)

    console.print(table)


@cli.command("serve")
@click.option("--host", default=None, help="Bind address (default from settings)")
@click.option("--port", default=None, type=int, help="Port (default from settings)")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML settings file",
)
def serve_cmd(host: str | None, port: int | None, config_path: Path | None) -> None:
    """Serve the HTTP API (GET/POST /solve, GET /health)."""
    import uvicorn

    from review_rounds.api.app import create_app

    settings = _load(config_path)
    uvicorn.run(create_app(settings), host=host or settings.host, port=port or settings.port)


if __name__ == "__main__":
    cli()
