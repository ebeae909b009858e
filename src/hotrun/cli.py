"""hotrun CLI entry point."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from hotrun.config import load_config
from hotrun.engine import HotReloadEngine
from hotrun.events import Event, EventType

console = Console()

EVENT_STYLES = {
    EventType.MODULE_COMMITTED: "green",
    EventType.MODULE_REJECTED: "yellow",
    EventType.MODULE_LOAD_FAILED: "red",
    EventType.RESTART_REQUIRED: "bold red",
    EventType.STEP_COMPLETED: "cyan",
    EventType.STEP_FAILED: "red",
    EventType.STEP_REWOUND: "magenta",
    EventType.REWIND_FAILED: "red",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def print_event(event: Event) -> None:
    """Print diagnostics worth a developer's attention."""
    style = EVENT_STYLES.get(event.type)
    if style is None:
        return
    console.print(f"[{style}]{event.describe()}[/{style}]")


def build_engine(script: Path, watch_dirs: tuple[str, ...], poll_interval: float | None) -> HotReloadEngine:
    root = script.parent.resolve()
    config = load_config(
        root,
        overrides={
            "watch_dirs": list(watch_dirs) or None,
            "poll_interval": poll_interval,
        },
    )
    # Let the script import its siblings the way `python script.py` would
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))
    engine = HotReloadEngine(config, root=root)
    engine.bus.add_callback(print_event)
    return engine


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """hotrun - hot-reload Python modules and step pipelines while they run."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)


@cli.command()
@click.argument("script", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--watch-dir", "-w", "watch_dirs", multiple=True, help="Directory to watch (repeatable)")
@click.option("--poll-interval", type=float, help="Seconds between scans")
def run(script: Path, watch_dirs: tuple[str, ...], poll_interval: float | None) -> None:
    """Run SCRIPT and hot-reload it and its imports on every save.

    If SCRIPT defines a STEPS list, it is run as a step sequence and only the
    edited suffix re-runs after each change.
    """

    async def run_script() -> None:
        engine = build_engine(script, watch_dirs, poll_interval)
        async with engine:
            record = await engine.load(script)
            if hasattr(record.exports, "STEPS"):
                reconciler = engine.steps_reconciler(record.id)
                result = await reconciler.start(record.exports)
                console.print(f"[bold]Steps {result.status.value}[/bold]: {result.output}")

            console.print(f"[bold green]Watching {len(engine.store)} module(s)... (Ctrl+C to stop)[/bold green]")
            await engine.watch()

    try:
        asyncio.run(run_script())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


@cli.command()
@click.argument("script", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--watch-dir", "-w", "watch_dirs", multiple=True, help="Directory to track (repeatable)")
def graph(script: Path, watch_dirs: tuple[str, ...]) -> None:
    """Load SCRIPT once and show the tracked dependency graph."""

    async def show_graph() -> None:
        engine = build_engine(script, watch_dirs, None)
        async with engine:
            await engine.load(script)

            table = Table(title="Module Graph")
            table.add_column("#", style="dim")
            table.add_column("Module", style="cyan")
            table.add_column("Imports", style="green")
            table.add_column("Imported by", style="yellow")
            table.add_column("Reconciler")

            for record in engine.store:
                dependencies = [engine.store.require(d).display_name for d in sorted(record.dependencies)]
                dependents = [
                    engine.store.require(d).display_name
                    for d in sorted(engine.store.dependents_of(record.id))
                ]
                table.add_row(
                    str(record.load_order),
                    record.display_name,
                    ", ".join(dependencies) or "-",
                    ", ".join(dependents) or "-",
                    type(record.reconciler).__name__ if record.reconciler else "-",
                )

            console.print(table)

    asyncio.run(show_graph())


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
