"""Hotswap CLI entry point."""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from hotswap.build import Builder, BuildFailure
from hotswap.config import ConfigError, HotswapConfig, load_config
from hotswap.controller import HotSwapController
from hotswap.events import Event, EventBus, EventType
from hotswap.recipe import DirectoryRecipeSource, FileCategory, RecipeAggregator
from hotswap.watch import WatchdogWatchService

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )
    # watchdog is chatty at DEBUG
    logging.getLogger("watchdog").setLevel(logging.WARNING)


def print_event(event: Event) -> None:
    """Render controller events on the console."""
    generation = f"#{event.generation}" if event.generation is not None else ""
    if event.type == EventType.BUILD_FAILED:
        console.print(f"[bold red]✗ Build {generation} failed[/bold red]")
        for diagnostic in event.data.get("diagnostics", []):
            console.print(f"  [red]{escape(diagnostic)}[/red]")
    elif event.type == EventType.CONTEXT_LOADED:
        console.print(f"[bold green]✓ Generation {generation} running[/bold green]")
    elif event.type in (EventType.LOAD_FAILED, EventType.UNLOAD_FAILED):
        console.print(f"[bold red]✗ {event.type.value} {generation}: {escape(str(event.data.get('error')))}[/bold red]")
    elif event.type == EventType.CONTROLLER_HALTED:
        console.print("[bold red]Hot-swapping halted; restart the process to recover[/bold red]")


def open_recipe(config: HotswapConfig) -> tuple[DirectoryRecipeSource, RecipeAggregator, WatchdogWatchService]:
    """Wire a directory recipe source into an aggregator."""
    watch_service = WatchdogWatchService(
        polling=config.watch.polling,
        poll_interval=config.watch.poll_interval,
    )
    source = DirectoryRecipeSource(config.recipe.directories, config.recipe.external_references)
    recipe = RecipeAggregator(source, watch_service)
    return source, recipe, watch_service


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file (default: ./hotswap.toml)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Path | None) -> None:
    """Hotswap - live code hot-swapping for a running Python process."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)
    try:
        ctx.obj["config"] = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise SystemExit(2) from e

    if not ctx.obj["config"].recipe.directories:
        console.print("[yellow]No recipe directories configured[/yellow]")


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Build, run, and hot-swap the recipe until interrupted."""
    config: HotswapConfig = ctx.obj["config"]

    async def do_run() -> None:
        source, recipe, watch_service = open_recipe(config)
        event_bus = EventBus()
        event_bus.add_callback(print_event)

        controller = HotSwapController(
            recipe,
            Builder(),
            config.isolation.create_mechanism(),
            config.build.to_build_config(),
            event_bus=event_bus,
            build_timeout=config.build.timeout,
            prepare_recipe=source.refresh,
        )

        try:
            await controller.start()
            controller.request_rebuild()
            console.print("[bold green]Watching for changes (Ctrl-C to stop)[/bold green]")
            while True:
                await asyncio.sleep(1)
        finally:
            try:
                await controller.stop()
            finally:
                recipe.close()
                watch_service.close()

    try:
        asyncio.run(do_run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


@cli.command()
@click.pass_context
def recipe(ctx: click.Context) -> None:
    """Show the aggregated recipe."""
    config: HotswapConfig = ctx.obj["config"]
    source, aggregator, watch_service = open_recipe(config)

    try:
        source.refresh()

        table = Table(title="Recipe")
        table.add_column("Directory", style="cyan")
        table.add_column("Category")
        table.add_column("File", style="green")

        for directory in aggregator.list_directories():
            bundle = aggregator.get_bundle(directory)
            for category in FileCategory:
                for path in bundle.files(category):
                    table.add_row(str(directory), category.value, path.name)

        console.print(table)

        references = aggregator.list_external_references()
        if references:
            console.print(f"External references: {', '.join(references)}")
    finally:
        aggregator.close()
        watch_service.close()


@cli.command()
@click.pass_context
def build(ctx: click.Context) -> None:
    """Build the recipe once and report diagnostics."""
    config: HotswapConfig = ctx.obj["config"]
    source, aggregator, watch_service = open_recipe(config)

    try:
        source.refresh()
        build_config = config.build.to_build_config().with_references(
            [*aggregator.list_all_reference_files(), *aggregator.list_external_references()]
        )
        outcome = Builder().build(
            build_config,
            aggregator.list_all_source_files(),
            aggregator.list_all_resource_files(),
        )
    finally:
        aggregator.close()
        watch_service.close()

    if isinstance(outcome, BuildFailure):
        console.print(f"[red]✗[/red] {escape(outcome.message)}")
        raise SystemExit(1)

    console.print(f"[green]✓[/green] Built {outcome.name}: {len(outcome.modules)} modules, entry point {outcome.entry_point}")
    if outcome.artifact_path:
        console.print(f"[dim]Archive written to {outcome.artifact_path}[/dim]")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
