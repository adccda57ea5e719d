"""Command-line interface for modsync."""

import logging
import sys
import threading
from pathlib import Path
from typing import Callable, TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from . import __version__
from .config import DEFAULT_LOADER, DEFAULT_WORKERS, ConfigError, Settings, default_mods_dir
from .engine import OutcomeStatus, UpdateEngine, UpdateReport
from .errors import ModSyncError
from .models import BatchStatus, DuplicatePolicy, Identity, ProviderTag, ToggleState
from .providers import build_providers
from .providers.modrinth import CURATED_SLUGS
from .toggle import ToggleReport, ToggleStatus

console = Console()

T = TypeVar("T")

_STATUS_STYLE = {
    OutcomeStatus.SUCCEEDED: "[green]updated[/green]",
    OutcomeStatus.SKIPPED: "[dim]skipped[/dim]",
    OutcomeStatus.FAILED: "[red]failed[/red]",
}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    # urllib3 is chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _parse_target(target: str) -> Identity | str:
    """``modrinth:AANobbMI`` names a project directly; anything else is a search query."""
    prefix, sep, project_id = target.partition(":")
    if sep and project_id and prefix.lower() in {t.value for t in ProviderTag}:
        return Identity(ProviderTag(prefix.lower()), project_id)
    return target


def _run_cancellable(fn: Callable[[threading.Event], T]) -> T:
    """Run ``fn`` in a worker thread; Ctrl-C sets its cancel event and waits for it to wind down."""
    cancel = threading.Event()
    result: dict[str, T] = {}
    errors: list[BaseException] = []

    def target() -> None:
        try:
            result["value"] = fn(cancel)
        except BaseException as e:
            errors.append(e)

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    try:
        while thread.is_alive():
            thread.join(timeout=0.2)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelling, letting in-flight replacements finish...[/yellow]")
        cancel.set()
        thread.join()

    if errors:
        raise errors[0]
    return result["value"]


def _progress_bar() -> Progress:
    return Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(bar_width=30),
        "[progress.percentage]{task.percentage:>3.0f}%",
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )


def _print_report(report: UpdateReport, title: str) -> None:
    table = Table(title=title)
    table.add_column("Mod", style="cyan")
    table.add_column("Project")
    table.add_column("Version", style="blue")
    table.add_column("Result")
    table.add_column("Details", style="dim")

    for outcome in report.outcomes:
        details = outcome.reason
        if outcome.installed and outcome.status == OutcomeStatus.SUCCEEDED:
            details = ", ".join(outcome.installed)
        if outcome.optional:
            optional = ", ".join(str(i) for i in outcome.optional)
            details = f"{details}; optional: {optional}" if details else f"optional: {optional}"
        table.add_row(
            outcome.name[:40],
            str(outcome.identity) if outcome.identity else "-",
            outcome.version_id or "-",
            _STATUS_STYLE[outcome.status],
            details,
        )
    console.print(table)
    console.print(
        f"[bold]{len(report.succeeded)}[/bold] updated, "
        f"[bold]{len(report.skipped)}[/bold] skipped, "
        f"[bold]{len(report.failed)}[/bold] failed"
    )


def _exit_for(status: BatchStatus) -> None:
    if status != BatchStatus.ALL_SUCCEEDED:
        sys.exit(1)


@click.group()
@click.version_option(__version__, prog_name="modsync")
@click.option(
    "--dir",
    "mods_dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="MODSYNC_DIR",
    help="Mods directory (or set MODSYNC_DIR; defaults to the .minecraft/mods folder)",
)
@click.option("--game-version", envvar="MODSYNC_GAME_VERSION", help="Target game version, e.g. 1.20.4")
@click.option("--loader", envvar="MODSYNC_LOADER", default=DEFAULT_LOADER, show_default=True, help="Mod loader")
@click.option(
    "--provider",
    type=click.Choice([t.value for t in ProviderTag], case_sensitive=False),
    envvar="MODSYNC_PROVIDER",
    help="Only use this provider",
)
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    envvar="MODSYNC_WORKERS",
    default=DEFAULT_WORKERS,
    show_default=True,
    help="Concurrent pipelines",
)
@click.option("--github-token", envvar="GITHUB_TOKEN", help="GitHub token (or set GITHUB_TOKEN)")
@click.option(
    "--curseforge-api-key", envvar="CURSEFORGE_API_KEY", help="CurseForge API key (or set CURSEFORGE_API_KEY)"
)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def main(
    ctx: click.Context,
    mods_dir: Path | None,
    game_version: str | None,
    loader: str,
    provider: str | None,
    workers: int,
    github_token: str | None,
    curseforge_api_key: str | None,
    verbose: bool,
) -> None:
    """Keep a directory of Minecraft mods in sync with Modrinth and GitHub releases."""
    _setup_logging(verbose)

    try:
        settings = Settings(
            mods_dir=mods_dir or default_mods_dir(),
            game_version=game_version or None,
            loader=loader,
            provider=provider,
            workers=workers,
            github_token=github_token or None,
            curseforge_api_key=curseforge_api_key or None,
        )
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    if "engine" not in ctx.obj:
        providers = build_providers(settings.github_token, settings.curseforge_api_key)
        ctx.obj["engine"] = UpdateEngine(providers, workers=settings.workers)


def _constraints(settings: Settings):
    try:
        return settings.constraints()
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


@main.command()
@click.argument("target")
@click.pass_context
def add(ctx: click.Context, target: str) -> None:
    """
    Install a mod and its required dependencies.

    TARGET: a search query (e.g. "sodium") or provider:project_id
    """
    settings: Settings = ctx.obj["settings"]
    engine: UpdateEngine = ctx.obj["engine"]
    constraints = _constraints(settings)

    console.print(
        f"[bold]Installing[/bold] {target} for {constraints.platform_version} ({constraints.loader}) "
        f"into {settings.mods_dir}"
    )
    with _progress_bar() as progress:
        task_id = progress.add_task("Resolving", total=1.0)

        def on_progress(event: str, pct: float, msg: str) -> None:
            progress.update(task_id, completed=pct, description=msg)

        report = _run_cancellable(
            lambda cancel: engine.resolve_and_install(
                _parse_target(target), settings.mods_dir, constraints, cancel=cancel, on_progress=on_progress
            )
        )

    _print_report(report, "Install")
    _exit_for(report.status)


@main.command(name="quick-add")
@click.option("--limit", type=click.IntRange(min=1), default=100, show_default=True, help="How many top mods to add")
@click.option("--extras/--no-extras", default=True, show_default=True, help="Also add the curated Modrinth extras")
@click.pass_context
def quick_add(ctx: click.Context, limit: int, extras: bool) -> None:
    """Install the most downloaded mods for the game version, plus a few curated extras."""
    settings: Settings = ctx.obj["settings"]
    engine: UpdateEngine = ctx.obj["engine"]
    constraints = _constraints(settings)
    slugs = CURATED_SLUGS if extras and settings.provider in (None, ProviderTag.MODRINTH) else ()

    console.print(
        f"[bold]Adding[/bold] the top {limit} mods for {constraints.platform_version} ({constraints.loader}) "
        f"into {settings.mods_dir}"
    )
    with _progress_bar() as progress:
        task_id = progress.add_task("Fetching", total=1.0)

        def on_progress(event: str, pct: float, msg: str) -> None:
            progress.update(task_id, completed=pct, description=msg)

        report = _run_cancellable(
            lambda cancel: engine.quick_add(
                settings.mods_dir, constraints, limit, slugs, cancel=cancel, on_progress=on_progress
            )
        )

    _print_report(report, "Quick add")
    _exit_for(report.status)


@main.command()
@click.option(
    "--keep-previous",
    is_flag=True,
    envvar="MODSYNC_KEEP_PREVIOUS",
    help="Move replaced files into .previous/ instead of deleting them",
)
@click.option(
    "--duplicates",
    type=click.Choice([p.value for p in DuplicatePolicy]),
    default=DuplicatePolicy.REJECT.value,
    show_default=True,
    help="What to do when the same project is installed twice",
)
@click.pass_context
def update(ctx: click.Context, keep_previous: bool, duplicates: str) -> None:
    """Update every mod in the directory to the newest compatible version."""
    settings: Settings = ctx.obj["settings"]
    engine: UpdateEngine = ctx.obj["engine"]
    constraints = _constraints(settings)

    if not settings.mods_dir.is_dir():
        console.print(f"[red]Error:[/red] {settings.mods_dir} is not a directory")
        sys.exit(1)

    console.print(
        f"[bold]Updating[/bold] {settings.mods_dir} for {constraints.platform_version} ({constraints.loader})"
    )
    with _progress_bar() as progress:
        task_id = progress.add_task("Scanning", total=1.0)

        def on_progress(event: str, pct: float, msg: str) -> None:
            progress.update(task_id, completed=pct, description=f"{event}: {msg}")

        report = _run_cancellable(
            lambda cancel: engine.update_directory(
                settings.mods_dir,
                constraints,
                keep_previous=keep_previous,
                duplicates=DuplicatePolicy(duplicates),
                cancel=cancel,
                on_progress=on_progress,
            )
        )

    if not report.outcomes:
        console.print("[yellow]No mods found.[/yellow]")
        return
    _print_report(report, "Update")
    _exit_for(report.status)


@main.command(name="list")
@click.pass_context
def list_mods(ctx: click.Context) -> None:
    """Show installed mods, their state and where they came from."""
    settings: Settings = ctx.obj["settings"]
    engine: UpdateEngine = ctx.obj["engine"]

    listings = engine.list_artifacts(settings.mods_dir)
    if not listings:
        console.print(f"[yellow]No mods in {settings.mods_dir}[/yellow]")
        return

    table = Table(title=str(settings.mods_dir))
    table.add_column("Mod", style="cyan")
    table.add_column("State")
    table.add_column("Project")
    table.add_column("Version", style="blue")
    table.add_column("Game version")

    for listing in listings:
        record = listing.metadata
        table.add_row(
            listing.artifact.canonical_name[:40],
            "[green]enabled[/green]" if listing.state == ToggleState.ENABLED else "[dim]disabled[/dim]",
            str(record.identity()) if record else "[dim]untracked[/dim]",
            record.version_id if record else "-",
            f"{record.platform_version} ({record.loader})" if record else "-",
        )
    console.print(table)


@main.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--enable/--disable", "enable", default=None, required=True, help="Target state for every NAME")
@click.pass_context
def toggle(ctx: click.Context, names: tuple[str, ...], enable: bool) -> None:
    """
    Enable or disable mods by renaming them.

    NAMES: file names of the mods, with or without the .disabled suffix
    """
    settings: Settings = ctx.obj["settings"]
    engine: UpdateEngine = ctx.obj["engine"]

    try:
        report: ToggleReport = engine.apply_toggles(settings.mods_dir, {name: enable for name in names})
    except ModSyncError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    for name, result in report.results.items():
        if result.status == ToggleStatus.FAILED:
            console.print(f"  [red]✗[/red] {name}: {result.error}")
        elif result.status == ToggleStatus.CHANGED:
            console.print(f"  [green]✓[/green] {name} {result.state.value}")
        else:
            console.print(f"  [dim]-[/dim] {name} already {result.state.value}")
    _exit_for(report.status)


if __name__ == "__main__":
    main()
