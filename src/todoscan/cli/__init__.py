"""
CLI for todoscan.

Provides command-line interface for scanning a workspace for marker
comments, watching it for changes, and inspecting the effective config.
"""

import asyncio
import dataclasses
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from todoscan.core import (
    ConfigError,
    Diagnostic,
    DiagnosticStore,
    LoggingConfig,
    ScanConfig,
    Severity,
    TodoScanConfig,
    TrackedScopeSet,
    compile_matcher,
    load_config,
)
from todoscan.core.file_events import FileEvent
from todoscan.infrastructure import FileWatcher, LocalWorkspace
from todoscan.services import UpdateController, scan_workspace

# Initialize Rich Console
console = Console()

app = typer.Typer(
    name="todoscan",
    help="todoscan - Report TODO/FIXME style marker comments",
    add_completion=False,
)

_SEVERITY_STYLES = {
    Severity.ERROR: "bold red",
    Severity.WARNING: "yellow",
    Severity.INFO: "cyan",
    Severity.HINT: "dim",
}


def setup_logging(config: LoggingConfig, verbose: bool = False) -> None:
    """Configure the root logger from the logging config section."""
    level = logging.DEBUG if verbose else getattr(logging, str(config.level).upper(), logging.INFO)
    logging.basicConfig(level=level, format=config.format, force=True)


def _load(config_file: Optional[Path], verbose: bool = False) -> TodoScanConfig:
    """Load .env and configuration, exiting with code 1 on config errors."""
    load_dotenv()
    try:
        cfg = load_config(config_file)
    except ConfigError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)
    setup_logging(cfg.logging, verbose)
    return cfg


def _parse_fail_on(value: Optional[str]) -> Optional[Severity]:
    if value is None:
        return None
    try:
        return Severity(value.strip().lower())
    except ValueError:
        choices = ", ".join(s.value for s in Severity)
        console.print(f"[bold red]Error:[/bold red] Invalid severity '{escape(value)}'. Choose from: {choices}")
        raise typer.Exit(1)


def _display_path(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def _render_diagnostics(diagnostics: Sequence[Diagnostic], root: Path) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("File", style="cyan")
    table.add_column("Line", justify="right")
    table.add_column("Col", justify="right")
    table.add_column("Severity")
    table.add_column("Message")

    for diagnostic in sorted(diagnostics, key=lambda d: (str(d.path), d.line)):
        style = _SEVERITY_STYLES.get(diagnostic.severity, "")
        table.add_row(
            escape(_display_path(diagnostic.path, root)),
            str(diagnostic.line + 1),
            str(diagnostic.start_column + 1),
            f"[{style}]{diagnostic.severity.value}[/{style}]" if style else diagnostic.severity.value,
            escape(diagnostic.message),
        )
    return table


def _report_pattern_error(scan_config: ScanConfig) -> None:
    matcher = compile_matcher(scan_config)
    if matcher.error:
        console.print(f"[bold yellow]Warning:[/bold yellow] {escape(matcher.error)}")


@app.command()
def scan(
    path: Path = typer.Argument(..., help="Workspace root to scan"),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file (.yaml, .yml or .json)"
    ),
    fail_on: Optional[str] = typer.Option(
        None, "--fail-on", help="Exit with code 1 if a marker at or above this severity is found"
    ),
    case_insensitive: bool = typer.Option(
        False, "--case-insensitive", help="Match keywords regardless of case"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Scan a workspace once and report every marker comment."""
    cfg = _load(config_file, verbose)
    threshold = _parse_fail_on(fail_on)

    scan_config = cfg.to_scan_config()
    if case_insensitive:
        scan_config = dataclasses.replace(scan_config, case_sensitive=False)
    _report_pattern_error(scan_config)

    try:
        workspace = LocalWorkspace(path)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)

    console.print(f"[bold blue]Scanning[/bold blue] {workspace.root}...")

    store = DiagnosticStore()
    summary = asyncio.run(
        scan_workspace(
            store,
            scan_config,
            TrackedScopeSet(),
            workspace,
            concurrency=cfg.watch.max_concurrency,
        )
    )

    diagnostics = store.all_diagnostics()
    if diagnostics:
        console.print(_render_diagnostics(diagnostics, workspace.root))
    else:
        console.print("[green]No markers found.[/green]")

    grid = Table.grid(padding=1)
    grid.add_column(style="bold")
    grid.add_column()
    grid.add_row("Files Found:", str(summary.files_found))
    grid.add_row("Files Scanned:", str(summary.files_scanned))
    grid.add_row("Binary Files:", str(summary.binary_files))
    grid.add_row("Skipped:", str(summary.files_skipped))
    grid.add_row("Markers:", str(summary.diagnostics))
    grid.add_row("Duration:", f"{summary.duration_ms:.2f}ms")
    console.print(Panel(grid, title="Scan Summary", border_style="green", expand=False))

    if threshold is not None and any(d.severity.rank <= threshold.rank for d in diagnostics):
        raise typer.Exit(1)


class _ConsoleSink:
    """Prints store changes while watching."""

    def __init__(self, root: Path):
        self._root = root

    def publish(self, path: Path, diagnostics: Sequence[Diagnostic]) -> None:
        shown = escape(_display_path(path, self._root))
        if not diagnostics:
            console.print(f"[dim]{shown}: no markers[/dim]")
            return
        console.print(f"[bold]{shown}[/bold]: {len(diagnostics)} marker(s)")
        for diagnostic in diagnostics:
            style = _SEVERITY_STYLES.get(diagnostic.severity, "")
            console.print(
                f"  {diagnostic.line + 1}:{diagnostic.start_column + 1} "
                f"[{style}]{diagnostic.severity.value}[/{style}] {escape(diagnostic.message)}"
            )

    def clear(self, path: Path) -> None:
        console.print(f"[dim]{escape(_display_path(path, self._root))}: cleared[/dim]")

    def clear_all(self) -> None:
        console.print("[dim]Cleared all markers[/dim]")


async def _watch(workspace: LocalWorkspace, cfg: TodoScanConfig, config_file: Optional[Path]) -> None:
    config_path = config_file.resolve() if config_file else None
    last_good = cfg.to_scan_config()

    file_watcher = FileWatcher(ignore_globs=cfg.scan.exclude)

    def read_config() -> ScanConfig:
        # The last good configuration stays in effect when a reload fails
        nonlocal last_good
        try:
            reloaded = load_config(config_path)
        except ConfigError as e:
            console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
            return last_good
        last_good = reloaded.to_scan_config()
        file_watcher.set_ignore_globs(reloaded.scan.exclude)
        return last_good

    controller = UpdateController(
        workspace,
        read_config,
        DiagnosticStore(sink=_ConsoleSink(workspace.root)),
        change_debounce_ms=cfg.watch.change_debounce_ms,
        config_debounce_ms=cfg.watch.config_debounce_ms,
        save_suppression_ms=cfg.watch.save_suppression_ms,
        max_concurrency=cfg.watch.max_concurrency,
    )
    loop = asyncio.get_running_loop()

    def on_event(event: FileEvent) -> None:
        if config_path is not None and event.file_path == config_path:
            loop.call_soon_threadsafe(controller.on_config_changed)
            return
        controller.on_file_event_threadsafe(event)

    await controller.start()
    file_watcher.start(workspace.root, on_event)
    try:
        await controller.wait_for_scan()
        summary = controller.last_summary
        if summary is not None:
            console.print(
                f"[green]Initial scan:[/green] {summary.files_scanned} files, "
                f"{summary.diagnostics} markers"
            )
        console.print("[dim]Watching for changes. Press Ctrl+C to stop.[/dim]")
        while True:
            await asyncio.sleep(3600)
    finally:
        file_watcher.stop()
        await controller.stop()


@app.command()
def watch(
    path: Path = typer.Argument(..., help="Workspace root to watch"),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file, reloaded when it changes"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Scan a workspace and keep reporting markers as files change."""
    cfg = _load(config_file, verbose)
    _report_pattern_error(cfg.to_scan_config())

    try:
        workspace = LocalWorkspace(path)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)

    console.print(f"[bold blue]Watching[/bold blue] {workspace.root}")
    try:
        asyncio.run(_watch(workspace, cfg, config_file))
    except KeyboardInterrupt:
        console.print("\n[cyan]Stopped.[/cyan]")


@app.command("config")
def show_config(
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file (.yaml, .yml or .json)"
    ),
    output_format: str = typer.Option("yaml", "--format", "-f", help="Output format: yaml or json"),
):
    """Print the effective configuration."""
    cfg = _load(config_file)

    fmt = output_format.lower()
    if fmt == "yaml":
        console.print(Syntax(cfg.to_yaml(), "yaml", theme="monokai"))
    elif fmt == "json":
        typer.echo(cfg.to_json())
    else:
        console.print(f"[bold red]Error:[/bold red] Unsupported format '{output_format}'")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
