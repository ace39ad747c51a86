"""CLI interface for regen."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated

import structlog
import typer

from regen import __version__
from regen.backup import BackupManager
from regen.config import DEFAULT_CONFIG_NAME, RegenConfig
from regen.detect import RepositoryDetector
from regen.exceptions import ConfigError, RegenError
from regen.orchestrator import PipelineResult, ProgressEvent, UpdateOrchestrator
from regen.paths import RegenPaths
from regen.scheduler import AutoUpdateScheduler


def configure_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Configure structlog for CLI output.

    Args:
        verbose: Include debug messages.
        log_file: Write JSON lines to this file instead of the console.
    """
    level = logging.DEBUG if verbose else logging.INFO
    processors: list[structlog.typing.Processor] = [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
    ]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        structlog.configure(
            processors=[*processors, structlog.processors.JSONRenderer()],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.WriteLoggerFactory(
                file=log_file.open("a", encoding="utf-8")
            ),
            cache_logger_on_first_use=False,
        )
        return

    structlog.configure(
        processors=[*processors, structlog.dev.ConsoleRenderer()],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


configure_logging()

logger = structlog.get_logger()

app = typer.Typer(
    name="regen",
    help="Regenerate PKHeX legality data from upstream repositories",
    no_args_is_help=True,
)

backup_app = typer.Typer(
    name="backup",
    help="Manage snapshots of generated files",
    no_args_is_help=True,
)
app.add_typer(backup_app, name="backup")

ConfigOption = Annotated[
    Path,
    typer.Option(
        "--config",
        "-c",
        help="Path to regen.yaml config file",
        resolve_path=True,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"regen version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Show debug logging."),
    ] = False,
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", help="Write JSON logs to this file."),
    ] = None,
) -> None:
    """regen - PKHeX legality data regenerator."""
    configure_logging(verbose=verbose, log_file=log_file)


def _load_config(config_path: Path) -> RegenConfig:
    try:
        return RegenConfig.load(config_path)
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Run 'regen init' to create {DEFAULT_CONFIG_NAME}.", err=True)
        raise typer.Exit(1) from e


def _print_event(event: ProgressEvent) -> None:
    typer.echo(f"[{event.percent:3d}%] {event.source}: {event.message}")


def _print_results(results: list[PipelineResult]) -> bool:
    typer.echo("")
    for result in results:
        if result.success:
            sha = (result.state.commit_hash or "")[:7]
            line = f"{result.source}: updated"
            if sha:
                line += f" ({sha})"
            typer.echo(typer.style(line, fg=typer.colors.GREEN))
            if result.collect is not None and result.collect.missing_expected:
                missing = ", ".join(result.collect.missing_expected)
                typer.echo(f"  missing expected files: {missing}")
        else:
            typer.echo(typer.style(f"{result.source}: {result.error}", fg=typer.colors.RED))
    return all(r.success for r in results)


@app.command()
def init(
    config_path: ConfigOption = Path(DEFAULT_CONFIG_NAME),
    repo_folder: Annotated[
        str | None,
        typer.Option("--repo-folder", help="Root folder holding the repositories"),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite existing config"),
    ] = False,
) -> None:
    """Write a default configuration file."""
    if config_path.exists() and not force:
        typer.echo(f"Config already exists: {config_path}")
        typer.echo("Use --force to overwrite.")
        raise typer.Exit(1)

    config = RegenConfig.default()
    if repo_folder:
        config.repo_folder = repo_folder
    config.save(config_path)

    typer.echo(f"Created config: {config_path}")
    typer.echo(f"Repository folder: {config.repo_folder}")
    typer.echo("")
    typer.echo(f"Edit {config_path.name} to customize settings.")


@app.command()
def update(
    config_path: ConfigOption = Path(DEFAULT_CONFIG_NAME),
    source: Annotated[
        str | None,
        typer.Option("--source", "-s", help="Only update this source"),
    ] = None,
    no_backup: Annotated[
        bool,
        typer.Option("--no-backup", help="Skip the pre-update snapshot"),
    ] = False,
) -> None:
    """Sync repositories, run tools and regenerate the data files."""
    config = _load_config(config_path)
    orchestrator = UpdateOrchestrator(config)
    log = logger.bind(command="update", source=source)
    log.info("Starting update")

    try:
        if source is None:
            results = orchestrator.run_all(on_event=_print_event, backup=not no_backup)
        else:
            results = [
                orchestrator.run(source, on_event=_print_event, backup=not no_backup)
            ]
    except RegenError as e:
        log.error("Update aborted", error=str(e))
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    if not _print_results(results):
        typer.echo("")
        typer.echo(typer.style("Update failed.", fg=typer.colors.RED))
        raise typer.Exit(1)

    typer.echo("")
    typer.echo(typer.style("Update completed successfully!", fg=typer.colors.GREEN))
    typer.echo(f"Output: {orchestrator.paths.output_root}")


@app.command()
def watch(
    config_path: ConfigOption = Path(DEFAULT_CONFIG_NAME),
    poll: Annotated[
        float,
        typer.Option("--poll", help="Seconds between checks", min=1),
    ] = 60.0,
) -> None:
    """Update automatically every auto_update_interval_hours."""
    config = _load_config(config_path)
    orchestrator = UpdateOrchestrator(config)
    scheduler = AutoUpdateScheduler(
        orchestrator,
        interval_hours=config.auto_update_interval_hours,
        poll_seconds=poll,
        on_event=_print_event,
    )

    typer.echo(
        f"Auto-update every {config.auto_update_interval_hours}h. Press Ctrl+C to stop."
    )
    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        scheduler.stop()
        typer.echo("\nStopped.")
    finally:
        orchestrator.shutdown()


@app.command()
def detect(
    roots: Annotated[
        list[Path] | None,
        typer.Argument(help="Folders to search (defaults to common locations)"),
    ] = None,
    config_path: ConfigOption = Path(DEFAULT_CONFIG_NAME),
    save: Annotated[
        bool,
        typer.Option("--save", help="Write detected paths into the config"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Find PKHeX, EventsGallery and PoGoEncTool checkouts."""
    repos = RepositoryDetector().detect(roots)

    if json_output:
        typer.echo(json.dumps([r.to_dict() for r in repos], indent=2))
    elif not repos:
        typer.echo("No repositories found.")
    else:
        for repo in repos:
            typer.echo(f"{repo.type:<15} {repo.path}  ({repo.last_modified:%Y-%m-%d})")

    if not save or not repos:
        return

    config = RegenConfig.load_or_create(config_path)
    for repo in repos:
        if repo.type == "PKHeX":
            config.output_path = str(repo.path / "PKHeX.Core" / "Resources" / "legality")
            continue
        for source in config.sources:
            if source.name == repo.type:
                source.path = str(repo.path)
    config.save(config_path)
    typer.echo(f"Saved detected paths to {config_path}")


@backup_app.command("create")
def backup_create(
    config_path: ConfigOption = Path(DEFAULT_CONFIG_NAME),
) -> None:
    """Snapshot the current generated files."""
    manager = _backup_manager(_load_config(config_path))
    path = manager.create()
    if path is None:
        typer.echo(typer.style("Backup failed.", fg=typer.colors.RED))
        raise typer.Exit(1)
    typer.echo(f"Created backup: {path.name}")


@backup_app.command("list")
def backup_list(
    config_path: ConfigOption = Path(DEFAULT_CONFIG_NAME),
) -> None:
    """List snapshots, newest first."""
    names = _backup_manager(_load_config(config_path)).list_backups()
    if not names:
        typer.echo("No backups found.")
        return
    for name in names:
        typer.echo(name)


@backup_app.command("restore")
def backup_restore(
    name: Annotated[str, typer.Argument(help="Backup name (see 'regen backup list')")],
    config_path: ConfigOption = Path(DEFAULT_CONFIG_NAME),
) -> None:
    """Copy a snapshot back into the output directories."""
    manager = _backup_manager(_load_config(config_path))
    try:
        restored = manager.restore(name)
    except RegenError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e
    typer.echo(typer.style(f"Restored {restored} files from {name}", fg=typer.colors.GREEN))


def _backup_manager(config: RegenConfig) -> BackupManager:
    paths = RegenPaths.from_config(config)
    return BackupManager(
        paths.backups_dir, paths.output_dirs, max_backups=config.backups.max_backups
    )


if __name__ == "__main__":
    app()
