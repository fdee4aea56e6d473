"""CLI entry point for uptodate."""

from __future__ import annotations

import asyncio
import logging
from importlib.metadata import version as pkg_version
from pathlib import Path

import click

from uptodate.cache import CacheStore
from uptodate.checker import DependencyChecker
from uptodate.config import CONFIG_FILENAME, write_sample_config
from uptodate.errors import UptodateError
from uptodate.models import DependencyUpdate, UpdateCheckResult
from uptodate.shell import step

__version__ = pkg_version("uptodate")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s]: %(message)s"

path_option = click.option(
    "--path",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Project root.",
)


def _format_update(update: DependencyUpdate) -> str:
    line = f"  {update.name}: {update.current_version} → {update.new_version}"
    if update.installed_version and update.installed_version != update.current_version:
        line += f" (installed {update.installed_version})"
    return line


def _print_result(result: UpdateCheckResult) -> None:
    if not result.updatable and not result.breaking_changes:
        click.echo("✓ All dependencies are up to date")
        return

    if result.updatable:
        step(f"{len(result.updatable)} updates available")
        for update in result.updatable:
            click.echo(_format_update(update))

    if result.breaking_changes:
        step(f"{len(result.breaking_changes)} major updates (breaking changes)")
        for update in result.breaking_changes:
            click.echo(_format_update(update))
            if update.migration_instructions:
                click.echo(f"    {update.migration_instructions}")


@click.group()
@click.version_option(__version__)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output.")
@click.option("-q", "--quiet", is_flag=True, help="Only show warnings and errors.")
def cli(verbose: bool, quiet: bool) -> None:
    """Keep npm, yarn and pnpm dependencies up to date across workspaces."""
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)


@cli.command()
@path_option
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
def check(path: Path, as_json: bool) -> None:
    """Report available dependency updates."""
    try:
        result = asyncio.run(DependencyChecker(path).check_for_updates())
    except UptodateError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(result.model_dump_json(indent=2))
    else:
        _print_result(result)


@cli.command()
@path_option
def update(path: Path) -> None:
    """Apply the allowed dependency updates."""
    try:
        applied = asyncio.run(DependencyChecker(path).update_dependencies())
    except UptodateError as exc:
        raise click.ClickException(str(exc)) from exc

    if not applied:
        click.echo("Nothing to update")
        return
    step(f"Updated {len(applied)} dependencies")
    for update_ in applied:
        click.echo(_format_update(update_))


@cli.command()
@path_option
@click.option("--clear", "action", flag_value="clear", help="Delete all cached data.")
@click.option("--clean", "action", flag_value="clean", help="Remove expired entries.")
@click.option("--stats", "action", flag_value="stats", default=True, help="Show cache statistics.")
def cache(path: Path, action: str) -> None:
    """Inspect or maintain the local cache."""
    store = CacheStore(path)
    if action == "clear":
        store.clear_cache()
        click.echo("✓ Cache cleared")
    elif action == "clean":
        removed = store.clean_expired_entries()
        click.echo(f"✓ Removed {removed} expired entries")
    else:
        stats = store.get_cache_stats()
        click.echo(f"Cached versions:   {stats.version_entries}")
        click.echo(f"Workspace cached:  {'yes' if stats.workspace_cached else 'no'}")
        click.echo(f"Total size:        {stats.total_size} bytes")


@cli.command()
@path_option
def init(path: Path) -> None:
    """Write a sample .uptodate.toml into the project."""
    if (path / CONFIG_FILENAME).exists():
        raise click.ClickException(f"{CONFIG_FILENAME} already exists.")
    try:
        dest = write_sample_config(path)
    except UptodateError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"✓ Wrote {dest}")
