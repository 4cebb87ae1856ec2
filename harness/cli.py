"""Operator CLI for the workspace cache.

Usage:
    harness cache status
    harness cache list
    harness cache clean [--all] [--older-than N]
    harness cache ensure OWNER/NAME --url URL --branch BRANCH --last-commit ISO
    harness cache remove OWNER/NAME
    harness cache warm [--registry PATH] [--workers N]
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, NoReturn

import typer
from pydantic import ValidationError

from harness.core.config import settings
from harness.schemas.cache import EnsureOutcome
from harness.schemas.repository import RemoteDescriptor, RepositoryIdentity
from harness.services.batch import warm_cache
from harness.services.eviction import EvictionPolicy
from harness.services.registry import RegistryError, RepositoryRegistry
from harness.services.repo_cache import RepoCache, SyncFailure

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="harness",
    help="Test harness for running analysis tools against real-world repositories.",
    no_args_is_help=True,
)
cache_app = typer.Typer(help="Manage the cloned repo cache.", no_args_is_help=True)
app.add_typer(cache_app, name="cache")


CacheRootOption = Annotated[
    Path | None,
    typer.Option("--cache-root", help="Cache directory (default: HARNESS_CACHE_ROOT)"),
]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
) -> None:
    """Configure logging for every command."""
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s: %(name)s: %(message)s")


def _exit_with_error(message: str, code: int = 1) -> NoReturn:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _parse_identity(repo: str) -> RepositoryIdentity:
    try:
        return RepositoryIdentity.parse(repo)
    except ValueError as e:
        _exit_with_error(str(e))


def _format_mb(size_bytes: int) -> str:
    return f"{size_bytes / 1024 / 1024:.1f} MB"


@cache_app.command()
def status(cache_root: CacheRootOption = None) -> None:
    """Show cache statistics."""
    stats = RepoCache(cache_root=cache_root).get_stats()

    typer.secho("\nCache Statistics:\n", bold=True)
    typer.echo(f"  Total repos: {stats.total_repos}")
    typer.echo(f"  Total size: {_format_mb(stats.total_size_bytes)}")
    if stats.oldest_entry:
        typer.echo(f"  Oldest: {stats.oldest_entry.date().isoformat()}")
    if stats.newest_entry:
        typer.echo(f"  Newest: {stats.newest_entry.date().isoformat()}")


@cache_app.command("list")
def list_entries(cache_root: CacheRootOption = None) -> None:
    """List cached repos."""
    entries = list(RepoCache(cache_root=cache_root).list_entries())
    if not entries:
        typer.secho("Cache is empty", fg=typer.colors.YELLOW)
        return

    for entry in entries:
        typer.echo(
            f"  {entry.full_name}  "
            f"{_format_mb(entry.size_bytes)}  "
            f"updated {entry.last_updated.strftime('%Y-%m-%d %H:%M')}"
        )


@cache_app.command()
def clean(
    all_: Annotated[bool, typer.Option("--all", help="Remove all cached repos")] = False,
    older_than: Annotated[
        int | None,
        typer.Option("--older-than", min=0, help="Remove repos older than N days"),
    ] = None,
    cache_root: CacheRootOption = None,
) -> None:
    """Clean cached repos."""
    policy = EvictionPolicy(RepoCache(cache_root=cache_root))

    report = policy.sweep_all() if all_ else policy.sweep(older_than)

    typer.secho(f"Removed {report.removed} repos from cache", fg=typer.colors.GREEN)
    if report.failed:
        typer.secho(
            f"Could not remove {len(report.failed)} repos: {', '.join(report.failed)}",
            fg=typer.colors.YELLOW,
        )


@cache_app.command()
def ensure(
    repo: Annotated[str, typer.Argument(help="Repository as owner/name")],
    url: Annotated[str, typer.Option("--url", help="Clone URL")],
    branch: Annotated[str, typer.Option("--branch", help="Default branch")] = "main",
    last_commit: Annotated[
        datetime | None,
        typer.Option("--last-commit", help="Remote last-commit time (ISO 8601); default now"),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", min=1, help="Seconds per git operation"),
    ] = None,
    cache_root: CacheRootOption = None,
) -> None:
    """Clone or refresh one repo and print its path."""
    identity = _parse_identity(repo)
    try:
        descriptor = RemoteDescriptor(
            owner=identity.owner,
            name=identity.name,
            url=url,
            default_branch=branch,
            last_commit=last_commit or datetime.now(timezone.utc),
        )
    except ValidationError as e:
        _exit_with_error(str(e))

    try:
        result = RepoCache(cache_root=cache_root).ensure_detailed(descriptor, timeout=timeout)
    except SyncFailure as e:
        _exit_with_error(str(e))

    if result.outcome is EnsureOutcome.STALE_RETAINED:
        typer.secho("Update failed, using stale copy", fg=typer.colors.YELLOW, err=True)
    typer.echo(f"{result.outcome.value}: {result.path}")


@cache_app.command()
def remove(
    repo: Annotated[str, typer.Argument(help="Repository as owner/name")],
    cache_root: CacheRootOption = None,
) -> None:
    """Remove one repo from the cache."""
    identity = _parse_identity(repo)
    if RepoCache(cache_root=cache_root).remove(identity):
        typer.secho(f"Removed {identity.full_name}", fg=typer.colors.GREEN)
    else:
        typer.secho(f"{identity.full_name} is not cached", fg=typer.colors.YELLOW)


@cache_app.command()
def warm(
    registry: Annotated[
        Path | None,
        typer.Option("--registry", help="Registry JSON (default: HARNESS_REGISTRY_PATH)"),
    ] = None,
    workers: Annotated[
        int | None,
        typer.Option("--workers", min=1, help="Parallel clones"),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", min=1, help="Seconds per git operation"),
    ] = None,
    cache_root: CacheRootOption = None,
) -> None:
    """Clone or refresh every repo in the registry."""
    try:
        descriptors = RepositoryRegistry(registry).load()
    except RegistryError as e:
        _exit_with_error(str(e))

    if not descriptors:
        typer.secho("No repos in registry.", fg=typer.colors.YELLOW)
        return

    typer.secho(f"Warming cache for {len(descriptors)} repos...", fg=typer.colors.CYAN)
    report = warm_cache(
        RepoCache(cache_root=cache_root),
        descriptors,
        max_workers=workers,
        timeout=timeout,
    )

    typer.secho(
        f"Ready: {len(report.results)} "
        f"(cloned {report.count(EnsureOutcome.CLONED)}, "
        f"updated {report.count(EnsureOutcome.UPDATED)}, "
        f"reused {report.count(EnsureOutcome.REUSED)}, "
        f"stale {report.count(EnsureOutcome.STALE_RETAINED)})",
        fg=typer.colors.GREEN,
    )
    for full_name, message in sorted(report.failures.items()):
        typer.secho(f"  Failed {full_name}: {message}", fg=typer.colors.RED)

    if report.failures:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
