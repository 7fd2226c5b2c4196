"""Typer CLI entry point for RepoKeeper."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from repo_keeper.checksum import DEFAULT_ALGORITHMS, ChecksumAlgorithm, ChecksummedFile
from repo_keeper.config import RepositoryConfig
from repo_keeper.consumers import (
    LEGACY_CONVERTER,
    REPOSITORY_PURGE,
    LegacyConverterConsumer,
    RepositoryPurgeConsumer,
)
from repo_keeper.exceptions import ChecksumValidationError, RepoKeeperError
from repo_keeper.layout import get_layout
from repo_keeper.models import ArtifactCoordinate, ManagedRepository, ScanStatistics
from repo_keeper.policies import ChecksumPolicy, ReleasesPolicy, SnapshotsPolicy, evaluate_policy
from repo_keeper.proxy import ProxyConnector, RemoteRepository
from repo_keeper.scanner import RepositoryContentConsumers

app = typer.Typer(add_completion=False, help="Maintain Maven-style artifact repositories.")
console = Console()


def _setup_logging(verbose: bool) -> None:
    """Setup logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _config() -> RepositoryConfig:
    config = RepositoryConfig.from_env()
    config.validate()
    return config


def _fail(exc: Exception) -> typer.Exit:
    console.print(f"[bold red]Error:[/bold red] {exc}")
    return typer.Exit(code=1)


def _print_stats(stats: ScanStatistics) -> None:
    table = Table(title=f"Scan of {stats.repository_id}")
    table.add_column("Statistic")
    table.add_column("Value", justify="right")
    table.add_row("Consumers", ", ".join(stats.consumer_ids) or "(none)")
    table.add_row("Files visited", str(stats.files_visited))
    table.add_row("New or changed", str(stats.new_or_changed_files))
    table.add_row("Total size (bytes)", str(stats.total_size))
    table.add_row("Elapsed (s)", f"{stats.elapsed:.3f}")
    table.add_row("Consumer failures", str(len(stats.consumer_failures)))
    console.print(table)
    for failure in stats.consumer_failures:
        console.print(f"[yellow]{failure.consumer_id}[/yellow] {failure.path}: {failure.message}")


@app.callback()
def _main(
    verbose: Annotated[bool, typer.Option("-v", "--verbose", help="Enable debug logging.")] = False,
) -> None:
    _setup_logging(verbose)


@app.command()
def resolve(
    path: Annotated[str, typer.Argument(help="Repository-relative artifact path.")],
    layout: Annotated[str, typer.Option("--layout", help="default or legacy.")] = "default",
) -> None:
    """Parse an artifact path into its coordinates."""
    try:
        coordinate = get_layout(layout).to_coordinate(path)
    except (RepoKeeperError, ValueError) as exc:
        raise _fail(exc) from None

    table = Table(title=path)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("groupId", coordinate.group_id)
    table.add_row("artifactId", coordinate.artifact_id)
    table.add_row("version", coordinate.version)
    table.add_row("baseVersion", coordinate.base_version)
    table.add_row("classifier", coordinate.classifier or "-")
    table.add_row("type", coordinate.type)
    console.print(table)


@app.command("path")
def path_command(
    group_id: Annotated[str, typer.Argument(help="groupId")],
    artifact_id: Annotated[str, typer.Argument(help="artifactId")],
    version: Annotated[str, typer.Argument(help="version")],
    classifier: Annotated[str, typer.Option("--classifier")] = "",
    type_: Annotated[str, typer.Option("--type")] = "jar",
    layout: Annotated[str, typer.Option("--layout", help="default or legacy.")] = "default",
) -> None:
    """Print the repository path of a coordinate."""
    try:
        coordinate = ArtifactCoordinate(
            group_id=group_id,
            artifact_id=artifact_id,
            version=version,
            classifier=classifier,
            type=type_,
        )
        console.print(get_layout(layout).path_of(coordinate))
    except (RepoKeeperError, ValueError) as exc:
        raise _fail(exc) from None


@app.command()
def scan(
    root: Annotated[Path | None, typer.Argument(help="Repository root (default: REPOKEEPER_REPO_ROOT).")] = None,
    since: Annotated[int, typer.Option("--since", help="Only process files changed since EPOCH_MS.")] = 0,
    consumer: Annotated[
        list[str] | None, typer.Option("--consumer", help="Known consumer id; repeatable.")
    ] = None,
) -> None:
    """Scan a repository with the configured consumers."""
    try:
        config = _config()
        if root is not None:
            config.repo_root = root.resolve()
        if consumer:
            config.consumers = consumer
        stats = config.content_consumers().scan(config.managed_repository(), changes_since=since)
    except (RepoKeeperError, ValueError) as exc:
        raise _fail(exc) from None
    _print_stats(stats)


@app.command()
def purge(
    root: Annotated[Path | None, typer.Argument(help="Repository root (default: REPOKEEPER_REPO_ROOT).")] = None,
    days: Annotated[int | None, typer.Option("--days", help="Retention period in days.")] = None,
    count: Annotated[int | None, typer.Option("--count", help="Unique snapshots to keep.")] = None,
    delete_released: Annotated[
        bool, typer.Option("--delete-released", help="Delete snapshots that have been released.")
    ] = False,
) -> None:
    """Purge expired snapshots from a repository."""
    try:
        config = _config()
        if root is not None:
            config.repo_root = root.resolve()
        if days is not None:
            config.retention_days = days
        if count is not None:
            config.retention_count = count
        config.delete_released_snapshots = config.delete_released_snapshots or delete_released
        config.validate()

        purge_consumer = RepositoryPurgeConsumer(config.retention_rule())
        consumers = RepositoryContentConsumers([purge_consumer], selected_known_ids=[REPOSITORY_PURGE])
        consumers.scan(config.managed_repository())
    except (RepoKeeperError, ValueError) as exc:
        raise _fail(exc) from None

    result = purge_consumer.result
    if not result.deleted and not result.failed:
        console.print("[dim]Nothing to purge.[/dim]")
        return
    table = Table(title="Purged files")
    table.add_column("#", style="dim", width=6)
    table.add_column("Path")
    for i, deleted in enumerate(result.deleted, start=1):
        table.add_row(str(i), deleted)
    console.print(table)
    for failed in result.failed:
        console.print(f"[yellow]Could not delete[/yellow] {failed}")
    if result.failed:
        raise typer.Exit(code=1)


@app.command()
def checksum(
    file: Annotated[Path, typer.Argument(help="Content file whose sidecars are checked.")],
    algorithm: Annotated[
        list[str] | None, typer.Option("--algorithm", help="md5, sha1, sha256 or sha512; repeatable.")
    ] = None,
    fix: Annotated[bool, typer.Option("--fix", help="Rewrite missing or wrong sidecars.")] = False,
) -> None:
    """Validate (or repair) the checksum files of FILE."""
    try:
        algorithms = [ChecksumAlgorithm(a.lower()) for a in algorithm] if algorithm else list(DEFAULT_ALGORITHMS)
    except ValueError as exc:
        raise _fail(exc) from None

    checksummed = ChecksummedFile(file)
    if fix and not checksummed.fix_checksums(algorithms):
        raise _fail(RepoKeeperError(f"Unable to fix checksums for {file}"))

    table = Table(title=str(file))
    table.add_column("Algorithm")
    table.add_column("Status")
    ok = True
    for alg in algorithms:
        try:
            valid = checksummed.is_valid_checksum(alg)
            status = "[green]valid[/green]" if valid else "[red]mismatch[/red]"
        except ChecksumValidationError as exc:
            valid = False
            status = f"[red]{exc.kind.value}[/red]"
        ok = ok and valid
        table.add_row(alg.value, status)
    console.print(table)
    if not ok:
        raise typer.Exit(code=1)


@app.command()
def convert(
    source: Annotated[Path, typer.Argument(help="Legacy repository root.")],
    target: Annotated[Path, typer.Argument(help="Default-layout repository root.")],
    force: Annotated[bool, typer.Option("--force", help="Overwrite differing target files.")] = False,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Report without writing.")] = False,
) -> None:
    """Convert a legacy repository into a default-layout repository."""
    converter = LegacyConverterConsumer(target, force=force, dry_run=dry_run)
    consumers = RepositoryContentConsumers([converter], selected_known_ids=[LEGACY_CONVERTER])
    repository = ManagedRepository(id="legacy-source", location=source, layout="legacy")
    try:
        stats = consumers.scan(repository)
    except RepoKeeperError as exc:
        raise _fail(exc) from None

    converted = sum(1 for r in converter.results if r.converted)
    verb = "Would convert" if dry_run else "Converted"
    console.print(f"[green]{verb}[/green] {converted}/{len(converter.results)} artifact(s) into [bold]{target}[/bold].")
    for result in converter.results:
        for warning in result.warnings:
            console.print(f"[yellow]{result.source_path}[/yellow]: {warning}")
    for failure in stats.consumer_failures:
        console.print(f"[bold red]Error:[/bold red] {failure.path}: {failure.message}")
    if stats.consumer_failures:
        raise typer.Exit(code=1)


@app.command()
def policy(
    code: Annotated[str, typer.Argument(help="disabled, once, hourly, daily or always.")],
    file: Annotated[Path, typer.Argument(help="Cached copy (need not exist).")],
) -> None:
    """Show whether a remote fetch would be attempted for FILE."""
    decision = evaluate_policy(code, file)
    verdict = "[green]fetch[/green]" if decision.should_fetch else "[yellow]skip[/yellow]"
    console.print(f"{verdict} ({decision.reason})")


@app.command()
def fetch(
    path: Annotated[str, typer.Argument(help="Repository-relative path to fetch.")],
    remote: Annotated[str | None, typer.Option("--remote", help="Remote repository base URL.")] = None,
) -> None:
    """Fetch PATH from the remote repository into the managed repository."""
    try:
        config = _config()
        url = remote or config.remote_url
        if not url:
            raise ValueError("No remote repository: pass --remote or set REPOKEEPER_REMOTE_URL")
        connector = ProxyConnector(
            managed_root=config.repo_root,
            layout=config.layout,
            remotes=[RemoteRepository("remote", url, timeout=config.remote_timeout)],
            releases_policy=ReleasesPolicy(config.releases_policy),
            snapshots_policy=SnapshotsPolicy(config.snapshots_policy),
            checksum_policy=ChecksumPolicy(config.checksum_policy),
            consumers=config.content_consumers(),
            repository_id=config.repo_id,
        )
        try:
            local = connector.fetch(path)
        finally:
            connector.close()
    except (RepoKeeperError, ValueError) as exc:
        raise _fail(exc) from None

    if local is None:
        raise _fail(RepoKeeperError(f"Not found: {path}"))
    console.print(f"[green]Available[/green] {local}")


def main() -> None:
    """Console-script entry point."""
    app()
