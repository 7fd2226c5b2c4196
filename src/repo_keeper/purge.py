"""Retention evaluation: decide which snapshot files to delete, and delete them.

Only snapshot versions are ever purged. A unique snapshot is judged by the
timestamp in its filename and by its rank among the unique snapshots of the
same base version; a generic ``-SNAPSHOT`` file is judged by its filesystem
mtime alone. Every file is decided on its own, so the POM and the JAR of one
version can end up with different outcomes.

Purges are not self-locking; callers must not run two passes over the same
repository at once.
"""

from __future__ import annotations

import logging
import shutil
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from repo_keeper.exceptions import LayoutParseError, MetadataNotFoundError, MetadataParseError
from repo_keeper.layout import DefaultLayout, RepositoryLayout, get_layout
from repo_keeper.metadata import METADATA_FILENAME, read_metadata, write_metadata
from repo_keeper.models import ArtifactCoordinate, RetentionRule
from repo_keeper.versions import get_release_version, parse_unique_snapshot


logger = logging.getLogger(__name__)

COMPANION_EXTENSIONS: tuple[str, ...] = ("md5", "sha1", "sha256", "sha512", "asc")


@dataclass
class PurgeResult:
    """Files removed (and not removed) by one purge pass, repository-relative."""

    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def extend(self, other: "PurgeResult") -> None:
        self.deleted.extend(other.deleted)
        self.failed.extend(other.failed)


@dataclass(frozen=True)
class _ArtifactFile:
    path: Path
    coordinate: ArtifactCoordinate


def _is_companion(path: Path) -> bool:
    return path.suffix.lstrip(".").lower() in COMPANION_EXTENSIONS


class RepositoryPurge:
    """Apply a RetentionRule to the versions of one (groupId, artifactId).

    Args:
        repository_root: Root directory of the managed repository.
        layout: Layout strategy or name used to read artifact paths.
        rule: Retention parameters.
        now: Reference time, defaults to the current UTC time.
    """

    def __init__(
        self,
        repository_root: str | Path,
        rule: RetentionRule,
        layout: RepositoryLayout | str = "default",
        now: datetime | None = None,
    ) -> None:
        self.repository_root = Path(repository_root)
        self.rule = rule
        self.layout = get_layout(layout) if isinstance(layout, str) else layout
        self.now = now

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.repository_root).as_posix()

    def project_directory(self, coordinate: ArtifactCoordinate) -> Path:
        """Directory holding every version of the coordinate's project."""
        if isinstance(self.layout, DefaultLayout):
            return self.repository_root / coordinate.group_id.replace(".", "/") / coordinate.artifact_id
        return self.repository_root / coordinate.group_id

    def _project_artifacts(self, coordinate: ArtifactCoordinate) -> list[_ArtifactFile]:
        project_dir = self.project_directory(coordinate)
        if not project_dir.is_dir():
            return []
        found: list[_ArtifactFile] = []
        for path in sorted(project_dir.glob("*/*")):
            if not path.is_file() or _is_companion(path) or path.name.startswith("maven-metadata"):
                continue
            try:
                other = self.layout.to_coordinate(self._relative(path))
            except LayoutParseError:
                continue
            if other.group_id == coordinate.group_id and other.artifact_id == coordinate.artifact_id:
                found.append(_ArtifactFile(path, other))
        return found

    def _delete(self, path: Path, result: PurgeResult) -> None:
        """Delete a file and its companion checksum and signature files."""
        targets = [path, *(path.with_name(f"{path.name}.{ext}") for ext in COMPANION_EXTENSIONS)]
        for target in targets:
            if not target.exists():
                continue
            relative = self._relative(target)
            try:
                target.unlink()
            except OSError as exc:
                logger.warning("Unable to delete %s: %s", target, exc)
                result.failed.append(relative)
                continue
            logger.info("Purged %s", relative)
            result.deleted.append(relative)

    def process(self, relative_path: str) -> PurgeResult:
        """Evaluate the project the given artifact path belongs to.

        Args:
            relative_path: Any artifact path of the project, repository-relative.

        Raises:
            LayoutParseError: If the path is not an artifact path for the layout.

        Returns:
            The files that were deleted or could not be deleted.
        """
        coordinate = self.layout.to_coordinate(relative_path)
        result = PurgeResult()
        if not self.rule.has_effect:
            return result

        artifacts = self._project_artifacts(coordinate)
        if self.rule.delete_released_snapshots:
            artifacts = self._delete_released_snapshots(coordinate, artifacts, result)
        if self.rule.retention_days is not None or self.rule.retention_count is not None:
            for artifact in self.select_expired(artifacts):
                self._delete(artifact.path, result)
        return result

    def select_expired(self, artifacts: list[_ArtifactFile]) -> list[_ArtifactFile]:
        """Pick the snapshot files the retention rule condemns.

        Returns:
            Files to delete, in input order.
        """
        now = self.now or datetime.now(timezone.utc)
        cutoff = None
        if self.rule.retention_days is not None:
            cutoff = now - timedelta(days=self.rule.retention_days)

        unique_by_release: dict[str, set[str]] = defaultdict(set)
        for artifact in artifacts:
            if parse_unique_snapshot(artifact.coordinate.version) is not None:
                unique_by_release[get_release_version(artifact.coordinate.version)].add(
                    artifact.coordinate.version
                )

        beyond_count: set[str] = set()
        if self.rule.retention_count is not None:
            for versions in unique_by_release.values():
                newest_first = sorted(versions, key=_snapshot_order, reverse=True)
                beyond_count.update(newest_first[self.rule.retention_count :])

        expired: list[_ArtifactFile] = []
        for artifact in artifacts:
            version = artifact.coordinate.version
            unique = parse_unique_snapshot(version)
            if unique is not None:
                too_old = cutoff is not None and unique.timestamp < cutoff
                if too_old or version in beyond_count:
                    expired.append(artifact)
            elif artifact.coordinate.is_snapshot and cutoff is not None:
                try:
                    mtime = artifact.path.stat().st_mtime
                except OSError as exc:
                    logger.warning("Skipping %s: %s", artifact.path, exc)
                    continue
                modified = datetime.fromtimestamp(mtime, tz=timezone.utc)
                if modified < cutoff:
                    expired.append(artifact)
        return expired

    def _delete_released_snapshots(
        self,
        coordinate: ArtifactCoordinate,
        artifacts: list[_ArtifactFile],
        result: PurgeResult,
    ) -> list[_ArtifactFile]:
        """Remove snapshots whose release has been published.

        Returns:
            The artifacts that are left.
        """
        releases = {a.coordinate.version for a in artifacts if not a.coordinate.is_snapshot}
        released: set[str] = set()
        remaining: list[_ArtifactFile] = []
        for artifact in artifacts:
            c = artifact.coordinate
            if c.is_snapshot and get_release_version(c.version) in releases:
                released.add(c.base_version)
                self._delete(artifact.path, result)
            else:
                remaining.append(artifact)

        if released and isinstance(self.layout, DefaultLayout):
            project_dir = self.project_directory(coordinate)
            for base_version in sorted(released):
                version_dir = project_dir / base_version
                for leftover in sorted(p for p in version_dir.glob("*") if p.is_file()):
                    self._delete(leftover, result)
                try:
                    shutil.rmtree(version_dir)
                except OSError as exc:
                    logger.warning("Unable to remove %s: %s", version_dir, exc)
                    result.failed.append(self._relative(version_dir))
            self._update_project_metadata(project_dir / METADATA_FILENAME, released)
        return remaining

    def _update_project_metadata(self, path: Path, removed_versions: set[str]) -> None:
        try:
            metadata = read_metadata(path)
        except MetadataNotFoundError:
            return
        except MetadataParseError as exc:
            logger.warning("Not updating %s: %s", path, exc)
            return
        changed = False
        for version in sorted(removed_versions):
            changed = metadata.remove_version(version, self.now) or changed
        if changed:
            write_metadata(path, metadata)
            logger.info("Removed %s from %s", ", ".join(sorted(removed_versions)), self._relative(path))


def _snapshot_order(version: str) -> tuple[datetime, int]:
    unique = parse_unique_snapshot(version)
    if unique is None:
        return (datetime.min.replace(tzinfo=timezone.utc), 0)
    return (unique.timestamp, unique.build_number)
