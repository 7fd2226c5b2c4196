"""Pydantic models for artifacts, consumers, retention and scan results."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from repo_keeper.versions import get_base_version, is_snapshot, version_sort_key


class ArtifactCoordinate(BaseModel):
    """Maven artifact coordinates (groupId, artifactId, version, classifier, type)."""

    model_config = ConfigDict(frozen=True)

    group_id: str = Field(..., min_length=1)
    artifact_id: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    classifier: str = ""
    type: str = Field(default="jar", min_length=1)

    @field_validator("classifier", mode="before")
    @classmethod
    def _empty_classifier(cls, value: str | None) -> str:
        return value or ""

    @property
    def base_version(self) -> str:
        return get_base_version(self.version)

    @property
    def is_snapshot(self) -> bool:
        return is_snapshot(self.version)

    def compact(self) -> str:
        """Return a compact string representation.

        Returns:
            A string like `groupId:artifactId:version[:classifier]:type`.
        """
        parts = [self.group_id, self.artifact_id, self.version]
        if self.classifier:
            parts.append(self.classifier)
        parts.append(self.type)
        return ":".join(parts)


class ConsumerDescriptor(BaseModel):
    """Registration data for a repository content consumer."""

    id: str = Field(..., min_length=1)
    description: str = ""
    includes: list[str] = Field(default_factory=list)
    excludes: list[str] = Field(default_factory=list)
    process_unmodified: bool = False
    permanent: bool = False


class ManagedRepository(BaseModel):
    """A repository hosted on the local filesystem."""

    id: str = Field(..., min_length=1)
    location: Path
    layout: str = "default"
    scanned: bool = True
    index_dir: str | None = None


class RetentionRule(BaseModel):
    """Retention parameters for one managed repository.

    A version is purged when it is older than ``retention_days`` or ranks
    beyond ``retention_count``; either criterion is enough.
    """

    retention_days: int | None = Field(default=None, ge=0)
    retention_count: int | None = Field(default=None, ge=1)
    delete_released_snapshots: bool = False

    @property
    def has_effect(self) -> bool:
        return (
            self.retention_days is not None
            or self.retention_count is not None
            or self.delete_released_snapshots
        )


class ConsumerFailure(BaseModel):
    """A failed ``process`` call recorded during a scan."""

    consumer_id: str
    path: str
    message: str


class ScanStatistics(BaseModel):
    """Counters accumulated by one scan session."""

    repository_id: str
    consumer_ids: list[str] = Field(default_factory=list)
    files_visited: int = 0
    new_or_changed_files: int = 0
    total_size: int = 0
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: datetime | None = None
    cancelled: bool = False
    consumer_failures: list[ConsumerFailure] = Field(default_factory=list)

    @property
    def elapsed(self) -> float:
        """Seconds between scan start and end (or now while scanning)."""
        end = self.end_time or datetime.now(timezone.utc)
        return (end - self.start_time).total_seconds()

    def to_dump(self) -> str:
        lines = [
            f"Repository: {self.repository_id}",
            f"Consumers: {', '.join(self.consumer_ids) or '(none)'}",
            f"Files visited: {self.files_visited}",
            f"New or changed: {self.new_or_changed_files}",
            f"Total size: {self.total_size} bytes",
            f"Elapsed: {self.elapsed:.3f}s",
        ]
        if self.cancelled:
            lines.append("Scan was cancelled")
        if self.consumer_failures:
            lines.append(f"Consumer failures: {len(self.consumer_failures)}")
        return "\n".join(lines)


class ProxyFetchDecision(BaseModel):
    """Outcome of evaluating a fetch policy against a cached file."""

    model_config = ConfigDict(frozen=True)

    should_fetch: bool
    reason: str = ""


class ArtifactMetadata(BaseModel):
    """The content of a maven-metadata.xml file."""

    group_id: str = Field(..., min_length=1)
    artifact_id: str = Field(..., min_length=1)
    version: str | None = None
    latest: str | None = None
    release: str | None = None
    versions: list[str] = Field(default_factory=list)
    last_updated: str | None = None
    snapshot_timestamp: str | None = None
    snapshot_build_number: int | None = None

    @model_validator(mode="after")
    def _unique_versions(self) -> "ArtifactMetadata":
        seen: list[str] = []
        for v in self.versions:
            if v not in seen:
                seen.append(v)
        self.versions = seen
        return self

    def add_version(self, version: str, now: datetime | None = None) -> None:
        """Register a version and refresh ``latest``, ``release`` and ``last_updated``."""
        if version not in self.versions:
            self.versions.append(version)
        self._recompute(now)

    def remove_version(self, version: str, now: datetime | None = None) -> bool:
        """Drop a version from the listing.

        Returns:
            True when the version was listed.
        """
        if version not in self.versions:
            return False
        self.versions.remove(version)
        self._recompute(now)
        return True

    def update_snapshot(self, timestamp: str, build_number: int, now: datetime | None = None) -> None:
        """Record the newest unique snapshot, keeping the highest build number."""
        if self.snapshot_build_number is not None and build_number < self.snapshot_build_number:
            return
        self.snapshot_timestamp = timestamp
        self.snapshot_build_number = build_number
        self.last_updated = _stamp(now)

    def _recompute(self, now: datetime | None) -> None:
        self.versions.sort(key=version_sort_key)
        self.latest = self.versions[-1] if self.versions else None
        releases = [v for v in self.versions if not is_snapshot(v)]
        self.release = releases[-1] if releases else None
        self.last_updated = _stamp(now)


def _stamp(now: datetime | None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")


class ProjectDependency(BaseModel):
    """A dependency entry of a project model."""

    group_id: str = Field(..., min_length=1)
    artifact_id: str = Field(..., min_length=1)
    version: str | None = None
    type: str = "jar"
    scope: str | None = None
    optional: bool | None = None


class ProjectModel(BaseModel):
    """The parts of a POM the repository needs; Maven 1 models included."""

    model_version: str
    group_id: str = Field(..., min_length=1)
    artifact_id: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    packaging: str = "jar"
    name: str | None = None
    description: str | None = None
    url: str | None = None
    dependencies: list[ProjectDependency] = Field(default_factory=list)

    @property
    def is_maven1(self) -> bool:
        return self.model_version != "4.0.0"
