"""Repository configuration module.

Configuration is read from ``REPOKEEPER_*`` environment variables.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from repo_keeper.consumers import (
    CREATE_MISSING_CHECKSUMS,
    REPOSITORY_PURGE,
    UNPROCESSED_CONTENT,
    ArtifactMissingChecksumsConsumer,
    RepositoryPurgeConsumer,
    UnprocessedContentConsumer,
    ValidateChecksumConsumer,
)
from repo_keeper.layout import RepositoryLayout, get_layout
from repo_keeper.models import ManagedRepository, RetentionRule
from repo_keeper.policies import ChecksumOption, FetchPolicy
from repo_keeper.scanner import RepositoryContentConsumers


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    if raw.strip().lower() == "none":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class RepositoryConfig:
    """Managed repository configuration container.

    Attributes:
        repo_id: Repository identifier used in logs and statistics.
        repo_root: Root directory of the managed repository.
        layout: "default" or "legacy".
        scanned: Whether scans visit this repository at all.
        index_dir: Repository-relative directory that consumers never see.
        retention_days: Snapshot age limit in days (None disables it).
        retention_count: Unique snapshots kept per version (None disables it).
        delete_released_snapshots: Remove snapshots whose release exists.
        consumers: Selected known consumer ids, in no particular order.
        invalid_consumers: Selected invalid consumer ids.
        releases_policy: Fetch policy code for release artifacts.
        snapshots_policy: Fetch policy code for snapshot artifacts.
        checksum_policy: "fail", "fix" or "ignore".
        remote_url: Base URL of the proxied remote repository, if any.
        remote_timeout: Remote request timeout in seconds.
    """

    repo_id: str = "internal"
    repo_root: Path = field(default_factory=lambda: Path("repository").resolve())
    layout: str = "default"
    scanned: bool = True
    index_dir: str | None = ".index"

    retention_days: int | None = 100
    retention_count: int | None = 2
    delete_released_snapshots: bool = False

    consumers: list[str] = field(
        default_factory=lambda: [CREATE_MISSING_CHECKSUMS, REPOSITORY_PURGE]
    )
    invalid_consumers: list[str] = field(default_factory=lambda: [UNPROCESSED_CONTENT])

    releases_policy: str = FetchPolicy.ONCE.value
    snapshots_policy: str = FetchPolicy.HOURLY.value
    checksum_policy: str = ChecksumOption.FIX.value
    remote_url: str | None = None
    remote_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "RepositoryConfig":
        """Create configuration from environment variables.

        Environment variables:
            REPOKEEPER_REPO_ID: Repository id (default: "internal")
            REPOKEEPER_REPO_ROOT: Repository root (default: "./repository")
            REPOKEEPER_LAYOUT: "default" or "legacy" (default: "default")
            REPOKEEPER_SCANNED: Scan this repository (default: true)
            REPOKEEPER_INDEX_DIR: Index directory (default: ".index")
            REPOKEEPER_RETENTION_DAYS: Days to keep snapshots (default: 100)
            REPOKEEPER_RETENTION_COUNT: Unique snapshots to keep (default: 2)
            REPOKEEPER_DELETE_RELEASED_SNAPSHOTS: default false
            REPOKEEPER_CONSUMERS: Comma separated known consumer ids
            REPOKEEPER_INVALID_CONSUMERS: Comma separated invalid consumer ids
            REPOKEEPER_RELEASES_POLICY: Fetch policy for releases (default: "once")
            REPOKEEPER_SNAPSHOTS_POLICY: Fetch policy for snapshots (default: "hourly")
            REPOKEEPER_CHECKSUM_POLICY: "fail", "fix" or "ignore" (default: "fix")
            REPOKEEPER_REMOTE_URL: Remote repository base URL
            REPOKEEPER_REMOTE_TIMEOUT: Remote timeout in seconds (default: 30)
        """
        defaults = cls()
        timeout = os.getenv("REPOKEEPER_REMOTE_TIMEOUT")
        try:
            remote_timeout = float(timeout) if timeout else defaults.remote_timeout
        except ValueError:
            raise ValueError(f"REPOKEEPER_REMOTE_TIMEOUT must be a number, got {timeout!r}") from None

        return cls(
            repo_id=os.getenv("REPOKEEPER_REPO_ID", defaults.repo_id),
            repo_root=Path(os.getenv("REPOKEEPER_REPO_ROOT", "repository")).resolve(),
            layout=os.getenv("REPOKEEPER_LAYOUT", defaults.layout).lower(),
            scanned=_env_bool("REPOKEEPER_SCANNED", defaults.scanned),
            index_dir=os.getenv("REPOKEEPER_INDEX_DIR", defaults.index_dir) or None,
            retention_days=_env_int("REPOKEEPER_RETENTION_DAYS", defaults.retention_days),
            retention_count=_env_int("REPOKEEPER_RETENTION_COUNT", defaults.retention_count),
            delete_released_snapshots=_env_bool(
                "REPOKEEPER_DELETE_RELEASED_SNAPSHOTS", defaults.delete_released_snapshots
            ),
            consumers=_env_list("REPOKEEPER_CONSUMERS", defaults.consumers),
            invalid_consumers=_env_list("REPOKEEPER_INVALID_CONSUMERS", defaults.invalid_consumers),
            releases_policy=os.getenv("REPOKEEPER_RELEASES_POLICY", defaults.releases_policy).lower(),
            snapshots_policy=os.getenv("REPOKEEPER_SNAPSHOTS_POLICY", defaults.snapshots_policy).lower(),
            checksum_policy=os.getenv("REPOKEEPER_CHECKSUM_POLICY", defaults.checksum_policy).lower(),
            remote_url=os.getenv("REPOKEEPER_REMOTE_URL") or None,
            remote_timeout=remote_timeout,
        )

    def validate(self) -> None:
        """Validate the configuration.

        Raises:
            ValueError: If a value is out of range or not recognized.
        """
        try:
            get_layout(self.layout)
        except ValueError:
            raise ValueError(f"REPOKEEPER_LAYOUT must be 'default' or 'legacy', got {self.layout!r}") from None
        if self.retention_days is not None and self.retention_days < 0:
            raise ValueError("REPOKEEPER_RETENTION_DAYS must not be negative")
        if self.retention_count is not None and self.retention_count < 1:
            raise ValueError("REPOKEEPER_RETENTION_COUNT must be at least 1")
        for name, code in (
            ("REPOKEEPER_RELEASES_POLICY", self.releases_policy),
            ("REPOKEEPER_SNAPSHOTS_POLICY", self.snapshots_policy),
        ):
            if code not in {p.value for p in FetchPolicy}:
                raise ValueError(f"{name} is not a known fetch policy: {code!r}")
        if self.checksum_policy not in {o.value for o in ChecksumOption}:
            raise ValueError(f"REPOKEEPER_CHECKSUM_POLICY is not fail, fix or ignore: {self.checksum_policy!r}")
        if self.remote_timeout <= 0:
            raise ValueError("REPOKEEPER_REMOTE_TIMEOUT must be positive")

    def retention_rule(self) -> RetentionRule:
        return RetentionRule(
            retention_days=self.retention_days,
            retention_count=self.retention_count,
            delete_released_snapshots=self.delete_released_snapshots,
        )

    def layout_strategy(self) -> RepositoryLayout:
        return get_layout(self.layout)

    def managed_repository(self) -> ManagedRepository:
        return ManagedRepository(
            id=self.repo_id,
            location=self.repo_root,
            layout=self.layout,
            scanned=self.scanned,
            index_dir=self.index_dir,
        )

    def content_consumers(self) -> RepositoryContentConsumers:
        """Register the built-in consumers and select the configured ones.

        Registration order is the call order: checksums are created before
        the purge consumer sees the files.
        """
        return RepositoryContentConsumers(
            available_known=[
                ArtifactMissingChecksumsConsumer(),
                ValidateChecksumConsumer(),
                RepositoryPurgeConsumer(self.retention_rule()),
            ],
            available_invalid=[UnprocessedContentConsumer()],
            selected_known_ids=self.consumers,
            selected_invalid_ids=self.invalid_consumers,
        )
