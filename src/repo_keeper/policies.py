"""Proxy policies: when to refresh cached content and how to vet downloads."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Sequence

from repo_keeper.checksum import CHECKSUM_EXTENSIONS, DEFAULT_ALGORITHMS, ChecksumAlgorithm, ChecksummedFile
from repo_keeper.exceptions import PolicyError, PolicyViolationError
from repo_keeper.models import ProxyFetchDecision
from repo_keeper.versions import is_snapshot


logger = logging.getLogger(__name__)


class FetchPolicy(str, Enum):
    """Policy codes controlling when a cached proxy copy is refreshed."""

    DISABLED = "disabled"
    ONCE = "once"
    HOURLY = "hourly"
    DAILY = "daily"
    ALWAYS = "always"

    @classmethod
    def parse(cls, code: str) -> "FetchPolicy":
        """Resolve a policy code.

        Raises:
            PolicyError: If the code is unknown.
        """
        try:
            return cls(code)
        except ValueError:
            raise PolicyError(f"Unknown fetch policy code: {code!r}") from None


_INTERVALS = {
    FetchPolicy.HOURLY: timedelta(hours=1),
    FetchPolicy.DAILY: timedelta(days=1),
}


def evaluate_policy(code: str, local_file: Path, now: datetime | None = None) -> ProxyFetchDecision:
    """Decide whether a remote fetch should be attempted for a cached file.

    Args:
        code: One of the FetchPolicy codes.
        local_file: Where the cached copy lives (or would live).
        now: Reference time, defaults to the current UTC time.

    Returns:
        The decision together with a short reason.
    """
    try:
        policy = FetchPolicy.parse(code)
    except PolicyError as exc:
        logger.error("%s; refusing to fetch %s", exc, local_file)
        return ProxyFetchDecision(should_fetch=False, reason=str(exc))

    if policy is FetchPolicy.DISABLED:
        return ProxyFetchDecision(should_fetch=False, reason="fetching is disabled")

    try:
        mtime = local_file.stat().st_mtime
    except OSError:
        return ProxyFetchDecision(should_fetch=True, reason="no local copy")

    if policy is FetchPolicy.ALWAYS:
        return ProxyFetchDecision(should_fetch=True, reason="always refresh")
    if policy is FetchPolicy.ONCE:
        return ProxyFetchDecision(should_fetch=False, reason="local copy already fetched once")

    now = now or datetime.now(timezone.utc)
    modified = datetime.fromtimestamp(mtime, tz=timezone.utc)
    if now - _INTERVALS[policy] > modified:
        return ProxyFetchDecision(should_fetch=True, reason=f"local copy older than {policy.value} interval")
    return ProxyFetchDecision(should_fetch=False, reason=f"local copy within {policy.value} interval")


def apply_policy(code: str, local_file: Path, now: datetime | None = None) -> bool:
    """Return True when a remote fetch should be attempted; unknown codes fail closed."""
    return evaluate_policy(code, local_file, now).should_fetch


def _is_metadata(path: str) -> bool:
    name = path.rsplit("/", 1)[-1]
    return name.startswith("maven-metadata") and name.endswith(".xml")


class _UpdatePolicy(ABC):
    """Pre-download check that only concerns one kind of version."""

    id = ""

    def __init__(self, code: str) -> None:
        self.code = code

    @abstractmethod
    def concerns(self, version: str) -> bool:
        """Return True when this policy governs ``version``."""

    def apply(self, path: str, version: str | None, local_file: Path, now: datetime | None = None) -> None:
        """Check whether ``path`` may be fetched.

        Metadata and versions outside this policy's concern always pass.

        Raises:
            PolicyViolationError: If the policy declines the fetch.
        """
        if _is_metadata(path) or version is None or not self.concerns(version):
            return
        decision = evaluate_policy(self.code, local_file, now)
        if not decision.should_fetch:
            raise PolicyViolationError(
                f"{self.id} policy '{self.code}' declined fetch of {path}: {decision.reason}"
            )


class ReleasesPolicy(_UpdatePolicy):
    id = "releases"

    def concerns(self, version: str) -> bool:
        return not is_snapshot(version)


class SnapshotsPolicy(_UpdatePolicy):
    id = "snapshots"

    def concerns(self, version: str) -> bool:
        return is_snapshot(version)


class ChecksumOption(str, Enum):
    FAIL = "fail"
    FIX = "fix"
    IGNORE = "ignore"


class ChecksumPolicy:
    """Post-download check of a fetched file against its checksum sidecars.

    Attributes:
        option: ``fail`` removes the download when no sidecar validates it,
            ``fix`` rewrites bad or missing sidecars, ``ignore`` accepts anything.
        algorithms: Sidecars that are consulted and, for ``fix``, written.
    """

    id = "checksum"

    def __init__(
        self,
        option: ChecksumOption | str = ChecksumOption.FIX,
        algorithms: Sequence[ChecksumAlgorithm] = DEFAULT_ALGORITHMS,
    ) -> None:
        try:
            self.option = ChecksumOption(option)
        except ValueError:
            raise PolicyError(f"Unknown checksum policy option: {option!r}") from None
        self.algorithms = tuple(algorithms)

    def apply(self, local_file: Path) -> None:
        """Vet a downloaded file.

        Raises:
            PolicyViolationError: For ``fail`` when the file does not validate
                (it has been deleted along with its sidecars), or for ``fix``
                when the sidecars could not be repaired.
        """
        if self.option is ChecksumOption.IGNORE:
            return
        if local_file.suffix.lstrip(".") in CHECKSUM_EXTENSIONS:
            return

        checksummed = ChecksummedFile(local_file)
        if checksummed.is_valid_checksums(self.algorithms):
            return

        if self.option is ChecksumOption.FAIL:
            for path in [local_file, *(checksummed.checksum_path(a) for a in self.algorithms)]:
                path.unlink(missing_ok=True)
            raise PolicyViolationError(f"Checksums do not validate {local_file.name}; file removed")

        if not checksummed.fix_checksums(self.algorithms):
            raise PolicyViolationError(f"Unable to fix checksums for {local_file.name}")
        logger.info("Fixed checksums for %s", local_file)
