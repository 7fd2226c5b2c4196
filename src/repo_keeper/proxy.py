"""Fetch artifacts from remote repositories into a managed repository using httpx."""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Sequence

import httpx

from repo_keeper.checksum import DEFAULT_ALGORITHMS
from repo_keeper.exceptions import LayoutParseError, PolicyViolationError, RemoteFetchError
from repo_keeper.layout import RepositoryLayout, get_layout
from repo_keeper.models import ManagedRepository
from repo_keeper.policies import ChecksumPolicy, ReleasesPolicy, SnapshotsPolicy
from repo_keeper.scanner import RepositoryContentConsumers


logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class RemoteRepository:
    """A remote repository reachable over HTTP(S).

    Args:
        id: Identifier used in log messages.
        url: Base URL; artifact paths are appended to it.
        timeout: Request timeout in seconds.
        client: Optional preconfigured client (tests pass one with a MockTransport).
    """

    def __init__(
        self,
        id: str,
        url: str,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.id = id
        self.url = url.rstrip("/") + "/"
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def url_for(self, path: str) -> str:
        return self.url + path.lstrip("/")

    def download(self, path: str, destination: Path) -> bool:
        """Stream ``path`` into ``destination``.

        Raises:
            RemoteFetchError: On transport errors or a non-404 error status.

        Returns:
            False when the remote does not have the file.
        """
        url = self.url_for(path)
        try:
            with self.client.stream("GET", url) as response:
                if response.status_code == 404:
                    logger.debug("%s: not found at %s", self.id, url)
                    return False
                response.raise_for_status()
                with destination.open("wb") as fh:
                    for chunk in response.iter_bytes(_CHUNK_SIZE):
                        fh.write(chunk)
        except httpx.HTTPStatusError as exc:
            raise RemoteFetchError(
                f"{self.id}: HTTP {exc.response.status_code} fetching {url}"
            ) from exc
        except (httpx.HTTPError, OSError) as exc:
            raise RemoteFetchError(f"{self.id}: failed to fetch {url}: {exc}") from exc
        return True

    def get(self, path: str) -> bytes | None:
        """Fetch ``path`` into memory; None when the remote answers 404."""
        url = self.url_for(path)
        try:
            response = self.client.get(url)
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RemoteFetchError(
                f"{self.id}: HTTP {exc.response.status_code} fetching {url}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteFetchError(f"{self.id}: failed to fetch {url}: {exc}") from exc
        return response.content

    def close(self) -> None:
        if self._owns_client:
            self.client.close()


class ProxyConnector:
    """Serve managed repository paths, fetching from remotes when policies allow.

    Pre-download policies are evaluated against the cached copy before any
    network traffic. Remotes are tried in order; the first one that has the
    file and passes the checksum policy wins.

    Args:
        managed_root: Root of the managed repository that caches downloads.
        layout: Layout strategy or name of the managed repository.
        remotes: Remote repositories, in the order they are tried.
        releases_policy: Pre-download policy for release versions.
        snapshots_policy: Pre-download policy for snapshot versions.
        checksum_policy: Post-download policy for fetched files.
        consumers: Consumers run over each newly fetched file.
        repository_id: Identifier of the managed repository.
        now: Reference time for the update policies.
    """

    def __init__(
        self,
        managed_root: str | Path,
        layout: RepositoryLayout | str,
        remotes: Sequence[RemoteRepository],
        releases_policy: ReleasesPolicy,
        snapshots_policy: SnapshotsPolicy,
        checksum_policy: ChecksumPolicy,
        consumers: RepositoryContentConsumers | None = None,
        repository_id: str = "managed",
        now: datetime | None = None,
    ) -> None:
        self.layout = get_layout(layout) if isinstance(layout, str) else layout
        self.repository = ManagedRepository(
            id=repository_id, location=Path(managed_root), layout=self.layout.name
        )
        self.remotes = list(remotes)
        self.releases_policy = releases_policy
        self.snapshots_policy = snapshots_policy
        self.checksum_policy = checksum_policy
        self.consumers = consumers
        self.now = now

    @property
    def managed_root(self) -> Path:
        return Path(self.repository.location)

    def _version_of(self, path: str) -> str | None:
        try:
            return self.layout.to_coordinate(path).version
        except LayoutParseError:
            return None

    def fetch(self, path: str) -> Path | None:
        """Return the local file for ``path``, downloading it first if needed.

        Returns:
            The local path, or None when no copy is cached and no remote
            supplied an acceptable one.
        """
        path = path.lstrip("/")
        local = self.managed_root / path
        version = self._version_of(path)
        try:
            self.releases_policy.apply(path, version, local, self.now)
            self.snapshots_policy.apply(path, version, local, self.now)
        except PolicyViolationError as exc:
            logger.debug("Not fetching %s: %s", path, exc)
            return local if local.is_file() else None

        for remote in self.remotes:
            if self._transfer(remote, path, local):
                logger.info("Fetched %s from %s", path, remote.id)
                if self.consumers is not None:
                    self.consumers.execute_consumers(self.repository, local)
                return local

        if local.is_file():
            logger.info("No remote supplied %s; serving cached copy", path)
            return local
        return None

    def _transfer(self, remote: RemoteRepository, path: str, local: Path) -> bool:
        local.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix=".fetch-", dir=local.parent) as tmp:
            staged = Path(tmp) / local.name
            try:
                if not remote.download(path, staged):
                    return False
            except RemoteFetchError as exc:
                logger.warning("%s", exc)
                return False

            for algorithm in DEFAULT_ALGORITHMS:
                sidecar = staged.with_name(f"{staged.name}.{algorithm.extension}")
                try:
                    remote.download(f"{path}.{algorithm.extension}", sidecar)
                except RemoteFetchError as exc:
                    logger.warning("Checksum not transferred: %s", exc)
                    sidecar.unlink(missing_ok=True)

            try:
                self.checksum_policy.apply(staged)
            except PolicyViolationError as exc:
                logger.warning("%s rejected by %s: %s", path, remote.id, exc)
                return False

            for staged_file in sorted(Path(tmp).iterdir()):
                os.replace(staged_file, local.parent / staged_file.name)
        return True

    def close(self) -> None:
        for remote in self.remotes:
            remote.close()
