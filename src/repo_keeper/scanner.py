"""Walk a managed repository and dispatch its files to content consumers.

Consumers are called in registration order. ``begin_scan`` runs for every
consumer before the first file is visited and ``complete_scan`` after the
last one, known consumers first, then invalid consumers.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import cached_property, lru_cache
from pathlib import Path
from typing import Iterator, Sequence

from repo_keeper.exceptions import RepositoryScanError
from repo_keeper.models import ConsumerDescriptor, ConsumerFailure, ManagedRepository, ScanStatistics


logger = logging.getLogger(__name__)

FRESH_SCAN = 0
NO_KNOWN_CONSUMER = "no known consumer matched"

DEFAULT_IGNORED_CONTENT: tuple[str, ...] = (
    "bin/**",
    "reports/**",
    ".index/**",
    ".reports/**",
    ".maven/**",
    "**/.svn/**",
    "**/*.html",
    "**/*.txt",
    "**/README*",
    "**/CHANGELOG*",
    "**/KEYS*",
    "**/.DS_Store",
    "**/.fetch-*/**",
)

ARTIFACT_PATTERNS: tuple[str, ...] = (
    "**/*.pom",
    "**/*.jar",
    "**/*.ear",
    "**/*.war",
    "**/*.rar",
    "**/*.sar",
    "**/*.tld",
    "**/*.zip",
    "**/*.tar.gz",
    "**/*.tar.bz2",
)

CHECKSUM_PATTERNS: tuple[str, ...] = ("**/*.md5", "**/*.sha1", "**/*.sha256", "**/*.sha512")
METADATA_PATTERNS: tuple[str, ...] = ("**/maven-metadata.xml", "**/maven-metadata-*.xml")


@lru_cache(maxsize=512)
def _compile_pattern(pattern: str, case_sensitive: bool) -> re.Pattern[str]:
    """Translate an Ant-style pattern into a regex.

    ``*`` and ``?`` stay within one path segment, ``**`` spans any number of
    directories, so ``**/*.pom`` also matches ``foo.pom`` at the root.
    """
    out: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("/**", i) and i + 3 == len(pattern):
            out.append("(?:/.*)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out), 0 if case_sensitive else re.IGNORECASE)


def matches_any(relative_path: str, patterns: Sequence[str], case_sensitive: bool = False) -> bool:
    """Return True when a forward-slash path matches one of the Ant-style patterns."""
    return any(_compile_pattern(p, case_sensitive).fullmatch(relative_path) for p in patterns)


@dataclass
class BaseFile:
    """A file visited during a scan, relative to its repository root."""

    repository_root: Path
    absolute_path: Path

    @cached_property
    def relative_path(self) -> str:
        return self.absolute_path.relative_to(self.repository_root).as_posix()

    @cached_property
    def _stat(self) -> os.stat_result:
        return self.absolute_path.stat()

    @property
    def last_modified(self) -> int:
        """Modification time in epoch milliseconds."""
        return self._stat.st_mtime_ns // 1_000_000

    @property
    def size(self) -> int:
        return self._stat.st_size


class _Consumer(ABC):
    """Lifecycle shared by known and invalid consumers."""

    def __init__(self, descriptor: ConsumerDescriptor) -> None:
        self.descriptor = descriptor

    @property
    def id(self) -> str:
        return self.descriptor.id

    def begin_scan(self, repository: ManagedRepository, when: datetime) -> None:
        """Called once before the first file of a scan."""

    def complete_scan(self) -> None:
        """Called once after the last file of a scan."""


class KnownContentConsumer(_Consumer):
    """A consumer that claims files by include/exclude patterns."""

    def wants(self, file: BaseFile) -> bool:
        path = file.relative_path
        if matches_any(path, self.descriptor.excludes):
            return False
        return matches_any(path, self.descriptor.includes)

    @abstractmethod
    def process(self, file: BaseFile) -> None:
        """Handle one file; raise to report a failure."""


class InvalidContentConsumer(_Consumer):
    """A consumer for files no known consumer claimed."""

    @abstractmethod
    def process(self, file: BaseFile, problem: str) -> None:
        """Handle one unclaimed file."""


class ScanState(str, Enum):
    NOT_STARTED = "not-started"
    SCANNING = "scanning"
    FINISHED = "finished"


@dataclass
class ScanSession:
    """Per-scan state. Sessions never share mutable state with each other.

    Attributes:
        repository: The repository being scanned.
        known_consumers: Consumers that claim files, in call order.
        invalid_consumers: Consumers for unclaimed files, in call order.
        changes_since: Epoch-millis watermark; older files are unmodified.
        stats: Counters for this scan.
    """

    repository: ManagedRepository
    known_consumers: list[KnownContentConsumer]
    invalid_consumers: list[InvalidContentConsumer]
    changes_since: int = FRESH_SCAN
    stats: ScanStatistics = field(init=False)
    state: ScanState = field(default=ScanState.NOT_STARTED, init=False)

    def __post_init__(self) -> None:
        self.stats = ScanStatistics(
            repository_id=self.repository.id,
            consumer_ids=[c.id for c in self.known_consumers],
        )

    def _all_consumers(self) -> list[_Consumer]:
        return [*self.known_consumers, *self.invalid_consumers]

    def begin(self) -> None:
        if self.state is not ScanState.NOT_STARTED:
            raise RuntimeError(f"Scan session already {self.state.value}")
        self.state = ScanState.SCANNING
        when = datetime.now(timezone.utc)
        self.stats.start_time = when
        for consumer in self._all_consumers():
            try:
                consumer.begin_scan(self.repository, when)
            except Exception as exc:
                self._record_failure(consumer, "<begin-scan>", exc)

    def _in_index_dir(self, file: BaseFile) -> bool:
        index_dir = self.repository.index_dir
        if not index_dir:
            return False
        prefix = index_dir.strip("/") + "/"
        return file.relative_path.startswith(prefix)

    def _record_failure(self, consumer: _Consumer, path: str, exc: Exception) -> None:
        logger.error("Consumer %s failed on %s: %s", consumer.id, path, exc, exc_info=True)
        self.stats.consumer_failures.append(
            ConsumerFailure(consumer_id=consumer.id, path=path, message=str(exc))
        )

    def visit(self, file: BaseFile) -> None:
        """Count one file and dispatch it to the consumers that want it."""
        if self.state is not ScanState.SCANNING:
            raise RuntimeError("Scan session is not scanning")

        self.stats.files_visited += 1
        self.stats.total_size += file.size
        is_changed = file.last_modified >= self.changes_since
        if is_changed:
            self.stats.new_or_changed_files += 1

        wanted_count = 0
        eligible: list[KnownContentConsumer] = []
        if not self._in_index_dir(file):
            for consumer in self.known_consumers:
                if not consumer.wants(file):
                    continue
                wanted_count += 1
                if consumer.descriptor.process_unmodified or is_changed:
                    eligible.append(consumer)

        if wanted_count == 0:
            logger.debug("No known consumer for %s", file.relative_path)
            for invalid in self.invalid_consumers:
                try:
                    invalid.process(file, NO_KNOWN_CONSUMER)
                except Exception as exc:
                    self._record_failure(invalid, file.relative_path, exc)
            return

        for consumer in eligible:
            logger.debug("Consumer %s processing %s", consumer.id, file.relative_path)
            try:
                consumer.process(file)
            except Exception as exc:
                self._record_failure(consumer, file.relative_path, exc)

    def finish(self) -> ScanStatistics:
        if self.state is ScanState.FINISHED:
            return self.stats
        for consumer in self._all_consumers():
            try:
                consumer.complete_scan()
            except Exception as exc:
                self._record_failure(consumer, "<complete-scan>", exc)
        self.stats.end_time = datetime.now(timezone.utc)
        self.state = ScanState.FINISHED
        return self.stats


class RepositoryScanner:
    """Walks a repository tree and feeds every file to a ScanSession."""

    def __init__(self, ignored_content: Sequence[str] = DEFAULT_IGNORED_CONTENT) -> None:
        self.ignored_content = tuple(ignored_content)

    def walk(self, root: Path) -> Iterator[Path]:
        """Yield files under root depth-first, skipping ignored content."""
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            base = Path(dirpath)
            for name in sorted(filenames):
                path = base / name
                relative = path.relative_to(root).as_posix()
                if matches_any(relative, self.ignored_content):
                    continue
                yield path

    def scan(
        self,
        repository: ManagedRepository,
        known_consumers: Sequence[KnownContentConsumer],
        invalid_consumers: Sequence[InvalidContentConsumer],
        changes_since: int = FRESH_SCAN,
        cancel_event: threading.Event | None = None,
    ) -> ScanStatistics:
        """Scan a repository once.

        Args:
            repository: Repository to scan; its root must be a directory.
            known_consumers: Consumers that claim files, in call order.
            invalid_consumers: Consumers for files nobody claimed.
            changes_since: Epoch-millis watermark, FRESH_SCAN for everything.
            cancel_event: Checked between files; a set event ends the walk early.

        Raises:
            RepositoryScanError: If the repository root is missing.

        Returns:
            Statistics for the scan.
        """
        root = Path(repository.location)
        if not root.is_dir():
            raise RepositoryScanError(f"Repository root is not a directory: {root}")

        session = ScanSession(
            repository=repository,
            known_consumers=list(known_consumers),
            invalid_consumers=list(invalid_consumers),
            changes_since=changes_since,
        )
        if not repository.scanned:
            logger.info("Repository %s is not marked for scanning; skipping", repository.id)
            session.stats.end_time = session.stats.start_time
            return session.stats

        logger.info("Scanning repository %s at %s", repository.id, root)
        session.begin()
        try:
            for path in self.walk(root):
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Scan of %s cancelled", repository.id)
                    session.stats.cancelled = True
                    break
                file = BaseFile(root, path)
                try:
                    file.size
                except FileNotFoundError:
                    # removed by a consumer earlier in this scan
                    logger.debug("Skipping vanished file %s", path)
                    continue
                session.visit(file)
        finally:
            session.finish()

        logger.info(
            "Finished scan of %s: %d files, %d new or changed",
            repository.id,
            session.stats.files_visited,
            session.stats.new_or_changed_files,
        )
        return session.stats


class RepositoryContentConsumers:
    """The configured selection of consumers for a repository.

    Selected consumers keep the order in which they are registered in
    ``available_*``; consumers flagged ``permanent`` are always selected.
    """

    def __init__(
        self,
        available_known: Sequence[KnownContentConsumer],
        available_invalid: Sequence[InvalidContentConsumer] = (),
        selected_known_ids: Sequence[str] = (),
        selected_invalid_ids: Sequence[str] = (),
    ) -> None:
        self.available_known = list(available_known)
        self.available_invalid = list(available_invalid)
        self.selected_known_ids = list(selected_known_ids)
        self.selected_invalid_ids = list(selected_invalid_ids)

        known_ids = {c.id for c in [*self.available_known, *self.available_invalid]}
        for consumer_id in [*self.selected_known_ids, *self.selected_invalid_ids]:
            if consumer_id not in known_ids:
                logger.warning("Selected consumer %s is not registered", consumer_id)

    @staticmethod
    def _select(available: Sequence[_Consumer], ids: Sequence[str]) -> list:
        return [c for c in available if c.id in ids or c.descriptor.permanent]

    def selected_known_consumers(self) -> list[KnownContentConsumer]:
        return self._select(self.available_known, self.selected_known_ids)

    def selected_invalid_consumers(self) -> list[InvalidContentConsumer]:
        return self._select(self.available_invalid, self.selected_invalid_ids)

    def scan(
        self,
        repository: ManagedRepository,
        changes_since: int = FRESH_SCAN,
        scanner: RepositoryScanner | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ScanStatistics:
        """Scan a whole repository with the selected consumers."""
        return (scanner or RepositoryScanner()).scan(
            repository,
            self.selected_known_consumers(),
            self.selected_invalid_consumers(),
            changes_since=changes_since,
            cancel_event=cancel_event,
        )

    def execute_consumers(self, repository: ManagedRepository, path: Path) -> ScanStatistics:
        """Run the selected consumers over a single file, such as a fresh download.

        The file is treated as changed, and the usual begin/complete
        lifecycle wraps the single visit.
        """
        root = Path(repository.location)
        path = Path(path)
        if not path.is_absolute():
            path = root / path
        session = ScanSession(
            repository=repository,
            known_consumers=self.selected_known_consumers(),
            invalid_consumers=self.selected_invalid_consumers(),
            changes_since=FRESH_SCAN,
        )
        session.begin()
        try:
            session.visit(BaseFile(root, path))
        finally:
            session.finish()
        return session.stats
