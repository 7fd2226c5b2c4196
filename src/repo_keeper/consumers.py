"""Concrete repository content consumers."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from repo_keeper.checksum import DEFAULT_ALGORITHMS, ChecksummedFile, validate_checksum_file
from repo_keeper.converter import ConversionResult, LegacyToDefaultConverter
from repo_keeper.exceptions import (
    ChecksumValidationError,
    ConsumerError,
    ConversionError,
    LayoutParseError,
)
from repo_keeper.models import ConsumerDescriptor, ManagedRepository, RetentionRule
from repo_keeper.purge import PurgeResult, RepositoryPurge
from repo_keeper.scanner import (
    ARTIFACT_PATTERNS,
    CHECKSUM_PATTERNS,
    BaseFile,
    InvalidContentConsumer,
    KnownContentConsumer,
)


logger = logging.getLogger(__name__)

CREATE_MISSING_CHECKSUMS = "create-missing-checksums"
VALIDATE_CHECKSUMS = "validate-checksums"
REPOSITORY_PURGE = "repository-purge"
LEGACY_CONVERTER = "legacy-converter"
UNPROCESSED_CONTENT = "unprocessed-content"


class ArtifactMissingChecksumsConsumer(KnownContentConsumer):
    """Creates sha1/md5 sidecars for artifacts that lack them and repairs wrong ones."""

    def __init__(self) -> None:
        super().__init__(
            ConsumerDescriptor(
                id=CREATE_MISSING_CHECKSUMS,
                description="Create missing and/or fix invalid checksum files.",
                includes=list(ARTIFACT_PATTERNS),
            )
        )
        self.fixed: list[str] = []

    def begin_scan(self, repository: ManagedRepository, when: datetime) -> None:
        self.fixed = []

    def process(self, file: BaseFile) -> None:
        checksummed = ChecksummedFile(file.absolute_path)
        if checksummed.is_valid_checksums(DEFAULT_ALGORITHMS) and all(
            checksummed.checksum_path(a).is_file() for a in DEFAULT_ALGORITHMS
        ):
            return
        if not checksummed.fix_checksums(DEFAULT_ALGORITHMS):
            raise ConsumerError(f"Unable to create checksums for {file.relative_path}")
        self.fixed.append(file.relative_path)


class ValidateChecksumConsumer(KnownContentConsumer):
    """Checks every checksum sidecar against the file it describes."""

    def __init__(self) -> None:
        super().__init__(
            ConsumerDescriptor(
                id=VALIDATE_CHECKSUMS,
                description="Validate checksum files against their content files.",
                includes=list(CHECKSUM_PATTERNS),
            )
        )
        self.invalid: list[str] = []

    def begin_scan(self, repository: ManagedRepository, when: datetime) -> None:
        self.invalid = []

    def process(self, file: BaseFile) -> None:
        try:
            valid = validate_checksum_file(file.absolute_path)
        except ChecksumValidationError as exc:
            self.invalid.append(file.relative_path)
            raise ConsumerError(f"{exc.kind.value}: {exc}") from exc
        if not valid:
            self.invalid.append(file.relative_path)
            raise ConsumerError(f"Checksum does not match content: {file.relative_path}")


class RepositoryPurgeConsumer(KnownContentConsumer):
    """Runs the retention evaluator once per (groupId, artifactId) during a scan.

    Args:
        rule: Retention parameters applied to every project.
        now: Reference time forwarded to the evaluator.
    """

    def __init__(self, rule: RetentionRule, now: datetime | None = None) -> None:
        super().__init__(
            ConsumerDescriptor(
                id=REPOSITORY_PURGE,
                description="Purge expired snapshots from the repository.",
                includes=list(ARTIFACT_PATTERNS),
                process_unmodified=True,
            )
        )
        self.rule = rule
        self.now = now
        self.result = PurgeResult()
        self._purge: RepositoryPurge | None = None
        self._seen: set[tuple[str, str]] = set()

    def begin_scan(self, repository: ManagedRepository, when: datetime) -> None:
        self._purge = RepositoryPurge(repository.location, self.rule, repository.layout, self.now)
        self._seen = set()
        self.result = PurgeResult()

    def process(self, file: BaseFile) -> None:
        if self._purge is None:
            raise ConsumerError("Purge consumer used outside of a scan")
        try:
            coordinate = self._purge.layout.to_coordinate(file.relative_path)
        except LayoutParseError as exc:
            logger.debug("Not purging %s: %s", file.relative_path, exc)
            return
        key = (coordinate.group_id, coordinate.artifact_id)
        if key in self._seen:
            return
        self._seen.add(key)
        self.result.extend(self._purge.process(file.relative_path))

    def complete_scan(self) -> None:
        if self.result.deleted or self.result.failed:
            logger.info(
                "Purge removed %d files (%d failures)", len(self.result.deleted), len(self.result.failed)
            )
        self._purge = None


class LegacyConverterConsumer(KnownContentConsumer):
    """Converts every artifact of a legacy repository into a default-layout target.

    Args:
        target_root: Root of the default-layout repository that receives artifacts.
        force: Overwrite differing target files.
        dry_run: Report what would be converted without writing.
    """

    def __init__(self, target_root: str | Path, force: bool = False, dry_run: bool = False) -> None:
        super().__init__(
            ConsumerDescriptor(
                id=LEGACY_CONVERTER,
                description="Convert legacy repository artifacts to the default layout.",
                includes=list(ARTIFACT_PATTERNS),
            )
        )
        self.converter = LegacyToDefaultConverter(target_root, force=force, dry_run=dry_run)
        self.results: list[ConversionResult] = []
        self._source_root: Path | None = None

    def begin_scan(self, repository: ManagedRepository, when: datetime) -> None:
        if repository.layout != "legacy":
            logger.warning("Repository %s is not a legacy repository", repository.id)
        self._source_root = Path(repository.location)
        self.results = []

    def process(self, file: BaseFile) -> None:
        try:
            result = self.converter.convert(self._source_root or file.repository_root, file.relative_path)
        except ConversionError as exc:
            raise ConsumerError(str(exc)) from exc
        for warning in result.warnings:
            logger.warning("%s: %s", file.relative_path, warning)
        self.results.append(result)


class UnprocessedContentConsumer(InvalidContentConsumer):
    """Collects files that no known consumer claimed."""

    def __init__(self) -> None:
        super().__init__(
            ConsumerDescriptor(
                id=UNPROCESSED_CONTENT,
                description="Report repository content that nothing processes.",
            )
        )
        self.problems: list[tuple[str, str]] = []

    def begin_scan(self, repository: ManagedRepository, when: datetime) -> None:
        self.problems = []

    def process(self, file: BaseFile, problem: str) -> None:
        logger.info("Unprocessed content %s: %s", file.relative_path, problem)
        self.problems.append((file.relative_path, problem))
