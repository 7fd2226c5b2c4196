"""Convert artifacts from a legacy (Maven 1) repository into a default (Maven 2) one."""

from __future__ import annotations

import filecmp
import hashlib
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from repo_keeper.checksum import DEFAULT_ALGORITHMS, ChecksummedFile
from repo_keeper.exceptions import (
    ChecksumValidationError,
    ConversionError,
    LayoutParseError,
    PomModelError,
    PomParseError,
)
from repo_keeper.layout import DefaultLayout, LegacyLayout
from repo_keeper.metadata import METADATA_FILENAME, load_or_create, metadata_to_bytes
from repo_keeper.models import ArtifactCoordinate
from repo_keeper.pom import pom_to_bytes, read_pom
from repo_keeper.versions import parse_unique_snapshot


logger = logging.getLogger(__name__)

INVALID_CHECKSUM = "Artifact checksum is invalid: {name}"
TARGET_EXISTS = "Target file already exists and differs; use force to overwrite: {name}"
MISSING_POM = "POM for artifact was not found in source repository: {name}"
TRANSLATED_POM = "POM was translated from a Maven 1 project model: {name}"
UNREADABLE_POM = "POM could not be read and was copied unchanged: {name}"


@dataclass
class ConversionResult:
    """What happened to one legacy artifact."""

    coordinate: ArtifactCoordinate
    source_path: str
    target_path: str
    warnings: list[str] = field(default_factory=list)
    converted: bool = False


class _Transaction:
    """File writes staged during a conversion and applied on commit.

    A failing commit removes the files it created before re-raising.
    """

    def __init__(self) -> None:
        self._copies: list[tuple[Path, Path]] = []
        self._writes: list[tuple[Path, bytes]] = []

    def copy(self, source: Path, target: Path) -> None:
        self._copies.append((source, target))

    def write(self, target: Path, content: bytes) -> None:
        self._writes.append((target, content))

    def targets(self) -> list[Path]:
        return [t for _, t in self._copies] + [t for t, _ in self._writes]

    def commit(self) -> None:
        created: list[Path] = []
        try:
            for source, target in self._copies:
                target.parent.mkdir(parents=True, exist_ok=True)
                if not target.exists():
                    created.append(target)
                shutil.copy2(source, target)
            for target, content in self._writes:
                target.parent.mkdir(parents=True, exist_ok=True)
                if not target.exists():
                    created.append(target)
                target.write_bytes(content)
        except OSError as exc:
            for path in created:
                path.unlink(missing_ok=True)
            raise ConversionError(f"Unable to write converted files: {exc}") from exc


def _checksum_bytes(path: Path, name: str) -> dict[str, bytes]:
    digests = ChecksummedFile(path).calculate_checksums(DEFAULT_ALGORITHMS)
    return {a.extension: f"{digest}  {name}\n".encode("utf-8") for a, digest in digests.items()}


class LegacyToDefaultConverter:
    """Copies legacy artifacts, their POMs and checksums into a default-layout repository.

    Args:
        target_root: Root of the default-layout repository.
        force: Overwrite target files whose content differs.
        dry_run: Evaluate and report without writing anything.
        now: Reference time for metadata ``lastUpdated`` stamps.
    """

    def __init__(
        self,
        target_root: str | Path,
        force: bool = False,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> None:
        self.target_root = Path(target_root)
        self.force = force
        self.dry_run = dry_run
        self.now = now
        self.source_layout = LegacyLayout()
        self.target_layout = DefaultLayout()

    def convert(self, source_root: str | Path, legacy_path: str) -> ConversionResult:
        """Convert one artifact.

        Args:
            source_root: Root of the legacy repository.
            legacy_path: Repository-relative path of the artifact.

        Raises:
            ConversionError: If both repositories are the same directory, the
                path is not a legacy artifact path, or writing fails.

        Returns:
            The conversion outcome, including non-fatal warnings.
        """
        source_root = Path(source_root)
        if source_root.resolve() == self.target_root.resolve():
            raise ConversionError("Source and target repositories are identical.")
        try:
            coordinate = self.source_layout.to_coordinate(legacy_path)
        except LayoutParseError as exc:
            raise ConversionError(str(exc)) from exc

        target_path = self.target_layout.path_of(coordinate)
        result = ConversionResult(coordinate=coordinate, source_path=legacy_path, target_path=target_path)
        tx = _Transaction()

        source = source_root / legacy_path
        target = self.target_root / target_path
        if not source.is_file():
            raise ConversionError(f"Source artifact does not exist: {source}")
        if coordinate.type == "pom":
            if not self._stage_pom(source, target, tx, result):
                return result
        elif not (
            self._copy_pom(source_root, coordinate, tx, result)
            and self._copy_file(source, target, tx, result)
        ):
            return result
        self._update_metadata(coordinate, tx)

        if self.dry_run:
            logger.info("Dry run: %s -> %s", legacy_path, target_path)
            return result
        tx.commit()
        result.converted = True
        logger.info("Converted %s -> %s", legacy_path, target_path)
        return result

    def _checksums_ok(self, source: Path, result: ConversionResult) -> bool:
        checksummed = ChecksummedFile(source)
        for algorithm in DEFAULT_ALGORITHMS:
            if not checksummed.checksum_path(algorithm).is_file():
                continue
            try:
                valid = checksummed.is_valid_checksum(algorithm)
            except ChecksumValidationError as exc:
                logger.warning("Checksum problem for %s: %s", source, exc)
                valid = False
            if not valid:
                result.warnings.append(INVALID_CHECKSUM.format(name=checksummed.checksum_path(algorithm).name))
                return False
        return True

    def _target_conflicts(self, source: Path, target: Path, result: ConversionResult) -> bool:
        if self.force or not target.exists() or filecmp.cmp(source, target, shallow=False):
            return False
        result.warnings.append(TARGET_EXISTS.format(name=target.name))
        return True

    def _copy_file(self, source: Path, target: Path, tx: _Transaction, result: ConversionResult) -> bool:
        if not self._checksums_ok(source, result) or self._target_conflicts(source, target, result):
            return False
        tx.copy(source, target)
        for extension, content in _checksum_bytes(source, target.name).items():
            tx.write(target.with_name(f"{target.name}.{extension}"), content)
        return True

    def _copy_pom(
        self,
        source_root: Path,
        coordinate: ArtifactCoordinate,
        tx: _Transaction,
        result: ConversionResult,
    ) -> bool:
        """Stage the project POM next to the artifact.

        Returns:
            False when the POM blocks the conversion (bad checksum or conflict).
        """
        pom = coordinate.model_copy(update={"type": "pom", "classifier": ""})
        source = source_root / self.source_layout.path_of(pom)
        target = self.target_root / self.target_layout.path_of(pom)
        if not source.is_file():
            result.warnings.append(MISSING_POM.format(name=source.name))
            return True
        return self._stage_pom(source, target, tx, result)

    def _stage_pom(self, source: Path, target: Path, tx: _Transaction, result: ConversionResult) -> bool:
        """Copy a Maven 2 POM as-is, or translate a Maven 1 POM."""
        try:
            model = read_pom(source)
        except (PomParseError, PomModelError) as exc:
            logger.warning("Unreadable POM %s: %s", source, exc)
            result.warnings.append(UNREADABLE_POM.format(name=source.name))
            return self._copy_file(source, target, tx, result)

        if not model.is_maven1:
            return self._copy_file(source, target, tx, result)

        if not self._checksums_ok(source, result):
            return False
        content = pom_to_bytes(model)
        if target.exists() and not self.force and target.read_bytes() != content:
            result.warnings.append(TARGET_EXISTS.format(name=target.name))
            return False
        result.warnings.append(TRANSLATED_POM.format(name=source.name))
        tx.write(target, content)
        for algorithm in DEFAULT_ALGORITHMS:
            digest = hashlib.new(algorithm.value, content).hexdigest()
            sidecar = target.with_name(f"{target.name}.{algorithm.extension}")
            tx.write(sidecar, f"{digest}  {target.name}\n".encode("utf-8"))
        return True

    def _update_metadata(self, coordinate: ArtifactCoordinate, tx: _Transaction) -> None:
        project_dir = self.target_root / coordinate.group_id.replace(".", "/") / coordinate.artifact_id
        project_file = project_dir / METADATA_FILENAME
        project = load_or_create(project_file, coordinate.group_id, coordinate.artifact_id)
        project.add_version(coordinate.base_version, self.now)
        tx.write(project_file, metadata_to_bytes(project))

        unique = parse_unique_snapshot(coordinate.version)
        if unique is None:
            return
        version_file = project_dir / coordinate.base_version / METADATA_FILENAME
        version_meta = load_or_create(
            version_file, coordinate.group_id, coordinate.artifact_id, coordinate.base_version
        )
        version_meta.update_snapshot(
            unique.timestamp.strftime("%Y%m%d.%H%M%S"), unique.build_number, self.now
        )
        tx.write(version_file, metadata_to_bytes(version_meta))
