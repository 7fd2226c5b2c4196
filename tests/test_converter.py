from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import Path

import pytest

from repo_keeper.checksum import ChecksummedFile, is_valid_checksum
from repo_keeper.converter import (
    INVALID_CHECKSUM,
    MISSING_POM,
    TARGET_EXISTS,
    TRANSLATED_POM,
    UNREADABLE_POM,
    LegacyToDefaultConverter,
)
from repo_keeper.exceptions import ConversionError
from repo_keeper.metadata import read_metadata, write_metadata
from repo_keeper.models import ArtifactMetadata
from repo_keeper.pom import read_pom

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
JAR = b"jar bytes"

MAVEN2_POM = """<?xml version="1.0" encoding="UTF-8"?>
<project xmlns="http://maven.apache.org/POM/4.0.0">
  <modelVersion>4.0.0</modelVersion>
  <groupId>org.foo</groupId>
  <artifactId>foo</artifactId>
  <version>1.0</version>
</project>
"""

MAVEN1_POM = """<?xml version="1.0"?>
<project>
  <pomVersion>3</pomVersion>
  <groupId>org.foo</groupId>
  <artifactId>foo</artifactId>
  <currentVersion>1.0</currentVersion>
  <dependencies>
    <dependency>
      <id>commons-logging</id>
      <version>1.0.4</version>
    </dependency>
  </dependencies>
</project>
"""


def _write(root: Path, relative: str, content: str | bytes) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def source(tmp_path: Path) -> Path:
    root = tmp_path / "legacy"
    _write(root, "org.foo/jars/foo-1.0.jar", JAR)
    _write(root, "org.foo/jars/foo-1.0.jar.md5", hashlib.md5(JAR).hexdigest())
    return root


@pytest.fixture
def target(tmp_path: Path) -> Path:
    return tmp_path / "default"


def test_convert_jar_with_maven2_pom(source: Path, target: Path) -> None:
    _write(source, "org.foo/poms/foo-1.0.pom", MAVEN2_POM)

    result = LegacyToDefaultConverter(target, now=NOW).convert(source, "org.foo/jars/foo-1.0.jar")

    assert result.converted
    assert result.warnings == []
    assert result.target_path == "org/foo/foo/1.0/foo-1.0.jar"
    version_dir = target / "org/foo/foo/1.0"
    assert (version_dir / "foo-1.0.jar").read_bytes() == JAR
    assert is_valid_checksum(version_dir / "foo-1.0.jar", "sha1")
    assert is_valid_checksum(version_dir / "foo-1.0.jar", "md5")
    assert (version_dir / "foo-1.0.pom").read_text(encoding="utf-8") == MAVEN2_POM
    assert ChecksummedFile(version_dir / "foo-1.0.pom").is_valid_checksums()

    metadata = read_metadata(target / "org/foo/foo/maven-metadata.xml")
    assert metadata.versions == ["1.0"]
    assert metadata.release == "1.0"
    assert metadata.last_updated == "20240601120000"


def test_missing_pom_is_a_warning(source: Path, target: Path) -> None:
    result = LegacyToDefaultConverter(target).convert(source, "org.foo/jars/foo-1.0.jar")

    assert result.converted
    assert result.warnings == [MISSING_POM.format(name="foo-1.0.pom")]
    assert not (target / "org/foo/foo/1.0/foo-1.0.pom").exists()


def test_maven1_pom_is_translated(source: Path, target: Path) -> None:
    _write(source, "org.foo/poms/foo-1.0.pom", MAVEN1_POM)

    result = LegacyToDefaultConverter(target).convert(source, "org.foo/jars/foo-1.0.jar")

    assert result.converted
    assert result.warnings == [TRANSLATED_POM.format(name="foo-1.0.pom")]
    converted = target / "org/foo/foo/1.0/foo-1.0.pom"
    model = read_pom(converted)
    assert not model.is_maven1
    assert (model.group_id, model.artifact_id, model.version) == ("org.foo", "foo", "1.0")
    assert [d.artifact_id for d in model.dependencies] == ["commons-logging"]
    assert ChecksummedFile(converted).is_valid_checksums()


def test_convert_pom_path_directly(tmp_path: Path, target: Path) -> None:
    source = tmp_path / "legacy"
    _write(source, "org.foo/poms/foo-1.0.pom", MAVEN1_POM)

    result = LegacyToDefaultConverter(target).convert(source, "org.foo/poms/foo-1.0.pom")

    assert result.converted
    assert result.coordinate.type == "pom"
    assert read_pom(target / "org/foo/foo/1.0/foo-1.0.pom").model_version == "4.0.0"


def test_unreadable_pom_is_copied_unchanged(source: Path, target: Path) -> None:
    _write(source, "org.foo/poms/foo-1.0.pom", "<project>")

    result = LegacyToDefaultConverter(target).convert(source, "org.foo/jars/foo-1.0.jar")

    assert result.converted
    assert result.warnings == [UNREADABLE_POM.format(name="foo-1.0.pom")]
    assert (target / "org/foo/foo/1.0/foo-1.0.pom").read_text(encoding="utf-8") == "<project>"


def test_invalid_checksum_blocks_conversion(source: Path, target: Path) -> None:
    _write(source, "org.foo/jars/foo-1.0.jar.md5", "0" * 32)

    result = LegacyToDefaultConverter(target).convert(source, "org.foo/jars/foo-1.0.jar")

    assert not result.converted
    assert INVALID_CHECKSUM.format(name="foo-1.0.jar.md5") in result.warnings
    assert not target.exists()


def test_existing_different_target_needs_force(source: Path, target: Path) -> None:
    existing = _write(target, "org/foo/foo/1.0/foo-1.0.jar", b"other bytes")

    result = LegacyToDefaultConverter(target).convert(source, "org.foo/jars/foo-1.0.jar")
    assert not result.converted
    assert TARGET_EXISTS.format(name="foo-1.0.jar") in result.warnings
    assert existing.read_bytes() == b"other bytes"

    forced = LegacyToDefaultConverter(target, force=True).convert(source, "org.foo/jars/foo-1.0.jar")
    assert forced.converted
    assert existing.read_bytes() == JAR


def test_identical_target_is_not_a_conflict(source: Path, target: Path) -> None:
    _write(target, "org/foo/foo/1.0/foo-1.0.jar", JAR)

    assert LegacyToDefaultConverter(target).convert(source, "org.foo/jars/foo-1.0.jar").converted


def test_dry_run_writes_nothing(source: Path, target: Path) -> None:
    result = LegacyToDefaultConverter(target, dry_run=True).convert(source, "org.foo/jars/foo-1.0.jar")

    assert not result.converted
    assert result.target_path == "org/foo/foo/1.0/foo-1.0.jar"
    assert not target.exists()


def test_unique_snapshot_updates_version_metadata(tmp_path: Path, target: Path) -> None:
    source = tmp_path / "legacy"
    _write(source, "org.foo/jars/foo-1.0-20240101.120000-3.jar", JAR)
    write_metadata(
        target / "org/foo/foo/maven-metadata.xml",
        ArtifactMetadata(group_id="org.foo", artifact_id="foo", versions=["0.9"]),
    )

    result = LegacyToDefaultConverter(target, now=NOW).convert(source, "org.foo/jars/foo-1.0-20240101.120000-3.jar")

    assert result.converted
    assert result.target_path == "org/foo/foo/1.0-SNAPSHOT/foo-1.0-20240101.120000-3.jar"
    project = read_metadata(target / "org/foo/foo/maven-metadata.xml")
    assert project.versions == ["0.9", "1.0-SNAPSHOT"]
    assert project.latest == "1.0-SNAPSHOT"
    assert project.release == "0.9"
    version = read_metadata(target / "org/foo/foo/1.0-SNAPSHOT/maven-metadata.xml")
    assert version.version == "1.0-SNAPSHOT"
    assert version.snapshot_timestamp == "20240101.120000"
    assert version.snapshot_build_number == 3


def test_conversion_errors(source: Path, target: Path) -> None:
    converter = LegacyToDefaultConverter(target)

    with pytest.raises(ConversionError, match="identical"):
        LegacyToDefaultConverter(source).convert(source, "org.foo/jars/foo-1.0.jar")
    with pytest.raises(ConversionError, match="legacy repository path"):
        converter.convert(source, "org/foo/foo/1.0/foo-1.0.jar")
    with pytest.raises(ConversionError, match="does not exist"):
        converter.convert(source, "org.foo/jars/foo-2.0.jar")
