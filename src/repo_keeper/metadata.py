"""Read and write maven-metadata.xml files using lxml."""

from __future__ import annotations

import logging
from pathlib import Path

from lxml import etree

from repo_keeper.exceptions import MetadataNotFoundError, MetadataParseError
from repo_keeper.models import ArtifactMetadata
from repo_keeper.xmlutil import child_path, parse_xml, text_first


logger = logging.getLogger(__name__)

METADATA_FILENAME = "maven-metadata.xml"

_ROOT = child_path("metadata")
_VERSIONING = child_path("metadata", "versioning")
_SNAPSHOT = child_path("metadata", "versioning", "snapshot")


def read_metadata(path: str | Path) -> ArtifactMetadata:
    """Parse a maven-metadata.xml file.

    Notes:
        - Namespace handling: uses `local-name()` XPath so it works with or without XML namespaces.

    Args:
        path: Path to the metadata file.

    Raises:
        MetadataNotFoundError: If the file does not exist.
        MetadataParseError: If the XML is malformed or lacks groupId/artifactId.

    Returns:
        Parsed metadata.
    """
    path = Path(path)
    root = parse_xml(path, MetadataNotFoundError, MetadataParseError, METADATA_FILENAME)

    group_id = text_first(root, f"{_ROOT}/*[local-name()='groupId']")
    artifact_id = text_first(root, f"{_ROOT}/*[local-name()='artifactId']")
    if not group_id or not artifact_id:
        raise MetadataParseError(f"Missing groupId/artifactId in metadata: {path}")

    versions: list[str] = []
    for n in root.xpath(f"{_VERSIONING}/*[local-name()='versions']/*[local-name()='version']"):
        if isinstance(n, etree._Element) and (n.text or "").strip():
            versions.append(n.text.strip())

    build_number = text_first(root, f"{_SNAPSHOT}/*[local-name()='buildNumber']")
    try:
        snapshot_build_number = int(build_number) if build_number else None
    except ValueError as exc:
        raise MetadataParseError(f"Invalid snapshot buildNumber in {path}: {build_number}") from exc

    return ArtifactMetadata(
        group_id=group_id,
        artifact_id=artifact_id,
        version=text_first(root, f"{_ROOT}/*[local-name()='version']"),
        latest=text_first(root, f"{_VERSIONING}/*[local-name()='latest']"),
        release=text_first(root, f"{_VERSIONING}/*[local-name()='release']"),
        versions=versions,
        last_updated=text_first(root, f"{_VERSIONING}/*[local-name()='lastUpdated']"),
        snapshot_timestamp=text_first(root, f"{_SNAPSHOT}/*[local-name()='timestamp']"),
        snapshot_build_number=snapshot_build_number,
    )


def _sub(parent: etree._Element, tag: str, text: str | None) -> None:
    if text is not None:
        etree.SubElement(parent, tag).text = text


def metadata_to_bytes(metadata: ArtifactMetadata) -> bytes:
    """Serialize metadata as a UTF-8 XML document."""
    root = etree.Element("metadata")
    _sub(root, "groupId", metadata.group_id)
    _sub(root, "artifactId", metadata.artifact_id)
    _sub(root, "version", metadata.version)

    versioning = etree.SubElement(root, "versioning")
    _sub(versioning, "latest", metadata.latest)
    _sub(versioning, "release", metadata.release)
    if metadata.snapshot_timestamp is not None or metadata.snapshot_build_number is not None:
        snapshot = etree.SubElement(versioning, "snapshot")
        _sub(snapshot, "timestamp", metadata.snapshot_timestamp)
        if metadata.snapshot_build_number is not None:
            _sub(snapshot, "buildNumber", str(metadata.snapshot_build_number))
    if metadata.versions:
        versions = etree.SubElement(versioning, "versions")
        for v in metadata.versions:
            _sub(versions, "version", v)
    _sub(versioning, "lastUpdated", metadata.last_updated)

    return etree.tostring(root, pretty_print=True, xml_declaration=True, encoding="UTF-8")


def write_metadata(path: str | Path, metadata: ArtifactMetadata) -> Path:
    """Write metadata to ``path``, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(metadata_to_bytes(metadata))
    logger.debug("Wrote %s", path)
    return path


def load_or_create(path: Path, group_id: str, artifact_id: str, version: str | None = None) -> ArtifactMetadata:
    """Read metadata from ``path``; a missing or unreadable file yields a fresh record."""
    try:
        return read_metadata(path)
    except MetadataNotFoundError:
        return ArtifactMetadata(group_id=group_id, artifact_id=artifact_id, version=version)
    except MetadataParseError as exc:
        logger.warning("Replacing unreadable metadata %s: %s", path, exc)
        return ArtifactMetadata(group_id=group_id, artifact_id=artifact_id, version=version)
