"""Translate artifact coordinates to repository paths and back.

Two layouts are supported:

- ``default`` (Maven 2): ``group/as/dirs/artifactId/baseVersion/artifactId-version[-classifier].ext``
- ``legacy`` (Maven 1): ``groupId/<type>s/artifactId-version[-classifier].ext``

Paths are always repository-relative and use forward slashes; the layout
path is the on-disk format that Maven clients read directly.
"""

from __future__ import annotations

import re
from enum import Enum

from repo_keeper.exceptions import LayoutParseError
from repo_keeper.models import ArtifactCoordinate
from repo_keeper.versions import (
    SNAPSHOT_SUFFIX,
    get_base_version,
    is_generic_snapshot,
    is_snapshot,
    is_version,
)


PATH_TOO_SHORT = "Path is too short to build an artifact from"
NOT_A_LEGACY_PATH = "Path does not match a legacy repository path for an artifact"
NO_TYPE = "Path artifact type does not corresspond to an artifact type"
NO_EXTENSION = "Path filename does not have an extension"
WRONG_EXTENSION = "Path type does not match the extension"
EMPTY_VERSION = "Path filename version is empty"
EMPTY_ARTIFACT_ID = "Path filename artifactId is empty"
FILENAME_MISMATCH = "Path filename does not correspond to an artifact"
VERSION_MISMATCH = "Path version does not corresspond to an artifact version"
BUILT_VERSION_MISMATCH = "Built artifact version does not match path version"
BUILT_SNAPSHOT_MISMATCH = "Built snapshot artifact base version does not match path version"

_TYPE_TO_EXTENSION = {
    "ejb-client": "jar",
    "ejb": "jar",
    "distribution-tgz": "tar.gz",
    "distribution-zip": "zip",
    "java-source": "jar",
    "javadoc": "jar",
    "maven-plugin": "jar",
    "maven-archetype": "jar",
}

_EXTENSION_TO_TYPE = {
    "tar.gz": "distribution-tgz",
    "zip": "distribution-zip",
}

_CLASSIFIER_TO_TYPE = {
    "sources": "java-source",
    "javadoc": "javadoc",
}

_MAVEN_PLUGIN_RE = re.compile(r"(maven-.*-plugin)|(.*-maven-plugin)")
_EXTENSION_RE = re.compile(r"(\.tar\.gz$)|(\.tar\.bz2$)|(\.[\-a-z0-9]*$)", re.IGNORECASE)
_TIMESTAMP_TAIL_RE = re.compile(r"^([0-9]{8}\.[0-9]{6}-[0-9]+)(.*)$")


def extension_for_type(artifact_type: str) -> str:
    """Return the file extension used for an artifact type."""
    return _TYPE_TO_EXTENSION.get(artifact_type, artifact_type.replace("-", "."))


def type_for_extension(extension: str) -> str:
    """Guess the artifact type from a file extension."""
    return _EXTENSION_TO_TYPE.get(extension, extension)


def type_for_classifier(classifier: str, extension: str) -> str:
    """Guess the artifact type from a classifier, falling back to the extension."""
    return _CLASSIFIER_TO_TYPE.get(classifier, type_for_extension(extension))


def is_maven_plugin(artifact_id: str) -> bool:
    return _MAVEN_PLUGIN_RE.fullmatch(artifact_id) is not None


class FilenameParser:
    """Cursor over an artifact filename with the extension already split off.

    Example:
        >>> p = FilenameParser("foo-tool-1.0.jar")
        >>> p.next_non_version(), p.remaining(), p.extension
        ('foo-tool', '1.0', 'jar')
    """

    def __init__(self, filename: str) -> None:
        m = _EXTENSION_RE.search(filename)
        if m:
            self.name = filename[: m.start()]
            self.extension: str | None = m.group(0)[1:]
        else:
            self.name = filename
            self.extension = None
        self._offset = 0

    def expect(self, expected: str) -> str | None:
        """Consume ``expected`` at the cursor if it is there.

        A ``-SNAPSHOT`` expectation is also satisfied by the same release
        followed by a ``yyyyMMdd.HHmmss-N`` timestamp. The match must end at a
        ``-`` or ``.`` boundary, so ``1.0`` does not match ``1.0b``.

        Returns:
            The consumed text, or None when nothing matched.
        """
        value: str | None = None
        if self.name.startswith(expected, self._offset):
            value = expected
        elif is_generic_snapshot(expected):
            rest = self.name[self._offset :]
            lead = len(expected) - len(SNAPSHOT_SUFFIX)
            if lead > 0 and rest.startswith(expected[:lead] + "-"):
                m = _TIMESTAMP_TAIL_RE.match(rest[lead + 1 :])
                if m:
                    value = rest[: lead + 1] + m.group(1)

        if value is None:
            return None
        end = self._offset + len(value)
        if end < len(self.name) and self.name[end] not in "-.":
            return None
        self._offset = end
        return value

    def next_separator(self) -> str | None:
        """Consume and return the character at the cursor, or None at the end."""
        if self._offset >= len(self.name):
            return None
        ch = self.name[self._offset]
        self._offset += 1
        return ch

    def next_non_version(self) -> str:
        """Consume dash-separated sections until one looks like a version."""
        sections: list[str] = []
        while self._offset < len(self.name):
            end = self.name.find("-", self._offset)
            if end == -1:
                end = len(self.name)
            section = self.name[self._offset : end]
            if is_version(section):
                break
            sections.append(section)
            self._offset = min(end + 1, len(self.name))
        return "-".join(sections)

    def remaining(self) -> str:
        """Consume and return the rest of the name."""
        rest = self.name[self._offset :]
        self._offset = len(self.name)
        return rest


def _filename(coordinate: ArtifactCoordinate) -> str:
    name = f"{coordinate.artifact_id}-{coordinate.version}"
    if coordinate.classifier:
        name += f"-{coordinate.classifier}"
    return f"{name}.{extension_for_type(coordinate.type)}"


class DefaultLayout:
    """The Maven 2 repository layout."""

    name = "default"

    def path_of(self, coordinate: ArtifactCoordinate) -> str:
        return "/".join(
            [
                coordinate.group_id.replace(".", "/"),
                coordinate.artifact_id,
                coordinate.base_version,
                _filename(coordinate),
            ]
        )

    def to_coordinate(self, path: str) -> ArtifactCoordinate:
        """Parse a default-layout path into coordinates.

        Args:
            path: Repository-relative path with forward slashes.

        Raises:
            LayoutParseError: If the path does not describe an artifact.

        Returns:
            The artifact coordinates.
        """
        parts = path.strip("/").split("/")
        if len(parts) < 4 or any(not p for p in parts):
            raise LayoutParseError(path, PATH_TOO_SHORT)

        group_id = ".".join(parts[:-3])
        artifact_id, base_version, filename = parts[-3], parts[-2], parts[-1]

        parser = FilenameParser(filename)
        if not parser.extension:
            raise LayoutParseError(path, NO_EXTENSION)
        if parser.expect(artifact_id) is None or parser.next_separator() != "-":
            raise LayoutParseError(path, FILENAME_MISMATCH)

        version = parser.expect(base_version)
        if version is None:
            raise LayoutParseError(path, VERSION_MISMATCH)

        classifier = ""
        extension = parser.extension
        separator = parser.next_separator()
        if separator == "-":
            classifier = parser.remaining()
            if not classifier:
                raise LayoutParseError(path, FILENAME_MISMATCH)
            artifact_type = type_for_classifier(classifier, extension)
        elif separator == ".":
            # dual extension such as foo-1.0.xml.zip, typed xml-zip
            extension = f"{parser.remaining()}.{extension}"
            artifact_type = type_for_extension(extension).replace(".", "-")
        else:
            artifact_type = type_for_extension(extension)

        if extension_for_type(artifact_type) != extension:
            raise LayoutParseError(path, WRONG_EXTENSION)

        if artifact_type == "jar" and is_maven_plugin(artifact_id):
            artifact_type = "maven-plugin"

        if get_base_version(version) != base_version:
            if is_snapshot(version):
                raise LayoutParseError(path, BUILT_SNAPSHOT_MISMATCH)
            raise LayoutParseError(path, BUILT_VERSION_MISMATCH)

        return ArtifactCoordinate(
            group_id=group_id,
            artifact_id=artifact_id,
            version=version,
            classifier=classifier,
            type=artifact_type,
        )


_LEGACY_DIRECTORY_TYPES = {
    "ejbs": "ejb",
    "plugins": "maven-plugin",
    "javadoc.jars": "jar",
}

# types written under an irregular directory are never read back from the regular one
_UNREACHABLE_DIRECTORIES = frozenset(
    ["ejb-clients", "distribution-tgzs", "distribution-zips", "maven-plugins"]
)


class LegacyLayout:
    """The Maven 1 repository layout."""

    name = "legacy"

    @staticmethod
    def type_directory(coordinate: ArtifactCoordinate) -> str:
        """Return the type directory for a coordinate.

        ``jar`` artifacts classified ``sources`` live under ``javadoc.jars``;
        existing repositories depend on that name.
        """
        artifact_type = coordinate.type
        if artifact_type == "jar" and coordinate.classifier == "sources":
            return "javadoc.jars"
        if artifact_type == "ejb-client":
            return "ejbs"
        if artifact_type in ("distribution-tgz", "distribution-zip"):
            return "distributions"
        if artifact_type == "maven-plugin":
            return "plugins"
        return artifact_type + "s"

    def path_of(self, coordinate: ArtifactCoordinate) -> str:
        return "/".join([coordinate.group_id, self.type_directory(coordinate), _filename(coordinate)])

    def to_coordinate(self, path: str) -> ArtifactCoordinate:
        """Parse a legacy-layout path into coordinates.

        Args:
            path: Repository-relative path such as ``com.foo/jars/foo-tool-1.0.jar``.

        Raises:
            LayoutParseError: If the path does not describe an artifact.

        Returns:
            The artifact coordinates.
        """
        parts = path.strip("/").split("/")
        if len(parts) < 3:
            raise LayoutParseError(path, PATH_TOO_SHORT)
        if len(parts) != 3 or any(not p for p in parts):
            raise LayoutParseError(path, NOT_A_LEGACY_PATH)

        group_id, type_dir, filename = parts
        if not type_dir.endswith("s") or len(type_dir) < 2 or type_dir in _UNREACHABLE_DIRECTORIES:
            raise LayoutParseError(path, NO_TYPE)

        parser = FilenameParser(filename)
        extension = parser.extension
        if not extension:
            raise LayoutParseError(path, NO_EXTENSION)

        artifact_id = parser.next_non_version()
        if not artifact_id:
            raise LayoutParseError(path, EMPTY_ARTIFACT_ID)

        version = parser.remaining()
        if not version:
            # no version-like section, e.g. ganymed-ssh2-build210
            head, sep, tail = artifact_id.rpartition("-")
            if not sep or not head:
                raise LayoutParseError(path, EMPTY_VERSION)
            artifact_id, version = head, tail

        classifier = ""
        if type_dir == "distributions":
            artifact_type = type_for_extension(extension)
            if artifact_type not in ("distribution-tgz", "distribution-zip"):
                raise LayoutParseError(path, WRONG_EXTENSION)
        else:
            artifact_type = _LEGACY_DIRECTORY_TYPES.get(type_dir, type_dir[:-1])

        if type_dir == "javadoc.jars":
            if not version.endswith("-sources") or version == "-sources":
                raise LayoutParseError(path, FILENAME_MISMATCH)
            version = version[: -len("-sources")]
            classifier = "sources"

        if extension_for_type(artifact_type) != extension:
            raise LayoutParseError(path, WRONG_EXTENSION)

        return ArtifactCoordinate(
            group_id=group_id,
            artifact_id=artifact_id,
            version=version,
            classifier=classifier,
            type=artifact_type,
        )


class RepositoryLayoutKind(str, Enum):
    DEFAULT = "default"
    LEGACY = "legacy"


RepositoryLayout = DefaultLayout | LegacyLayout

_LAYOUTS: dict[str, RepositoryLayout] = {
    RepositoryLayoutKind.DEFAULT.value: DefaultLayout(),
    RepositoryLayoutKind.LEGACY.value: LegacyLayout(),
}


def get_layout(name: str | RepositoryLayoutKind) -> RepositoryLayout:
    """Look up a layout strategy by name.

    Raises:
        ValueError: If the layout name is unknown.
    """
    key = name.value if isinstance(name, RepositoryLayoutKind) else str(name).lower()
    try:
        return _LAYOUTS[key]
    except KeyError:
        raise ValueError(f"Unknown repository layout: {name}") from None


def path_of(coordinate: ArtifactCoordinate, layout: str | RepositoryLayoutKind = "default") -> str:
    return get_layout(layout).path_of(coordinate)


def to_coordinate(path: str, layout: str | RepositoryLayoutKind = "default") -> ArtifactCoordinate:
    return get_layout(layout).to_coordinate(path)
