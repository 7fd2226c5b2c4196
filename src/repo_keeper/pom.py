"""Read Maven 1 and Maven 2 POMs and write Maven 2 POMs, using lxml."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Mapping

from lxml import etree

from repo_keeper.exceptions import PomModelError, PomNotFoundError, PomParseError
from repo_keeper.models import ProjectDependency, ProjectModel
from repo_keeper.xmlutil import child_path, parse_xml, text_first


_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")
_PROJECT = child_path("project")
_POM_NS = "http://maven.apache.org/POM/4.0.0"


def _bool_text(value: str | None) -> bool | None:
    """Convert Maven boolean-ish text to bool.

    Args:
        value: String like 'true'/'false' or None.

    Returns:
        True/False for recognized values, otherwise None.
    """
    if value is None:
        return None
    v = value.strip().lower()
    if v == "true":
        return True
    if v == "false":
        return False
    return None


def _resolve_placeholders(value: str, props: Mapping[str, str]) -> str:
    """Resolve ${...} placeholders using provided properties.

    Unknown placeholders are preserved as-is.
    """
    current = value
    for _ in range(5):
        nxt = _PLACEHOLDER_RE.sub(lambda m: props.get(m.group(1)) or m.group(0), current)
        if nxt == current:
            break
        current = nxt
    return current


def _parse_properties(root: etree._Element) -> dict[str, str]:
    props: dict[str, str] = {}
    for n in root.xpath(f"{_PROJECT}/*[local-name()='properties']/*"):
        if not isinstance(n, etree._Element):
            continue
        key = etree.QName(n).localname
        val = (n.text or "").strip()
        if key and val:
            props[key] = val
    return props


def _dependencies(root: etree._Element, props: Mapping[str, str]) -> list[ProjectDependency]:
    deps: list[ProjectDependency] = []
    for dep in root.xpath(f"{_PROJECT}/*[local-name()='dependencies']/*[local-name()='dependency']"):
        group_id = text_first(dep, "./*[local-name()='groupId']")
        artifact_id = text_first(dep, "./*[local-name()='artifactId']")
        # Maven 1 dependencies may only carry <id>
        dep_id = text_first(dep, "./*[local-name()='id']")
        group_id = group_id or dep_id
        artifact_id = artifact_id or dep_id
        if group_id is None or artifact_id is None:
            continue
        version = text_first(dep, "./*[local-name()='version']")
        deps.append(
            ProjectDependency(
                group_id=_resolve_placeholders(group_id, props),
                artifact_id=artifact_id,
                version=_resolve_placeholders(version, props) if version else None,
                type=text_first(dep, "./*[local-name()='type']") or "jar",
                scope=text_first(dep, "./*[local-name()='scope']"),
                optional=_bool_text(text_first(dep, "./*[local-name()='optional']")),
            )
        )
    return deps


def read_pom(path: str | Path) -> ProjectModel:
    """Parse a Maven 2 (modelVersion 4.0.0) or Maven 1 (pomVersion 3) POM.

    Notes:
        - Namespace handling: uses `local-name()` XPath so it works with or without XML namespaces.
        - Maven 1 ``<id>`` and ``<currentVersion>`` stand in for the missing
          groupId/artifactId/version elements.

    Args:
        path: Path to a POM file.

    Raises:
        PomNotFoundError: If the file does not exist.
        PomParseError: If the XML cannot be parsed.
        PomModelError: If required fields are missing.

    Returns:
        The project model.
    """
    pom_path = Path(path)
    root = parse_xml(pom_path, PomNotFoundError, PomParseError, "POM")

    model_version = text_first(root, f"{_PROJECT}/*[local-name()='modelVersion']")
    pom_version = text_first(root, f"{_PROJECT}/*[local-name()='pomVersion']")
    legacy_id = text_first(root, f"{_PROJECT}/*[local-name()='id']")

    group_id = text_first(root, f"{_PROJECT}/*[local-name()='groupId']") or text_first(
        root, f"{_PROJECT}/*[local-name()='parent']/*[local-name()='groupId']"
    )
    artifact_id = text_first(root, f"{_PROJECT}/*[local-name()='artifactId']")
    current_version = text_first(root, f"{_PROJECT}/*[local-name()='currentVersion']")
    version = (
        text_first(root, f"{_PROJECT}/*[local-name()='version']")
        or current_version
        or text_first(root, f"{_PROJECT}/*[local-name()='parent']/*[local-name()='version']")
    )

    group_id = group_id or legacy_id
    artifact_id = artifact_id or legacy_id
    if artifact_id is None:
        raise PomModelError(f"Missing required <artifactId> in {pom_path}")
    if group_id is None:
        raise PomModelError(f"Missing required <groupId> (or parent <groupId>) in {pom_path}")
    if version is None:
        raise PomModelError(f"Missing required <version> in {pom_path}")

    props = _parse_properties(root)
    props.update(
        {
            "project.groupId": group_id,
            "project.artifactId": artifact_id,
            "project.version": version,
            "pom.groupId": group_id,
            "pom.artifactId": artifact_id,
            "pom.version": version,
        }
    )

    return ProjectModel(
        model_version=model_version or ("3" if (pom_version or legacy_id or current_version) else "4.0.0"),
        group_id=_resolve_placeholders(group_id, props),
        artifact_id=artifact_id,
        version=_resolve_placeholders(version, props),
        packaging=text_first(root, f"{_PROJECT}/*[local-name()='packaging']") or "jar",
        name=text_first(root, f"{_PROJECT}/*[local-name()='name']"),
        description=text_first(root, f"{_PROJECT}/*[local-name()='description']"),
        url=text_first(root, f"{_PROJECT}/*[local-name()='url']"),
        dependencies=_dependencies(root, props),
    )


def _sub(parent: etree._Element, tag: str, text: str | None) -> None:
    if text is not None:
        etree.SubElement(parent, f"{{{_POM_NS}}}{tag}").text = text


def pom_to_bytes(model: ProjectModel) -> bytes:
    """Serialize a project model as a Maven 2 (4.0.0) POM."""
    root = etree.Element(f"{{{_POM_NS}}}project", nsmap={None: _POM_NS})
    _sub(root, "modelVersion", "4.0.0")
    _sub(root, "groupId", model.group_id)
    _sub(root, "artifactId", model.artifact_id)
    _sub(root, "version", model.version)
    if model.packaging != "jar":
        _sub(root, "packaging", model.packaging)
    _sub(root, "name", model.name)
    _sub(root, "description", model.description)
    _sub(root, "url", model.url)

    if model.dependencies:
        deps = etree.SubElement(root, f"{{{_POM_NS}}}dependencies")
        for dep in model.dependencies:
            node = etree.SubElement(deps, f"{{{_POM_NS}}}dependency")
            _sub(node, "groupId", dep.group_id)
            _sub(node, "artifactId", dep.artifact_id)
            _sub(node, "version", dep.version)
            if dep.type != "jar":
                _sub(node, "type", dep.type)
            _sub(node, "scope", dep.scope)
            if dep.optional:
                _sub(node, "optional", "true")

    return etree.tostring(root, pretty_print=True, xml_declaration=True, encoding="UTF-8")
