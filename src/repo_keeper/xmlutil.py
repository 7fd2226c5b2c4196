"""Shared lxml helpers for repository XML files (POMs, maven-metadata.xml)."""

from __future__ import annotations

from pathlib import Path

from lxml import etree


def text_first(node: etree._Element, xpath_expr: str) -> str | None:
    """Get text of the first matching element using namespace-agnostic XPath.

    Args:
        node: Root element to query under.
        xpath_expr: XPath expression (should use local-name()).

    Returns:
        Text content if found and non-empty, otherwise None.
    """
    found = node.xpath(xpath_expr)
    if not found:
        return None
    first = found[0]
    if isinstance(first, etree._Element):
        text = (first.text or "").strip()
        return text or None
    if isinstance(first, str):
        text = first.strip()
        return text or None
    return None


def child_path(*names: str) -> str:
    """Build an absolute local-name() XPath, e.g. ``/*[local-name()='project']/...``."""
    return "".join(f"/*[local-name()='{n}']" for n in names)


def parse_xml(
    path: Path,
    not_found: type[Exception],
    parse_error: type[Exception],
    label: str,
) -> etree._Element:
    """Parse an XML file and return its root element.

    Args:
        path: File to parse.
        not_found: Exception raised when the file does not exist.
        parse_error: Exception raised when the XML cannot be parsed.
        label: File kind used in error messages.

    Returns:
        Root XML element.
    """
    if not path.exists():
        raise not_found(f"{label} not found: {path}")
    try:
        parser = etree.XMLParser(resolve_entities=False, no_network=True, recover=False)
        tree = etree.parse(str(path), parser=parser)
        return tree.getroot()
    except (OSError, etree.XMLSyntaxError) as exc:
        raise parse_error(f"Failed to parse {label}: {path}") from exc
