"""Heuristic version-string classification and Maven snapshot helpers."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import NamedTuple


SNAPSHOT = "SNAPSHOT"
SNAPSHOT_SUFFIX = "-" + SNAPSHOT

# Tried in order against every dash-separated part of a token.
_VERSION_PART_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"([0-9][_.0-9a-z]*)",
        r"(snapshot)",
        r"(g?[_.0-9ab]*(pre|rc|g|m)[_.0-9]*)",
        r"(dev[_.0-9]*)",
        r"(alpha[_.0-9]*)",
        r"(beta[_.0-9]*)",
        r"(rc[_.0-9]*)",
        r"(debug[_.0-9]*)",
        r"(unofficial[_.0-9]*)",
        r"(current)",
        r"(latest)",
        r"(fcs)",
        r"(release[_.0-9]*)",
        r"(nightly)",
        r"(final)",
        r"(incubating)",
        r"(incubator)",
        r"([ab][_.0-9]+)",
    )
)

UNIQUE_SNAPSHOT_RE = re.compile(r"^(.*)-([0-9]{8}\.[0-9]{6})-([0-9]+)$")
TIMESTAMP_FORMAT = "%Y%m%d.%H%M%S"

_QUALIFIER_RANK = {
    "alpha": 0,
    "a": 0,
    "beta": 1,
    "b": 1,
    "milestone": 2,
    "m": 2,
    "rc": 3,
    "cr": 3,
    "snapshot": 4,
    "": 5,
    "final": 5,
    "ga": 5,
    "release": 5,
    "sp": 6,
}
_NULL_ITEMS = ((0, 0, ""), (1, 0, ""))


class UniqueSnapshot(NamedTuple):
    """The pieces of a timestamped snapshot version."""

    release: str
    timestamp: datetime
    build_number: int


def is_version(token: str) -> bool:
    """Decide whether a token looks like a version string.

    The token is split on dashes and every part is matched against the known
    version-part patterns. It counts as a version when at least
    ``floor(max(1, 0.75 * parts))`` parts match, so a single-part token must
    match outright.

    Args:
        token: Candidate string such as ``1.0-alpha-2`` or ``project``.

    Returns:
        True when enough parts look like version components.
    """
    parts = [p for p in token.split("-") if p]
    matched = 0
    for part in parts:
        if any(pattern.fullmatch(part) for pattern in _VERSION_PART_PATTERNS):
            matched += 1
    threshold = int(max(1.0, len(parts) * 0.75))
    return matched >= threshold


def is_unique_snapshot(version: str) -> bool:
    return UNIQUE_SNAPSHOT_RE.match(version) is not None


def is_generic_snapshot(version: str) -> bool:
    return version.endswith(SNAPSHOT_SUFFIX)


def is_snapshot(version: str) -> bool:
    return is_unique_snapshot(version) or is_generic_snapshot(version)


def get_base_version(version: str) -> str:
    """Return the directory version for a version string.

    ``1.3.2-20090420.083501-3`` becomes ``1.3.2-SNAPSHOT``; anything else is
    returned unchanged.
    """
    m = UNIQUE_SNAPSHOT_RE.match(version)
    if m:
        return m.group(1) + SNAPSHOT_SUFFIX
    return version


def get_release_version(version: str) -> str:
    """Strip a unique or generic snapshot suffix from a version."""
    m = UNIQUE_SNAPSHOT_RE.match(version)
    if m:
        return m.group(1)
    if is_generic_snapshot(version):
        return version[: -len(SNAPSHOT_SUFFIX)]
    return version


def parse_unique_snapshot(version: str) -> UniqueSnapshot | None:
    """Split a unique snapshot version into release, timestamp and build number.

    Args:
        version: A version such as ``2.2-20070513.034619-5``.

    Returns:
        The parsed pieces, or None when the version is not a valid unique
        snapshot (including impossible dates such as month 13).
    """
    m = UNIQUE_SNAPSHOT_RE.match(version)
    if not m:
        return None
    try:
        stamp = datetime.strptime(m.group(2), TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    return UniqueSnapshot(m.group(1), stamp, int(m.group(3)))


def _sort_item(piece: str) -> tuple[int, int, str]:
    if piece.isdigit():
        return (1, int(piece), "")
    rank = _QUALIFIER_RANK.get(piece.lower())
    if rank is None:
        return (0, 0, piece.lower())
    return (0, rank - 5, "")


def version_sort_key(version: str) -> tuple[tuple[int, int, str], ...]:
    """Build a sort key that orders versions roughly the way Maven does.

    Numbers compare numerically, known qualifiers (alpha, beta, rc, snapshot)
    sort before the plain release and unknown qualifiers sort lexically.
    """
    key: list[tuple[int, int, str]] = []
    for piece in re.findall(r"[0-9]+|[a-zA-Z]+", get_base_version(version)):
        item = _sort_item(piece)
        if item[0] == 0:
            # 1.0-alpha is 1-alpha
            while key and key[-1] == (1, 0, ""):
                key.pop()
        key.append(item)
    # 1, 1.0 and 1.0-final are the same release
    while key and key[-1] in _NULL_ITEMS:
        key.pop()
    key.append((0, 0, ""))
    return tuple(key)
