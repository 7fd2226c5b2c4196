"""Compute, parse and validate checksum sidecar files (``foo.jar.sha1``)."""

from __future__ import annotations

import hashlib
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Iterable

from repo_keeper.exceptions import ChecksumErrorKind, ChecksumValidationError


logger = logging.getLogger(__name__)

_BUFFER_SIZE = 32 * 1024
_METADATA_NAME_RE = re.compile(r"maven-metadata-\S*\.xml")
_GNU_RE = re.compile(r"^([a-fA-F0-9]+)\s+\*?(.+)$")


class ChecksumAlgorithm(str, Enum):
    """Supported digest algorithms; the value is the sidecar extension."""

    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA512 = "sha512"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def digest_length(self) -> int:
        return hashlib.new(self.value).digest_size * 2

    @property
    def bsd_pattern(self) -> re.Pattern[str]:
        """Regex for ``ALGO (filename) = HEX`` as written by BSD and OpenSSL tools."""
        label = self.value.upper().replace("SHA", "SHA-?")
        return re.compile(rf"^{label}\s*\(([^)]*)\)\s*=\s*([a-fA-F0-9]+)$", re.IGNORECASE)

    @classmethod
    def from_extension(cls, extension: str) -> "ChecksumAlgorithm":
        """Resolve an algorithm from a sidecar extension.

        Raises:
            ChecksumValidationError: INVALID_FORMAT for an unsupported algorithm.
        """
        try:
            return cls(extension.lower().lstrip("."))
        except ValueError:
            raise ChecksumValidationError(
                ChecksumErrorKind.INVALID_FORMAT, f"Unsupported checksum algorithm: {extension}"
            ) from None


DEFAULT_ALGORITHMS: tuple[ChecksumAlgorithm, ...] = (ChecksumAlgorithm.SHA1, ChecksumAlgorithm.MD5)
CHECKSUM_EXTENSIONS: tuple[str, ...] = tuple(a.extension for a in ChecksumAlgorithm)


def _coerce(algorithm: ChecksumAlgorithm | str) -> ChecksumAlgorithm:
    if isinstance(algorithm, ChecksumAlgorithm):
        return algorithm
    return ChecksumAlgorithm.from_extension(algorithm)


def _name_matches(filename: str, content_name: str) -> bool:
    filename = filename.strip()
    if filename == "-" or filename.endswith(content_name):
        return True
    # proxied metadata is stored as maven-metadata-<repo>.xml
    return bool(_METADATA_NAME_RE.fullmatch(Path(filename).name)) and content_name.endswith(
        "maven-metadata.xml"
    )


def parse_checksum(content: str, algorithm: ChecksumAlgorithm, content_name: str) -> str:
    """Extract the hex digest from the text of a checksum sidecar.

    Accepted forms, tried in order:

    1. BSD/OpenSSL ``SHA1 (foo.jar) = 0a1b...``
    2. GNU coreutils ``0a1b...  foo.jar`` or ``0a1b... *foo.jar``
    3. A bare digest of the right length, as written by Maven deploys.

    Args:
        content: Raw sidecar text; line breaks are collapsed first.
        algorithm: Algorithm the digest was produced with.
        content_name: Filename of the file the sidecar describes.

    Raises:
        ChecksumValidationError: INVALID_FORMAT when no form matches or the
            embedded filename names a different file.

    Returns:
        The digest, lower-cased.
    """
    text = " ".join(content.split()).strip()

    m = algorithm.bsd_pattern.match(text)
    if m:
        if not _name_matches(m.group(1), content_name):
            raise ChecksumValidationError(
                ChecksumErrorKind.INVALID_FORMAT,
                f"Checksum file names {m.group(1)!r}, expected {content_name!r}",
            )
        return m.group(2).lower()

    m = _GNU_RE.match(text)
    if m:
        if not _name_matches(m.group(2), content_name):
            raise ChecksumValidationError(
                ChecksumErrorKind.INVALID_FORMAT,
                f"Checksum file names {m.group(2)!r}, expected {content_name!r}",
            )
        return m.group(1).lower()

    if len(text) == algorithm.digest_length and re.fullmatch(r"[a-fA-F0-9]+", text):
        return text.lower()

    raise ChecksumValidationError(
        ChecksumErrorKind.INVALID_FORMAT, f"Unrecognized {algorithm.value} checksum format"
    )


class ChecksummedFile:
    """A content file together with its checksum sidecars."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def checksum_path(self, algorithm: ChecksumAlgorithm | str) -> Path:
        algorithm = _coerce(algorithm)
        return self.path.with_name(f"{self.path.name}.{algorithm.extension}")

    def calculate_checksums(self, algorithms: Iterable[ChecksumAlgorithm]) -> dict[ChecksumAlgorithm, str]:
        """Stream the file once through every requested algorithm.

        Raises:
            ChecksumValidationError: READ_ERROR if the file cannot be read.
        """
        digests = {a: hashlib.new(a.value) for a in algorithms}
        try:
            with self.path.open("rb") as fh:
                for chunk in iter(lambda: fh.read(_BUFFER_SIZE), b""):
                    for digest in digests.values():
                        digest.update(chunk)
        except OSError as exc:
            raise ChecksumValidationError(
                ChecksumErrorKind.READ_ERROR, f"Unable to read {self.path}: {exc}"
            ) from exc
        return {a: d.hexdigest() for a, d in digests.items()}

    def calculate_checksum(self, algorithm: ChecksumAlgorithm | str) -> str:
        algorithm = _coerce(algorithm)
        return self.calculate_checksums([algorithm])[algorithm]

    def read_checksum(self, algorithm: ChecksumAlgorithm | str) -> str:
        """Read and parse the sidecar for ``algorithm``.

        Raises:
            ChecksumValidationError: FILE_NOT_FOUND, READ_ERROR or INVALID_FORMAT.
        """
        algorithm = _coerce(algorithm)
        sidecar = self.checksum_path(algorithm)
        if not sidecar.is_file():
            raise ChecksumValidationError(
                ChecksumErrorKind.FILE_NOT_FOUND, f"Checksum file not found: {sidecar}"
            )
        try:
            content = sidecar.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise ChecksumValidationError(
                ChecksumErrorKind.READ_ERROR, f"Unable to read {sidecar}: {exc}"
            ) from exc
        return parse_checksum(content, algorithm, self.path.name)

    def is_valid_checksum(self, algorithm: ChecksumAlgorithm | str) -> bool:
        """Compare the file against one sidecar.

        Raises:
            ChecksumValidationError: when the sidecar is missing, unreadable or
                malformed, the algorithm is unknown, or the content file cannot
                be read.

        Returns:
            True when the recorded digest matches the content.
        """
        algorithm = _coerce(algorithm)
        expected = self.read_checksum(algorithm)
        return self.calculate_checksum(algorithm) == expected

    def is_valid_checksums(self, algorithms: Iterable[ChecksumAlgorithm | str] = DEFAULT_ALGORITHMS) -> bool:
        """Check every existing sidecar; no sidecar at all counts as invalid."""
        present = [a for a in map(_coerce, algorithms) if self.checksum_path(a).is_file()]
        if not present:
            return False
        try:
            actual = self.calculate_checksums(present)
            for algorithm in present:
                if actual[algorithm] != self.read_checksum(algorithm):
                    logger.warning("Checksum mismatch for %s (%s)", self.path, algorithm.value)
                    return False
        except ChecksumValidationError as exc:
            logger.warning("Checksum validation failed for %s: %s", self.path, exc)
            return False
        return True

    def create_checksum(self, algorithm: ChecksumAlgorithm | str) -> Path:
        """Write ``<hex>  <filename>`` to the sidecar for ``algorithm``."""
        algorithm = _coerce(algorithm)
        sidecar = self.checksum_path(algorithm)
        digest = self.calculate_checksum(algorithm)
        sidecar.write_text(f"{digest}  {self.path.name}\n", encoding="utf-8")
        return sidecar

    def fix_checksums(self, algorithms: Iterable[ChecksumAlgorithm | str] = DEFAULT_ALGORITHMS) -> bool:
        """Rewrite every missing, malformed or wrong sidecar.

        Returns:
            False if the content file could not be read or a sidecar could
            not be written.
        """
        wanted = list(map(_coerce, algorithms))
        try:
            actual = self.calculate_checksums(wanted)
        except ChecksumValidationError as exc:
            logger.warning("Cannot fix checksums for %s: %s", self.path, exc)
            return False

        for algorithm in wanted:
            sidecar = self.checksum_path(algorithm)
            recorded: str | None = None
            try:
                recorded = self.read_checksum(algorithm)
            except ChecksumValidationError as exc:
                logger.debug("Rewriting %s: %s", sidecar, exc)
            if recorded == actual[algorithm]:
                continue
            try:
                sidecar.write_text(f"{actual[algorithm]}  {self.path.name}\n", encoding="utf-8")
            except OSError as exc:
                logger.warning("Unable to write %s: %s", sidecar, exc)
                return False
            logger.info("Fixed checksum file %s", sidecar)
        return True


def is_valid_checksum(path: str | Path, algorithm: ChecksumAlgorithm | str) -> bool:
    """Validate ``path`` against ``path.<algorithm>``; see ChecksummedFile.is_valid_checksum."""
    return ChecksummedFile(path).is_valid_checksum(algorithm)


def validate_checksum_file(sidecar: str | Path) -> bool:
    """Validate a sidecar against the content file it sits next to.

    The algorithm comes from the sidecar extension, so ``foo.jar.crc``
    fails with INVALID_FORMAT.

    Raises:
        ChecksumValidationError: see ChecksummedFile.is_valid_checksum.
    """
    sidecar = Path(sidecar)
    algorithm = ChecksumAlgorithm.from_extension(sidecar.suffix)
    content = sidecar.with_name(sidecar.name[: -len(sidecar.suffix)])
    return ChecksummedFile(content).is_valid_checksum(algorithm)
