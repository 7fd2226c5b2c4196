"""Custom exceptions for RepoKeeper."""

from __future__ import annotations

from enum import Enum


class RepoKeeperError(Exception):
    """Base exception for RepoKeeper."""


class LayoutParseError(RepoKeeperError):
    """Raised when a path does not match the grammar of a repository layout.

    Attributes:
        path: The offending repository-relative path.
        reason: One of the fixed reason strings; tooling greps for these.
    """

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{reason}: {path}")
        self.path = path
        self.reason = reason


class ChecksumErrorKind(str, Enum):
    """Why a checksum could not be validated."""

    INVALID_FORMAT = "INVALID_FORMAT"
    READ_ERROR = "READ_ERROR"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"


class ChecksumValidationError(RepoKeeperError):
    """Raised when a checksum sidecar cannot be used to validate a file."""

    def __init__(self, kind: ChecksumErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class ConsumerError(RepoKeeperError):
    """Raised by a consumer when it cannot process a file."""


class RepositoryScanError(RepoKeeperError):
    """Raised when a repository cannot be scanned at all."""


class PolicyError(RepoKeeperError):
    """Raised when a policy code or option is not recognized."""


class PolicyViolationError(RepoKeeperError):
    """Raised when a download policy refuses a transfer."""


class MetadataNotFoundError(RepoKeeperError):
    """Raised when a maven-metadata.xml file cannot be found."""


class MetadataParseError(RepoKeeperError):
    """Raised when a maven-metadata.xml file cannot be parsed."""


class ConversionError(RepoKeeperError):
    """Raised when an artifact cannot be converted between layouts."""


class RemoteFetchError(RepoKeeperError):
    """Raised when a remote repository transfer fails."""


class PomNotFoundError(RepoKeeperError):
    """Raised when a POM file cannot be found."""


class PomParseError(RepoKeeperError):
    """Raised when a POM file cannot be parsed."""


class PomModelError(RepoKeeperError):
    """Raised when required project model fields are missing or invalid."""
