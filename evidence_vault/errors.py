"""Exception types for the evidence pipeline.

Resolution misses and degraded captures are not errors; they are recorded
as artifact statuses. Only the failures below interrupt normal flow.
"""

from typing import Optional


class EvidenceError(Exception):
    """Base class for evidence pipeline errors."""


class NavigationError(EvidenceError):
    """Navigation to a surface failed or timed out.

    Ends the remaining evidence states of the current entity.
    """

    def __init__(self, url: str, message: str):
        super().__init__(f"Navigation to {url} failed: {message}")
        self.url = url


class PackagingError(EvidenceError):
    """The entity directory could not be archived."""


class UploadError(EvidenceError):
    """The archive could not be uploaded to durable storage."""

    def __init__(self, key: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"Upload of {key} failed: {message}")
        self.key = key
        self.cause = cause


class StorageConfigError(EvidenceError):
    """Durable storage is not configured correctly."""
