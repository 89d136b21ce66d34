"""Error types raised by the offline cache layer."""

from __future__ import annotations


class StorageError(RuntimeError):
    """Underlying cache storage failed (quota, unavailable, corrupt)."""


class NetworkError(RuntimeError):
    """Network request failed before a response was received."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url
