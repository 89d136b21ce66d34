"""Shared constants and error types."""
from shared.errors import NetworkError, StorageError

__all__ = [
    'NetworkError',
    'StorageError',
]
