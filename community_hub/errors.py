"""
Typed errors for the cache and remote layers.

Cache errors never leave the cache store; remote errors are surfaced to
callers (reads only when no cached fallback exists, writes always after
rollback).
"""
from typing import Optional


class CacheError(Exception):
    """A failure of the key/value medium backing the cache store."""


class RemoteError(Exception):
    """Base class for failures reported by the remote data source."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkError(RemoteError):
    """Transport failure: connection refused, timeout, or a 5xx response."""


class RejectedError(RemoteError):
    """The server understood the request and refused it."""


class NotFoundError(RemoteError):
    """The requested entity does not exist."""

    def __init__(self, message: str, status_code: Optional[int] = 404):
        super().__init__(message, status_code=status_code)
