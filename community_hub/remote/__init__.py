"""
Remote data sources for the managed store.
"""
from .base import RemoteDataSource, matches_filters, sort_rows
from .memory import InMemoryRemoteSource
from .rest import RestRemoteSource

__all__ = [
    "RemoteDataSource",
    "matches_filters",
    "sort_rows",
    "InMemoryRemoteSource",
    "RestRemoteSource",
]
