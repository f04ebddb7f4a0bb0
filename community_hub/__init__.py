"""
Community Hub - client-resident caching and optimistic sync for a
community app backed by a managed remote store.
"""

__version__ = "0.3.0"
