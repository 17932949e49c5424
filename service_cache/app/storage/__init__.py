"""
Storage providers for cached responses.

Three variants share one contract (``CacheProvider``): an in-process LRU,
a single Redis node, and a Redis Cluster. The variant is fixed by
configuration at startup; see ``factory.create_provider``.
"""

from .base import CacheEntry, CacheProvider
from .factory import create_provider

__all__ = ["CacheEntry", "CacheProvider", "create_provider"]
