"""
Mutation-driven cache invalidation.

The schema registry is injected as a read-only capability so the host's
content-type definitions (or a test double) can be swapped freely.
"""

from .registry import SchemaRegistry, StaticSchemaRegistry
from .invalidator import CacheInvalidator, LifecycleEvent

__all__ = ["SchemaRegistry", "StaticSchemaRegistry", "CacheInvalidator", "LifecycleEvent"]
