"""
Entity cache package.

One snapshot per collection, refreshed wholesale on TTL expiry and patched
in place after writebacks.
"""

from service_licensing.app.cache.entity_cache import EntityCache, EntityKind

__all__ = ["EntityCache", "EntityKind"]
