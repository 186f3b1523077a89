"""
Document storage package.

Whole-document JSON storage with version tokens. All persisted mutation
goes through ``DocumentStore.optimistic_update``.
"""

from service_licensing.app.storage.base import DocumentStore, VersionedDocument
from service_licensing.app.storage.memory import InMemoryDocumentStore
from service_licensing.app.storage.redis_store import RedisDocumentStore

__all__ = ["DocumentStore", "VersionedDocument", "InMemoryDocumentStore", "RedisDocumentStore"]
