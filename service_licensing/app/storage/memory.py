"""
Process-local document store.
"""

import json
from typing import Any, Dict, Optional, Tuple

from service_licensing.app.storage.base import DocumentStore, VersionedDocument


class InMemoryDocumentStore(DocumentStore):
    """Same semantics as the Redis store; values are kept serialized so
    readers never share mutable state with writers."""

    def __init__(self, documents: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(**kwargs)
        self._documents: Dict[str, Tuple[str, int]] = {}
        for path, value in (documents or {}).items():
            self._documents[path] = (json.dumps(value), 1)

    async def read(self, path: str) -> VersionedDocument:
        stored = self._documents.get(path)
        if stored is None:
            return VersionedDocument(None, None)
        data, version = stored
        return VersionedDocument(json.loads(data), version)

    async def compare_and_set(self, path: str, value: Any, expected_version: Optional[int]) -> bool:
        stored = self._documents.get(path)
        current_version = stored[1] if stored else None
        if current_version != expected_version:
            return False
        self._documents[path] = (json.dumps(value), (current_version or 0) + 1)
        return True

    async def put(self, path: str, value: Any) -> None:
        stored = self._documents.get(path)
        self._documents[path] = (json.dumps(value), (stored[1] if stored else 0) + 1)

    def snapshot(self, path: str, default: Any = None) -> Any:
        """Synchronous read, for tests."""
        stored = self._documents.get(path)
        return json.loads(stored[0]) if stored else default
