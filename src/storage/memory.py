"""
In-memory storage backend.

This backend keeps collections in memory only, useful for:
- Unit testing
- Development
- Ephemeral deployments
"""

import copy
import threading
from typing import Any

from storage.base import StorageBackend


class MemoryStorage(StorageBackend):
    """
    In-memory storage backend.

    All data is lost when the process exits. Thread-safe operations.
    """

    def __init__(self):
        """Initialize empty memory storage."""
        self._collections: dict[str, list[dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def load_collection(self, name: str) -> list[dict[str, Any]]:
        with self._lock:
            # Deep copy so callers cannot mutate the stored snapshot
            return copy.deepcopy(self._collections.get(name, []))

    def save_collection(self, name: str, records: list[dict[str, Any]]) -> None:
        with self._lock:
            self._collections[name] = copy.deepcopy(records)

    def is_available(self) -> bool:
        """Memory storage is always available."""
        return True

    def list_collections(self) -> list[str]:
        with self._lock:
            return sorted(self._collections)

    def clear(self) -> None:
        """Drop every collection."""
        with self._lock:
            self._collections = {}
