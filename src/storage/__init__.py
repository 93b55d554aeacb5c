"""
Storage abstraction layer for FirstFrame.

Records are persisted as whole-collection snapshots:

- JSON file (default): one file per collection under a data directory
- Memory (for testing)

Usage:
    from storage import get_storage_backend

    storage = get_storage_backend()
    royalties = storage.load_collection("pending-royalties")
    storage.save_collection("pending-royalties", royalties)
"""

import os

from storage.base import StorageBackend, StorageError, StorageReadError, StorageWriteError
from storage.json_file import JSONFileStorage
from storage.memory import MemoryStorage

__all__ = [
    "JSONFileStorage",
    "MemoryStorage",
    "StorageBackend",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    "get_storage_backend",
]


def get_storage_backend(backend_type: str | None = None, data_dir: str | None = None) -> StorageBackend:
    """
    Get the configured storage backend based on environment variables.

    Environment variables:
        STORAGE_BACKEND: Backend type ("json", "memory")
        FIRSTFRAME_DATA_DIR: Directory for JSON collections (default: data)

    Returns:
        Configured StorageBackend instance
    """
    backend_type = (backend_type or os.getenv("STORAGE_BACKEND", "json")).lower()

    if backend_type == "json":
        return JSONFileStorage(data_dir or os.getenv("FIRSTFRAME_DATA_DIR", "data"))

    elif backend_type == "memory":
        return MemoryStorage()

    else:
        raise StorageError(f"Unknown storage backend: {backend_type}")
