"""
Abstract base class for storage backends.

This module defines the interface that all storage backends must implement.
Records are kept in flat named collections (lists of JSON-compatible dicts)
that are read and rewritten as a whole snapshot.
"""

from abc import ABC, abstractmethod
from typing import Any


class StorageError(Exception):
    """Base exception for storage-related errors."""
    pass


class StorageReadError(StorageError):
    """Raised when reading from storage fails."""
    pass


class StorageWriteError(StorageError):
    """Raised when writing to storage fails."""
    pass


class StorageBackend(ABC):
    """
    Abstract base class for collection storage backends.

    All storage backends must implement these methods to provide
    a consistent interface for ledger persistence.
    """

    @abstractmethod
    def load_collection(self, name: str) -> list[dict[str, Any]]:
        """
        Load every record of a collection.

        Args:
            name: Collection name (e.g. "pending-royalties")

        Returns:
            List of records; an empty list if the collection does not exist.

        Raises:
            StorageReadError: If reading fails
        """
        pass

    @abstractmethod
    def save_collection(self, name: str, records: list[dict[str, Any]]) -> None:
        """
        Replace the stored snapshot of a collection.

        Args:
            name: Collection name
            records: Complete list of records to persist

        Raises:
            StorageWriteError: If writing fails
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if the storage backend is available and ready.

        Returns:
            True if storage is accessible, False otherwise
        """
        pass

    def list_collections(self) -> list[str]:
        """Names of the collections currently stored."""
        return []

    def count(self, name: str) -> int:
        """Number of records in a collection."""
        return len(self.load_collection(name))

    def get_info(self) -> dict[str, Any]:
        """
        Get information about the storage backend.

        Returns:
            Dictionary with backend type, status, and collections
        """
        return {
            "backend_type": self.__class__.__name__,
            "available": self.is_available(),
            "collections": self.list_collections(),
        }

    def close(self) -> None:
        """
        Release resources held by the backend.

        Default implementation does nothing.
        """
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - closes the backend."""
        self.close()
        return False
