"""
JSON file storage backend.

This is the default storage backend. Each collection lives in its own
``<data_dir>/<name>.json`` file holding a JSON array of records, rewritten
wholesale on every save.
"""

import json
import os
import re
import shutil
import threading
from datetime import datetime
from typing import Any

from storage.base import (
    StorageBackend,
    StorageError,
    StorageReadError,
    StorageWriteError,
)

_COLLECTION_NAME = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


class JSONFileStorage(StorageBackend):
    """
    JSON file storage backend.

    Thread-safe operations using a single lock shared by all collections.
    Writes go to a temporary file that is atomically renamed over the
    previous snapshot, so a crash mid-write leaves the old file intact.
    """

    def __init__(self, data_dir: str = "data"):
        """
        Initialize JSON file storage.

        Args:
            data_dir: Directory holding one JSON file per collection
        """
        self.data_dir = data_dir
        self._lock = threading.Lock()

    def _path(self, name: str) -> str:
        if not _COLLECTION_NAME.match(name):
            raise StorageError(f"Invalid collection name: {name!r}")
        return os.path.join(self.data_dir, f"{name}.json")

    def load_collection(self, name: str) -> list[dict[str, Any]]:
        """
        Load a collection from its JSON file.

        Returns:
            List of records, or an empty list if the file doesn't exist.

        Raises:
            StorageReadError: If reading fails
        """
        path = self._path(name)
        with self._lock:
            try:
                with open(path, "r", encoding="utf-8") as f:
                    raw_data = f.read()
            except FileNotFoundError:
                return []
            except PermissionError as e:
                raise StorageReadError(f"Permission denied: {path}") from e
            except OSError as e:
                raise StorageReadError(f"Failed to read {path}: {e}") from e

            if not raw_data.strip():
                return []

            try:
                data = json.loads(raw_data)
            except json.JSONDecodeError as e:
                raise StorageReadError(f"Invalid JSON format in {path}: {e}") from e

            if not isinstance(data, list):
                raise StorageReadError(f"Collection {name} is not a JSON array")
            return data

    def save_collection(self, name: str, records: list[dict[str, Any]]) -> None:
        """
        Save a collection to its JSON file.

        Raises:
            StorageWriteError: If writing fails
        """
        path = self._path(name)
        with self._lock:
            try:
                os.makedirs(self.data_dir, exist_ok=True)
                data = json.dumps(records, indent=2, ensure_ascii=False)

                temp_path = f"{path}.tmp"
                with open(temp_path, "w", encoding="utf-8") as f:
                    f.write(data)

                os.replace(temp_path, path)

            except PermissionError as e:
                raise StorageWriteError(f"Permission denied: {path}") from e
            except (OSError, TypeError, ValueError) as e:
                raise StorageWriteError(f"Failed to save {name}: {e}") from e

    def is_available(self) -> bool:
        """
        Check if file storage is available.

        Returns:
            True if the data directory exists (or can be created) and is writable
        """
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            return os.access(self.data_dir, os.W_OK)
        except OSError:
            return False

    def list_collections(self) -> list[str]:
        if not os.path.isdir(self.data_dir):
            return []
        return sorted(
            filename[: -len(".json")]
            for filename in os.listdir(self.data_dir)
            if filename.endswith(".json")
        )

    def get_info(self) -> dict[str, Any]:
        """Get storage backend information."""
        info = super().get_info()
        info["data_dir"] = self.data_dir
        return info

    def backup(self, name: str, backup_path: str | None = None) -> str:
        """
        Create a backup copy of a collection file.

        Args:
            name: Collection name
            backup_path: Path for backup file (default: adds timestamp suffix)

        Returns:
            Path to the backup file

        Raises:
            StorageError: If backup fails
        """
        path = self._path(name)
        if backup_path is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = f"{path}.{timestamp}.backup"

        with self._lock:
            if not os.path.exists(path):
                raise StorageError(f"No file to backup for collection {name}")
            try:
                shutil.copy2(path, backup_path)
            except OSError as e:
                raise StorageError(f"Backup failed: {e}") from e
        return backup_path
