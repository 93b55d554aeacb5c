"""
FirstFrame - Puzzle completion tracking

Records every solved puzzle for user statistics.
"""

import logging
import threading
from datetime import UTC, datetime
from typing import Any

from storage import StorageBackend

logger = logging.getLogger(__name__)

COMPLETIONS_COLLECTION = "puzzle-completions"


class PuzzleCompletionTracker:
    """Append-only log of puzzle completions."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage
        self._lock = threading.RLock()

    def record_completion(
        self,
        user_id: int,
        content_id: str | None,
        session_id: str,
        time_seconds: float = 0,
    ) -> dict[str, Any]:
        now = datetime.now(UTC)
        completion = {
            "id": f"{user_id}_{content_id}_{int(now.timestamp() * 1000)}",
            "user_id": user_id,
            "content_id": content_id,
            "puzzle_id": session_id,
            "completed_at": now.isoformat(),
            "time_seconds": time_seconds,
        }
        with self._lock:
            completions = self.storage.load_collection(COMPLETIONS_COLLECTION)
            completions.append(completion)
            self.storage.save_collection(COMPLETIONS_COLLECTION, completions)

        logger.info("Recorded puzzle completion %s", completion["id"])
        return completion

    def list_by_user(self, user_id: int) -> list[dict[str, Any]]:
        return [
            c for c in self.storage.load_collection(COMPLETIONS_COLLECTION)
            if c.get("user_id") == user_id
        ]

    def count_by_user(self, user_id: int) -> int:
        return len(self.list_by_user(user_id))

    def get_stats(self, user_id: int) -> dict[str, Any]:
        """Count and fastest time for a user."""
        completions = self.list_by_user(user_id)
        times = [c["time_seconds"] for c in completions if c.get("time_seconds")]
        return {
            "completed_count": len(completions),
            "fastest_time": min(times) if times else None,
            "contents": sorted({c["content_id"] for c in completions if c.get("content_id")}),
        }
