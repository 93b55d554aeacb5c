"""
FirstFrame - Content registry

Local index of registered video IP assets: who uploaded them, what an unlock
costs, and where the protected file lives on the messaging platform.
"""

import logging
import re
import threading
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from storage import StorageBackend

logger = logging.getLogger(__name__)

REGISTRY_COLLECTION = "ip-registry"

UPLOADER_PREFIX = "TelegramUser_"
_UPLOADER_PATTERN = re.compile(rf"{UPLOADER_PREFIX}(\d+)")


def uploader_tag(identifier: int) -> str:
    """Uploader reference stored on content records."""
    return f"{UPLOADER_PREFIX}{int(identifier)}"


@dataclass
class ContentRecord:
    """A registered video IP asset."""

    content_id: str  # IP asset id on the ledger
    title: str
    uploader: str  # "TelegramUser_<id>"
    uploader_name: str | None = None
    token_instance_id: str | None = None
    royalty_amount: str | None = None
    channel_message_id: int | None = None
    video_file_id: str | None = None
    poster_url: str | None = None
    year: int | None = None
    registered_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def uploader_identifier(self) -> int | None:
        """Telegram id parsed from the uploader reference."""
        match = _UPLOADER_PATTERN.search(self.uploader or "")
        return int(match.group(1)) if match else None

    def display_uploader(self) -> str:
        if self.uploader_name:
            return self.uploader_name
        if self.uploader:
            return self.uploader.replace(UPLOADER_PREFIX, "User ")
        return "Unknown"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContentRecord":
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known})


class ContentRegistry:
    """Content records keyed by case-insensitive content id."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage
        self._lock = threading.RLock()

    def register(self, record: ContentRecord) -> ContentRecord:
        """Insert or replace a content record."""
        with self._lock:
            records = self.storage.load_collection(REGISTRY_COLLECTION)
            key = record.content_id.lower()
            records = [r for r in records if r.get("content_id", "").lower() != key]
            records.append(record.to_dict())
            self.storage.save_collection(REGISTRY_COLLECTION, records)
        logger.info("Registered content %s (%s)", record.content_id, record.title)
        return record

    def get(self, content_id: str) -> ContentRecord | None:
        key = content_id.lower()
        for data in self.storage.load_collection(REGISTRY_COLLECTION):
            if data.get("content_id", "").lower() == key:
                return ContentRecord.from_dict(data)
        return None

    def list_by_uploader(self, identifier: int) -> list[ContentRecord]:
        tag = uploader_tag(identifier)
        return [
            ContentRecord.from_dict(d)
            for d in self.storage.load_collection(REGISTRY_COLLECTION)
            if d.get("uploader") == tag
        ]
