"""
FirstFrame - Messaging transport

Delivers unlocked videos to users. Captions are sent as plain text, so
titles and names need no escaping. Content is sent protected (no forwarding
or saving) right after an unlock and re-sent unprotected once the royalty
is paid.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import requests

from royalty_errors import DeliveryError

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
DEFAULT_TIMEOUT = 30


class MessagingTransport(ABC):
    """A chat platform that can send videos to a user."""

    @abstractmethod
    def send_video(self, chat_id: int, file_ref: str, caption: str | None = None,
                   protect_content: bool = False) -> int:
        """
        Send a stored video by file reference.

        Returns:
            Id of the delivered message

        Raises:
            DeliveryError: If the platform rejected the send
        """

    @abstractmethod
    def copy_message(self, chat_id: int, from_chat_id: str, message_id: int,
                     caption: str | None = None, protect_content: bool = False) -> int:
        """Copy a message (e.g. a channel post) into a user's chat."""

    def deliver(
        self,
        chat_id: int,
        video_file_id: str | None = None,
        channel_id: str | None = None,
        channel_message_id: int | None = None,
        caption: str | None = None,
        protect_content: bool = False,
    ) -> int:
        """
        Deliver content by whichever reference is available.

        The file id is preferred; a channel message is copied otherwise.

        Raises:
            DeliveryError: If no reference is usable or the send failed
        """
        if video_file_id:
            return self.send_video(chat_id, video_file_id, caption=caption,
                                   protect_content=protect_content)
        if channel_id and channel_message_id:
            return self.copy_message(chat_id, channel_id, channel_message_id,
                                     caption=caption, protect_content=protect_content)
        raise DeliveryError("No deliverable reference for this content")


class TelegramTransport(MessagingTransport):
    """Telegram Bot API transport."""

    def __init__(self, bot_token: str, timeout: int = DEFAULT_TIMEOUT):
        if not bot_token:
            raise ValueError("bot_token is required")
        self.api_url = f"{TELEGRAM_API_BASE}/bot{bot_token}"
        self.timeout = timeout
        self.session = requests.Session()

    def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.session.post(f"{self.api_url}/{method}", json=payload,
                                         timeout=self.timeout)
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise DeliveryError(f"Telegram {method} request failed: {e}") from e
        except ValueError as e:
            raise DeliveryError(f"Telegram {method} returned a non-JSON response") from e

        if not data.get("ok"):
            raise DeliveryError(
                f"Telegram {method} failed: {data.get('description', 'unknown error')}",
                error_code=data.get("error_code"),
            )
        return data["result"]

    def send_video(self, chat_id: int, file_ref: str, caption: str | None = None,
                   protect_content: bool = False) -> int:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "video": file_ref,
            "protect_content": protect_content,
        }
        if caption:
            payload["caption"] = caption
        result = self._call("sendVideo", payload)
        return result["message_id"]

    def copy_message(self, chat_id: int, from_chat_id: str, message_id: int,
                     caption: str | None = None, protect_content: bool = False) -> int:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "from_chat_id": from_chat_id,
            "message_id": message_id,
            "protect_content": protect_content,
        }
        if caption:
            payload["caption"] = caption
        result = self._call("copyMessage", payload)
        return result["message_id"]


class MockMessagingTransport(MessagingTransport):
    """Records deliveries in memory. Set ``fail`` to make every send fail."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []
        self.fail = False
        self._next_message_id = 1000

    def _record(self, kind: str, chat_id: int, ref: Any, caption: str | None,
                protect_content: bool) -> int:
        if self.fail:
            raise DeliveryError(f"Mock {kind} to {chat_id} failed")
        self._next_message_id += 1
        self.sent.append(
            {
                "kind": kind,
                "chat_id": chat_id,
                "ref": ref,
                "caption": caption,
                "protect_content": protect_content,
                "message_id": self._next_message_id,
            }
        )
        return self._next_message_id

    def send_video(self, chat_id: int, file_ref: str, caption: str | None = None,
                   protect_content: bool = False) -> int:
        return self._record("video", chat_id, file_ref, caption, protect_content)

    def copy_message(self, chat_id: int, from_chat_id: str, message_id: int,
                     caption: str | None = None, protect_content: bool = False) -> int:
        return self._record("copy", chat_id, (from_chat_id, message_id), caption, protect_content)
