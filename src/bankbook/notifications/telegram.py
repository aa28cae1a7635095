"""
Chat notifiers.

- TelegramNotifier: Bot API over requests
- LoggingNotifier: fallback when no bot token is configured
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..resolution.views import View
from .messages import format_view

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """A chat message could not be delivered."""

    pass


class Notifier(Protocol):
    def notify(self, message: str, chat_ids: Iterable[str]) -> int: ...

    def publish(self, chat_id: str, view: View) -> None: ...


class LoggingNotifier:
    """Writes messages to the log instead of a chat."""

    def notify(self, message: str, chat_ids: Iterable[str]) -> int:
        chats = [c for c in chat_ids if c]
        logger.info(f"Notification for {chats or 'nobody'}:\n{message}")
        return len(chats)

    def publish(self, chat_id: str, view: View) -> None:
        logger.info(f"Resolution prompt for {chat_id}:\n{format_view(view)}")


class TelegramNotifier:
    """
    Sends messages through the Telegram Bot API.

    Views are sent as text plus an inline keyboard built from their buttons.
    """

    DEFAULT_TIMEOUT = 15

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.telegram.org",
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
    ):
        self.base_url = f"{api_url.rstrip('/')}/bot{token}"
        self.timeout = timeout
        self.session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=0.5,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.session.post(
                f"{self.base_url}/{method}", json=payload, timeout=self.timeout
            )
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise NotificationError(f"Telegram request failed: {e}") from e
        except ValueError as e:
            raise NotificationError("Telegram returned non-JSON response") from e

        if not data.get("ok"):
            raise NotificationError(
                f"Telegram error {data.get('error_code')}: {data.get('description')}"
            )
        return data.get("result") or {}

    def send_message(
        self,
        chat_id: str,
        text: str,
        reply_markup: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return self._call("sendMessage", payload)

    def notify(self, message: str, chat_ids: Iterable[str]) -> int:
        """
        Send a message to several chats.

        One chat failing does not stop the others.

        Returns:
            Number of chats reached
        """
        sent = 0
        for chat_id in chat_ids:
            if not chat_id:
                continue
            try:
                self.send_message(chat_id, message)
                sent += 1
            except NotificationError as e:
                logger.error(f"Failed to notify chat {chat_id}: {e}")
        return sent

    def publish(self, chat_id: str, view: View) -> None:
        keyboard = [
            [{"text": button.label, "callback_data": button.callback} for button in row]
            for row in view.keyboard()
        ]
        markup = {"inline_keyboard": keyboard} if keyboard else None
        self.send_message(chat_id, format_view(view), reply_markup=markup)
