"""Telegram Bot API channel implementation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from octaneshift_monitor.alerter.channels.base import (
    QR_FILENAME,
    HttpAlertChannel,
    SendAttempt,
    qr_png_bytes,
)

if TYPE_CHECKING:
    from octaneshift_monitor.alerter.models import FormattedAlert

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org/bot{token}/sendMessage"
TELEGRAM_PHOTO_URL = "https://api.telegram.org/bot{token}/sendPhoto"


class TelegramChannel(HttpAlertChannel):
    """Sends alerts to a Telegram chat as MarkdownV2 messages.

    When the alert carries a QR code it follows the message as a photo.
    """

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        rate_limit_per_minute: int = 20,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 10.0,
    ) -> None:
        """Initialize Telegram channel.

        Args:
            bot_token: Telegram bot token.
            chat_id: Target chat/channel ID.
            rate_limit_per_minute: Maximum messages per minute.
            max_retries: Maximum retry attempts on failure.
            retry_delay: Base delay between retries (exponential backoff).
            timeout: HTTP request timeout in seconds.
        """
        super().__init__(
            rate_limit_per_minute=rate_limit_per_minute,
            max_retries=max_retries,
            retry_delay=retry_delay,
            timeout=timeout,
        )
        self.chat_id = chat_id
        self._api_url = TELEGRAM_API_BASE.format(token=bot_token)
        self._photo_url = TELEGRAM_PHOTO_URL.format(token=bot_token)

    async def _attempt(self, client: httpx.AsyncClient, alert: FormattedAlert) -> SendAttempt:
        payload = {
            "chat_id": self.chat_id,
            "text": alert.telegram_markdown,
            "parse_mode": "MarkdownV2",
            "disable_web_page_preview": True,
        }
        response = await client.post(self._api_url, json=payload)
        try:
            result = response.json()
        except ValueError:
            logger.error("Telegram returned a non-JSON response: HTTP %s", response.status_code)
            return SendAttempt(ok=False)

        if result.get("ok"):
            await self._send_qr(client, alert)
            return SendAttempt(ok=True)

        error_code = result.get("error_code", 0)
        if error_code == 429:
            retry_after = result.get("parameters", {}).get("retry_after", 1)
            return SendAttempt(ok=False, retry_after=float(retry_after))

        logger.error(
            "Telegram API error: %s - %s", error_code, result.get("description", "Unknown error")
        )
        return SendAttempt(ok=False)

    async def _send_qr(self, client: httpx.AsyncClient, alert: FormattedAlert) -> None:
        # The text alert is already delivered; a failed photo is not retried
        photo = qr_png_bytes(alert)
        if photo is None:
            return
        try:
            response = await client.post(
                self._photo_url,
                data={"chat_id": self.chat_id, "caption": "Scan to top up"},
                files={"photo": (QR_FILENAME, photo, "image/png")},
            )
        except httpx.HTTPError as e:
            logger.warning("Telegram QR code not sent: %s", e)
            return
        if response.status_code != 200:
            logger.warning("Telegram QR code not sent: HTTP %s", response.status_code)
