"""Discord webhook channel implementation."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from octaneshift_monitor.alerter.channels.base import (
    QR_FILENAME,
    HttpAlertChannel,
    SendAttempt,
    qr_png_bytes,
)

if TYPE_CHECKING:
    import httpx

    from octaneshift_monitor.alerter.models import FormattedAlert

logger = logging.getLogger(__name__)


class DiscordChannel(HttpAlertChannel):
    """Sends alerts to a Discord webhook as embeds.

    A QR code, when present, is uploaded with the message and shown as the
    embed image.
    """

    name = "discord"

    def __init__(
        self,
        webhook_url: str,
        *,
        rate_limit_per_minute: int = 30,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 10.0,
    ) -> None:
        """Initialize Discord channel.

        Args:
            webhook_url: Discord webhook URL.
            rate_limit_per_minute: Maximum messages per minute (Discord limit is 30).
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
        self.webhook_url = webhook_url

    async def _attempt(self, client: httpx.AsyncClient, alert: FormattedAlert) -> SendAttempt:
        embed = dict(alert.discord_embed)
        photo = qr_png_bytes(alert)
        if photo is None:
            response = await client.post(self.webhook_url, json={"embeds": [embed]})
        else:
            embed["image"] = {"url": f"attachment://{QR_FILENAME}"}
            response = await client.post(
                self.webhook_url,
                data={"payload_json": json.dumps({"embeds": [embed]})},
                files={"files[0]": (QR_FILENAME, photo, "image/png")},
            )

        if response.status_code in (200, 204):
            return SendAttempt(ok=True)

        if response.status_code == 429:
            try:
                retry_after = response.json().get("retry_after", 1.0)
            except ValueError:
                retry_after = 1.0
            return SendAttempt(ok=False, retry_after=float(retry_after))

        logger.error("Discord webhook failed: %s %s", response.status_code, response.text)
        return SendAttempt(ok=False)
