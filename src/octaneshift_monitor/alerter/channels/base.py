"""Shared rate limiting and retry logic for HTTP alert channels."""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from octaneshift_monitor.alerter.models import FormattedAlert

logger = logging.getLogger(__name__)

QR_FILENAME = "topup.png"


def qr_png_bytes(alert: FormattedAlert) -> bytes | None:
    """Return the PNG bytes of the alert's QR code, if one is attached."""
    if not alert.qr_code:
        return None
    _, _, encoded = alert.qr_code.partition(",")
    return base64.b64decode(encoded)


@dataclass(frozen=True)
class SendAttempt:
    """Outcome of a single HTTP delivery attempt.

    ``retry_after`` is set when the remote service asked us to slow down.
    """

    ok: bool
    retry_after: float | None = None


class HttpAlertChannel:
    """Base class for channels that deliver alerts over HTTP.

    Subclasses implement ``_attempt`` for one request; this class provides
    a sliding-window rate limit, retries with exponential backoff and
    handling of remote rate limiting.
    """

    name = "http"

    def __init__(
        self,
        *,
        rate_limit_per_minute: int = 20,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the channel.

        Args:
            rate_limit_per_minute: Maximum messages per minute.
            max_retries: Maximum attempts per alert.
            retry_delay: Base delay between retries (exponential backoff).
            timeout: HTTP request timeout in seconds.
        """
        self.rate_limit_per_minute = rate_limit_per_minute
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout

        self._request_times: list[float] = []
        self._lock = asyncio.Lock()

    async def _wait_for_rate_limit(self) -> None:
        """Wait if rate limit is exceeded."""
        async with self._lock:
            now = asyncio.get_running_loop().time()
            self._request_times = [t for t in self._request_times if now - t < 60]

            if len(self._request_times) >= self.rate_limit_per_minute:
                wait_time = 60 - (now - self._request_times[0])
                if wait_time > 0:
                    logger.debug("%s rate limit hit, waiting %.2fs", self.name, wait_time)
                    await asyncio.sleep(wait_time)

            self._request_times.append(now)

    async def _attempt(self, client: httpx.AsyncClient, alert: FormattedAlert) -> SendAttempt:
        raise NotImplementedError

    async def send(self, alert: FormattedAlert) -> bool:
        """Send an alert, retrying on failure.

        Returns:
            True if delivery succeeded, False otherwise.
        """
        await self._wait_for_rate_limit()

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    result = await self._attempt(client, alert)
                if result.ok:
                    logger.info("%s alert delivered successfully", self.name.capitalize())
                    return True
                if result.retry_after is not None:
                    logger.warning(
                        "%s rate limited, retry after %ss", self.name.capitalize(), result.retry_after
                    )
                    await asyncio.sleep(result.retry_after)
                    continue
            except httpx.TimeoutException:
                logger.warning("%s timeout (attempt %d)", self.name.capitalize(), attempt + 1)
            except httpx.HTTPError as e:
                logger.error("%s HTTP error: %s", self.name.capitalize(), e)

            if attempt < self.max_retries - 1:
                await asyncio.sleep(self.retry_delay * (2**attempt))

        logger.error("%s delivery failed after all retries", self.name.capitalize())
        return False
