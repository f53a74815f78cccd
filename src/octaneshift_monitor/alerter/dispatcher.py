"""Alert dispatcher for multi-channel delivery."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from prometheus_client import Counter

from octaneshift_monitor.alerter.formatter import AlertFormatter
from octaneshift_monitor.redaction import mask_address

if TYPE_CHECKING:
    from octaneshift_monitor.alerter.models import AlertMessage, FormattedAlert

logger = logging.getLogger(__name__)

CHANNEL_DELIVERIES = Counter(
    "octaneshift_channel_deliveries_total",
    "Alert deliveries per channel by status (delivered, failed, skipped)",
    ["channel", "status"],
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AlertChannel(Protocol):
    """Protocol for alert delivery channels."""

    name: str

    async def send(self, alert: FormattedAlert) -> bool:
        """Send alert to channel. Returns True on success."""
        ...


@dataclass
class CircuitBreaker:
    """Failure tracking for one delivery channel.

    The breaker opens after ``failure_threshold`` consecutive failures.
    Once ``recovery_timeout_seconds`` have passed since the last failure,
    up to ``half_open_max_attempts`` trial deliveries are let through; the
    first success closes it again.
    """

    failure_threshold: int = 5
    recovery_timeout_seconds: float = 60
    half_open_max_attempts: int = 3
    failure_count: int = 0
    last_failure_time: datetime | None = None
    is_open: bool = False
    half_open_attempts: int = 0

    def allows(self, now: datetime) -> bool:
        """Return True if a delivery may be attempted at ``now``."""
        if not self.is_open:
            return True
        if self.last_failure_time is None:
            return False
        elapsed = (now - self.last_failure_time).total_seconds()
        return (
            elapsed >= self.recovery_timeout_seconds
            and self.half_open_attempts < self.half_open_max_attempts
        )

    def record_success(self) -> None:
        self.failure_count = 0
        self.last_failure_time = None
        self.is_open = False
        self.half_open_attempts = 0

    def record_failure(self, now: datetime) -> bool:
        """Count a failed delivery.

        Returns:
            True if this failure opened the breaker.
        """
        self.failure_count += 1
        self.last_failure_time = now
        if self.is_open:
            self.half_open_attempts += 1
            return False
        if self.failure_count >= self.failure_threshold:
            self.is_open = True
            return True
        return False

    def to_dict(self) -> dict[str, object]:
        return {
            "is_open": self.is_open,
            "failure_count": self.failure_count,
            "half_open_attempts": self.half_open_attempts,
            "last_failure": (
                self.last_failure_time.isoformat() if self.last_failure_time else None
            ),
        }


@dataclass
class DispatchResult:
    """Result of dispatching an alert to all channels."""

    success_count: int
    failure_count: int
    channel_results: dict[str, bool] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def all_succeeded(self) -> bool:
        """Return True if all channels succeeded."""
        return self.failure_count == 0 and self.success_count > 0

    @property
    def delivered(self) -> bool:
        """Return True if at least one channel accepted the alert."""
        return self.success_count > 0


class AlertDispatcher:
    """Formats alert messages and delivers them to every channel.

    Each AlertMessage is formatted once and sent concurrently to all
    channels. A channel whose breaker is open is skipped and counts as a
    failed delivery for that dispatch.
    """

    def __init__(
        self,
        channels: list[AlertChannel],
        *,
        formatter: AlertFormatter | None = None,
        failure_threshold: int = 5,
        recovery_timeout_seconds: float = 60,
        half_open_max_attempts: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            channels: Delivery channels.
            formatter: Renders messages for each channel type.
            failure_threshold: Consecutive failures before a breaker opens.
            recovery_timeout_seconds: Wait before probing an open breaker.
            half_open_max_attempts: Trial deliveries allowed per open period.
            clock: Returns the current time.
        """
        self.channels = channels
        self.formatter = formatter or AlertFormatter()
        self.failure_threshold = failure_threshold
        self.recovery_timeout_seconds = recovery_timeout_seconds
        self.half_open_max_attempts = half_open_max_attempts
        self._clock = clock
        self.breakers: dict[str, CircuitBreaker] = {ch.name: self._new_breaker() for ch in channels}

    def _new_breaker(self) -> CircuitBreaker:
        return CircuitBreaker(
            failure_threshold=self.failure_threshold,
            recovery_timeout_seconds=self.recovery_timeout_seconds,
            half_open_max_attempts=self.half_open_max_attempts,
        )

    async def _deliver(self, channel: AlertChannel, alert: FormattedAlert) -> bool:
        breaker = self.breakers[channel.name]
        if not breaker.allows(self._clock()):
            logger.debug("Skipping %s, circuit open", channel.name)
            CHANNEL_DELIVERIES.labels(channel=channel.name, status="skipped").inc()
            return False
        if breaker.is_open:
            logger.info(
                "Circuit half-open for %s, attempt %d",
                channel.name,
                breaker.half_open_attempts + 1,
            )

        try:
            ok = await channel.send(alert)
        except Exception as e:
            logger.error("Error sending to %s: %s", channel.name, e)
            ok = False

        if ok:
            breaker.record_success()
        elif breaker.record_failure(self._clock()):
            logger.warning(
                "Circuit opened for %s after %d failures", channel.name, breaker.failure_count
            )
        CHANNEL_DELIVERIES.labels(
            channel=channel.name, status="delivered" if ok else "failed"
        ).inc()
        return ok

    async def dispatch(self, message: AlertMessage) -> DispatchResult:
        """Format and deliver an alert to all channels.

        Args:
            message: Alert message to deliver.

        Returns:
            DispatchResult with per-channel status.
        """
        if not self.channels:
            logger.warning("No channels configured for dispatch")
            return DispatchResult(success_count=0, failure_count=0)

        alert = self.formatter.format(message)
        outcomes = await asyncio.gather(*(self._deliver(ch, alert) for ch in self.channels))
        channel_results = {
            ch.name: ok for ch, ok in zip(self.channels, outcomes, strict=True)
        }
        success_count = sum(outcomes)

        logger.info(
            "Dispatch for %s on %s: %d/%d channels succeeded",
            mask_address(message.wallet),
            message.chain,
            success_count,
            len(channel_results),
        )
        return DispatchResult(
            success_count=success_count,
            failure_count=len(channel_results) - success_count,
            channel_results=channel_results,
        )

    def get_circuit_status(self) -> dict[str, dict[str, object]]:
        """Return breaker state for every channel."""
        return {name: breaker.to_dict() for name, breaker in self.breakers.items()}

    def reset_circuit(self, channel_name: str) -> bool:
        """Close a channel's breaker manually.

        Returns:
            True if the channel exists.
        """
        if channel_name not in self.breakers:
            return False
        self.breakers[channel_name] = self._new_breaker()
        logger.info("Circuit reset for %s", channel_name)
        return True
