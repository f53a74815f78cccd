"""Alert deduplication with a per-entry cool-down.

Each (address, chain) pair is either Quiet (no state stored) or Alerted
(a state with ``last_alerted_at``). Alerted returns to Quiet when a balance
at or above threshold is observed, or is re-entered once the cool-down has
elapsed while the balance is still low.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from octaneshift_monitor.monitor.models import AlertState

if TYPE_CHECKING:
    from octaneshift_monitor.monitor.models import WatchEntry
    from octaneshift_monitor.monitor.state import AlertStateStore

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN = timedelta(hours=1)


class AlertDeduplicator:
    """Suppresses repeated alerts for entries that are already alerted."""

    def __init__(
        self,
        store: AlertStateStore,
        *,
        cooldown: timedelta = DEFAULT_COOLDOWN,
    ) -> None:
        """Initialize the deduplicator.

        Args:
            store: Alert state backend.
            cooldown: Minimum time between two alerts for one entry.
        """
        self.store = store
        self.cooldown = cooldown

    @property
    def cooldown_seconds(self) -> float:
        """Return the cool-down in seconds."""
        return self.cooldown.total_seconds()

    async def get_state(self, entry: WatchEntry) -> AlertState | None:
        """Return the outstanding alert for an entry, if any."""
        return await self.store.get(entry.key)

    async def should_dispatch(
        self, entry: WatchEntry, below_threshold: bool, now: datetime
    ) -> bool:
        """Check whether an alert would be dispatched, without changing state.

        Use ``claim`` for the actual decision; a separate check followed by
        ``record_dispatch`` is not atomic.
        """
        if not below_threshold:
            return False
        state = await self.store.get(entry.key)
        return state is None or not state.is_cooling_down(now, self.cooldown_seconds)

    async def record_dispatch(self, entry: WatchEntry, now: datetime) -> AlertState:
        """Unconditionally mark an entry as Alerted at ``now``."""
        state = AlertState(
            key=entry.key,
            address=entry.address,
            chain=str(entry.chain),
            last_alerted_at=now,
        )
        await self.store.put(state)
        return state

    async def claim(self, entry: WatchEntry, below_threshold: bool, now: datetime) -> bool:
        """Atomically decide whether to dispatch and record the dispatch.

        Args:
            entry: The watch entry being evaluated.
            below_threshold: Result of the threshold policy.
            now: Evaluation time.

        Returns:
            True if the caller should dispatch an alert.
        """
        if not below_threshold:
            if await self.store.clear(entry.key):
                logger.info(
                    "Balance recovered for %s on %s, alert state cleared",
                    entry.masked_address,
                    entry.chain,
                )
            return False

        claimed = await self.store.try_claim(
            entry.key,
            entry.address,
            str(entry.chain),
            now,
            self.cooldown_seconds,
        )
        if not claimed:
            logger.debug(
                "Alert suppressed for %s on %s (cool-down active)",
                entry.masked_address,
                entry.chain,
            )
        return claimed

    async def acknowledge(self, entry: WatchEntry) -> bool:
        """Mark an entry's outstanding alert as acknowledged."""
        acknowledged = await self.store.acknowledge(entry.key)
        if acknowledged:
            logger.info("Alert acknowledged for %s on %s", entry.masked_address, entry.chain)
        return acknowledged
