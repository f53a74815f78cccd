"""Alert history tracking.

Every dispatch attempt for a watched entry is recorded with the channels
that were tried and the ones that accepted it, so operators can look back
at what was sent for a wallet. Deduplication is not done here; it lives in
the alert state store.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol

from redis.exceptions import RedisError

from octaneshift_monitor.errors import AlertHistoryError
from octaneshift_monitor.redaction import mask_address

if TYPE_CHECKING:
    from octaneshift_monitor.alerter.dispatcher import DispatchResult
    from octaneshift_monitor.alerter.models import AlertMessage

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30
DEFAULT_MEMORY_CAPACITY = 1000


@dataclass
class AlertRecord:
    """Record of a dispatched alert.

    Attributes:
        alert_id: Unique identifier for this alert.
        entry_key: Key of the watch entry (``chain:address``).
        address: Wallet address.
        chain: Chain alias.
        balance: Balance that triggered the alert.
        threshold: Threshold the balance fell below.
        suggested_top_up: Top-up amount carried in the deep link.
        deep_link: Top-up URL sent with the alert.
        channels_attempted: Channels we tried to send to.
        channels_succeeded: Channels that accepted the alert.
        created_at: When the alert was dispatched.
    """

    alert_id: str
    entry_key: str
    address: str
    chain: str
    balance: Decimal
    threshold: Decimal
    suggested_top_up: Decimal
    deep_link: str
    channels_attempted: list[str]
    channels_succeeded: list[str]
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def delivered(self) -> bool:
        return bool(self.channels_succeeded)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for storage."""
        return {
            "alert_id": self.alert_id,
            "entry_key": self.entry_key,
            "address": self.address,
            "chain": self.chain,
            "balance": str(self.balance),
            "threshold": str(self.threshold),
            "suggested_top_up": str(self.suggested_top_up),
            "deep_link": self.deep_link,
            "channels_attempted": self.channels_attempted,
            "channels_succeeded": self.channels_succeeded,
            "delivered": self.delivered,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertRecord:
        """Deserialize from dictionary."""
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        elif created_at is None:
            created_at = datetime.now(UTC)

        return cls(
            alert_id=data["alert_id"],
            entry_key=data["entry_key"],
            address=data["address"],
            chain=data["chain"],
            balance=Decimal(data["balance"]),
            threshold=Decimal(data["threshold"]),
            suggested_top_up=Decimal(data["suggested_top_up"]),
            deep_link=data["deep_link"],
            channels_attempted=data.get("channels_attempted", []),
            channels_succeeded=data.get("channels_succeeded", []),
            created_at=created_at,
        )


def build_record(
    entry_key: str, message: AlertMessage, result: DispatchResult, now: datetime
) -> AlertRecord:
    """Create a history record for one dispatch."""
    return AlertRecord(
        alert_id=str(uuid.uuid4()),
        entry_key=entry_key,
        address=message.wallet,
        chain=message.chain,
        balance=message.current_balance,
        threshold=message.threshold,
        suggested_top_up=message.suggested_top_up,
        deep_link=message.deep_link,
        channels_attempted=list(result.channel_results),
        channels_succeeded=[ch for ch, ok in result.channel_results.items() if ok],
        created_at=now,
    )


class AlertHistory(Protocol):
    """Protocol for alert history backends."""

    async def record(self, record: AlertRecord) -> None:
        """Store a dispatched alert."""
        ...

    async def get_alerts(self, entry_key: str | None = None, limit: int = 50) -> list[AlertRecord]:
        """Return the most recent alerts first, optionally for one entry."""
        ...


class InMemoryAlertHistory:
    """Alert history for a single process, bounded to the newest records."""

    def __init__(self, capacity: int = DEFAULT_MEMORY_CAPACITY) -> None:
        self._records: deque[AlertRecord] = deque(maxlen=capacity)

    async def record(self, record: AlertRecord) -> None:
        self._records.append(record)

    async def get_alerts(self, entry_key: str | None = None, limit: int = 50) -> list[AlertRecord]:
        matches = [r for r in reversed(self._records) if entry_key in (None, r.entry_key)]
        return matches[:limit]


class RedisAlertHistory:
    """Alert history shared across monitor instances via Redis.

    Records are stored as JSON with a retention TTL and indexed in sorted
    sets by time, globally and per entry.
    """

    KEY_PREFIX_ALERT = "alert:record:"
    KEY_INDEX_TIME = "alert:index:time"
    KEY_INDEX_ENTRY = "alert:index:entry:"

    def __init__(self, redis: Any, *, retention_days: int = DEFAULT_RETENTION_DAYS) -> None:
        """Initialize alert history.

        Args:
            redis: Redis client (async).
            retention_days: Days to retain alert history.
        """
        self.redis = redis
        self.retention_days = retention_days
        self._retention_ttl = retention_days * 86400

    async def record(self, record: AlertRecord) -> None:
        score = record.created_at.timestamp()
        cutoff = (record.created_at - timedelta(days=self.retention_days)).timestamp()
        entry_index = f"{self.KEY_INDEX_ENTRY}{record.entry_key}"
        try:
            async with self.redis.pipeline() as pipe:
                pipe.set(
                    f"{self.KEY_PREFIX_ALERT}{record.alert_id}",
                    json.dumps(record.to_dict()),
                    ex=self._retention_ttl,
                )
                pipe.zadd(self.KEY_INDEX_TIME, {record.alert_id: score})
                pipe.zremrangebyscore(self.KEY_INDEX_TIME, "-inf", cutoff)
                pipe.zadd(entry_index, {record.alert_id: score})
                pipe.zremrangebyscore(entry_index, "-inf", cutoff)
                pipe.expire(entry_index, self._retention_ttl)
                await pipe.execute()
        except (RedisError, OSError) as e:
            raise AlertHistoryError(f"Failed to record alert: {e}") from e
        logger.debug(
            "Recorded alert %s for %s on %s",
            record.alert_id,
            mask_address(record.address),
            record.chain,
        )

    async def get_alerts(self, entry_key: str | None = None, limit: int = 50) -> list[AlertRecord]:
        index_key = f"{self.KEY_INDEX_ENTRY}{entry_key}" if entry_key else self.KEY_INDEX_TIME
        try:
            alert_ids = await self.redis.zrevrange(index_key, 0, limit - 1)
            records = []
            for alert_id in alert_ids:
                if isinstance(alert_id, bytes):
                    alert_id = alert_id.decode()
                data = await self.redis.get(f"{self.KEY_PREFIX_ALERT}{alert_id}")
                if data:
                    records.append(AlertRecord.from_dict(json.loads(data)))
        except (RedisError, OSError) as e:
            raise AlertHistoryError(f"Failed to read alert history: {e}") from e
        return records
