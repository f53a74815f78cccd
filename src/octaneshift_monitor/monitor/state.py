"""Alert state storage with atomic check-and-set.

Two backends are provided:

- ``InMemoryAlertStateStore`` for a single monitor instance, serializing
  check-and-set per key with an ``asyncio.Lock``.
- ``RedisAlertStateStore`` for multiple instances sharing state, using a
  Lua compare-and-set script so the check and the write are one operation.

Any storage failure is raised as ``AlertStoreError``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Protocol

from redis.exceptions import RedisError

from octaneshift_monitor.errors import AlertStoreError
from octaneshift_monitor.monitor.models import AlertState

logger = logging.getLogger(__name__)

REDIS_ERRORS = (RedisError, OSError, ValueError)


class AlertStateStore(Protocol):
    """Protocol for alert state backends."""

    async def get(self, key: str) -> AlertState | None:
        """Return the state for a key, or None when Quiet."""
        ...

    async def try_claim(
        self,
        key: str,
        address: str,
        chain: str,
        now: datetime,
        cooldown_seconds: float,
    ) -> bool:
        """Atomically move a key to Alerted at ``now``.

        Succeeds when the key is Quiet or its cool-down has elapsed.
        """
        ...

    async def put(self, state: AlertState) -> None:
        """Unconditionally write a state."""
        ...

    async def clear(self, key: str) -> bool:
        """Return a key to Quiet. Returns True if a state was removed."""
        ...

    async def acknowledge(self, key: str) -> bool:
        """Mark an outstanding alert as acknowledged."""
        ...

    async def list_states(self) -> list[AlertState]:
        """Return all outstanding states."""
        ...


class InMemoryAlertStateStore:
    """Alert state store for a single process."""

    def __init__(self) -> None:
        self._states: dict[str, AlertState] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get(self, key: str) -> AlertState | None:
        return self._states.get(key)

    async def try_claim(
        self,
        key: str,
        address: str,
        chain: str,
        now: datetime,
        cooldown_seconds: float,
    ) -> bool:
        async with self._locks[key]:
            current = self._states.get(key)
            if current is not None and current.is_cooling_down(now, cooldown_seconds):
                return False
            self._states[key] = AlertState(
                key=key,
                address=address,
                chain=chain,
                last_alerted_at=now,
            )
            return True

    async def put(self, state: AlertState) -> None:
        async with self._locks[state.key]:
            self._states[state.key] = state

    async def clear(self, key: str) -> bool:
        async with self._locks[key]:
            return self._states.pop(key, None) is not None

    async def acknowledge(self, key: str) -> bool:
        async with self._locks[key]:
            state = self._states.get(key)
            if state is None:
                return False
            state.acknowledged = True
            return True

    async def list_states(self) -> list[AlertState]:
        return list(self._states.values())


# KEYS[1] = state key
# ARGV[1] = now (unix seconds), ARGV[2] = cool-down seconds,
# ARGV[3] = new state JSON, ARGV[4] = TTL milliseconds
CLAIM_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current then
  local state = cjson.decode(current)
  if tonumber(ARGV[1]) - tonumber(state['last_alerted_ts']) < tonumber(ARGV[2]) then
    return 0
  end
end
redis.call('SET', KEYS[1], ARGV[3], 'PX', ARGV[4])
return 1
"""

ACK_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
  return 0
end
local state = cjson.decode(current)
state['acknowledged'] = true
redis.call('SET', KEYS[1], cjson.encode(state), 'KEEPTTL')
return 1
"""


class RedisAlertStateStore:
    """Alert state store shared across monitor instances via Redis."""

    KEY_PREFIX_STATE = "alert:state:"

    def __init__(self, redis: Any, *, retention_days: int = 7) -> None:
        """Initialize the store.

        Args:
            redis: Redis client (async).
            retention_days: Days to keep a state without any new alert.
        """
        self.redis = redis
        self.retention_days = retention_days
        self._retention_ms = retention_days * 86400 * 1000

    def _redis_key(self, key: str) -> str:
        return f"{self.KEY_PREFIX_STATE}{key}"

    async def get(self, key: str) -> AlertState | None:
        try:
            data = await self.redis.get(self._redis_key(key))
        except REDIS_ERRORS as e:
            raise AlertStoreError(f"Failed to read alert state: {e}") from e
        if not data:
            return None
        return AlertState.from_dict(json.loads(data))

    async def try_claim(
        self,
        key: str,
        address: str,
        chain: str,
        now: datetime,
        cooldown_seconds: float,
    ) -> bool:
        state = AlertState(key=key, address=address, chain=chain, last_alerted_at=now)
        try:
            result = await self.redis.eval(
                CLAIM_SCRIPT,
                1,
                self._redis_key(key),
                str(now.timestamp()),
                str(cooldown_seconds),
                json.dumps(state.to_dict()),
                str(self._retention_ms),
            )
        except REDIS_ERRORS as e:
            raise AlertStoreError(f"Failed to claim alert state: {e}") from e
        return int(result) == 1

    async def put(self, state: AlertState) -> None:
        try:
            await self.redis.set(
                self._redis_key(state.key),
                json.dumps(state.to_dict()),
                px=self._retention_ms,
            )
        except REDIS_ERRORS as e:
            raise AlertStoreError(f"Failed to write alert state: {e}") from e

    async def clear(self, key: str) -> bool:
        try:
            removed = await self.redis.delete(self._redis_key(key))
        except REDIS_ERRORS as e:
            raise AlertStoreError(f"Failed to clear alert state: {e}") from e
        return int(removed) > 0

    async def acknowledge(self, key: str) -> bool:
        try:
            result = await self.redis.eval(ACK_SCRIPT, 1, self._redis_key(key))
        except REDIS_ERRORS as e:
            raise AlertStoreError(f"Failed to acknowledge alert state: {e}") from e
        return int(result) == 1

    async def list_states(self) -> list[AlertState]:
        states = []
        try:
            async for redis_key in self.redis.scan_iter(match=f"{self.KEY_PREFIX_STATE}*"):
                data = await self.redis.get(redis_key)
                if data:
                    states.append(AlertState.from_dict(json.loads(data)))
        except REDIS_ERRORS as e:
            raise AlertStoreError(f"Failed to list alert states: {e}") from e
        return states
