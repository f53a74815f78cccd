"""Tests for alert state stores."""

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from octaneshift_monitor.errors import AlertStoreError
from octaneshift_monitor.monitor.models import AlertState
from octaneshift_monitor.monitor.state import (
    ACK_SCRIPT,
    CLAIM_SCRIPT,
    InMemoryAlertStateStore,
    RedisAlertStateStore,
)

WALLET = "0x7e5F4552091A69125d5DfCb7b8C2659029395Bdf"
KEY = f"base:{WALLET.lower()}"
T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _state(**overrides: object) -> AlertState:
    fields: dict = {"key": KEY, "address": WALLET, "chain": "base", "last_alerted_at": T0}
    fields.update(overrides)
    return AlertState(**fields)


class TestAlertState:
    """Tests for the AlertState model."""

    def test_round_trip(self) -> None:
        state = _state(acknowledged=True)
        data = state.to_dict()
        assert data["last_alerted_ts"] == T0.timestamp()
        assert AlertState.from_dict(json.loads(json.dumps(data))) == state

    def test_cooling_down(self) -> None:
        state = _state()
        assert state.is_cooling_down(T0, 3600) is True
        assert state.is_cooling_down(datetime(2026, 1, 1, 12, 59, tzinfo=UTC), 3600) is True
        assert state.is_cooling_down(datetime(2026, 1, 1, 13, 0, tzinfo=UTC), 3600) is False


class TestInMemoryAlertStateStore:
    """Tests for the single-process store."""

    @pytest.mark.asyncio
    async def test_claim_then_get(self) -> None:
        store = InMemoryAlertStateStore()

        assert await store.try_claim(KEY, WALLET, "base", T0, 3600) is True
        state = await store.get(KEY)
        assert state is not None
        assert state.last_alerted_at == T0

    @pytest.mark.asyncio
    async def test_claim_refused_during_cooldown(self) -> None:
        store = InMemoryAlertStateStore()
        await store.try_claim(KEY, WALLET, "base", T0, 3600)

        assert await store.try_claim(KEY, WALLET, "base", T0, 3600) is False

    @pytest.mark.asyncio
    async def test_put_clear_and_list(self) -> None:
        store = InMemoryAlertStateStore()
        await store.put(_state())

        assert [s.key for s in await store.list_states()] == [KEY]
        assert await store.clear(KEY) is True
        assert await store.clear(KEY) is False
        assert await store.list_states() == []

    @pytest.mark.asyncio
    async def test_acknowledge(self) -> None:
        store = InMemoryAlertStateStore()
        assert await store.acknowledge(KEY) is False

        await store.put(_state())
        assert await store.acknowledge(KEY) is True
        state = await store.get(KEY)
        assert state is not None
        assert state.acknowledged is True


@pytest.fixture
def mock_redis() -> MagicMock:
    redis = MagicMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.eval = AsyncMock(return_value=1)
    return redis


class TestRedisAlertStateStore:
    """Tests for the Redis-backed store."""

    @pytest.mark.asyncio
    async def test_get_missing(self, mock_redis: MagicMock) -> None:
        store = RedisAlertStateStore(mock_redis)
        assert await store.get(KEY) is None
        mock_redis.get.assert_awaited_once_with(f"alert:state:{KEY}")

    @pytest.mark.asyncio
    async def test_get_existing(self, mock_redis: MagicMock) -> None:
        mock_redis.get.return_value = json.dumps(_state().to_dict())
        store = RedisAlertStateStore(mock_redis)

        state = await store.get(KEY)

        assert state == _state()

    @pytest.mark.asyncio
    async def test_try_claim_runs_compare_and_set_script(self, mock_redis: MagicMock) -> None:
        store = RedisAlertStateStore(mock_redis, retention_days=7)

        assert await store.try_claim(KEY, WALLET, "base", T0, 3600) is True

        args = mock_redis.eval.call_args.args
        assert args[0] == CLAIM_SCRIPT
        assert args[1] == 1
        assert args[2] == f"alert:state:{KEY}"
        assert float(args[3]) == T0.timestamp()
        assert float(args[4]) == 3600
        assert json.loads(args[5])["last_alerted_ts"] == T0.timestamp()
        assert args[6] == str(7 * 86400 * 1000)

    @pytest.mark.asyncio
    async def test_try_claim_refused(self, mock_redis: MagicMock) -> None:
        mock_redis.eval.return_value = 0
        store = RedisAlertStateStore(mock_redis)
        assert await store.try_claim(KEY, WALLET, "base", T0, 3600) is False

    @pytest.mark.asyncio
    async def test_put_sets_ttl(self, mock_redis: MagicMock) -> None:
        store = RedisAlertStateStore(mock_redis, retention_days=1)
        await store.put(_state())

        mock_redis.set.assert_awaited_once()
        assert mock_redis.set.call_args.kwargs["px"] == 86400 * 1000

    @pytest.mark.asyncio
    async def test_clear(self, mock_redis: MagicMock) -> None:
        store = RedisAlertStateStore(mock_redis)
        assert await store.clear(KEY) is True
        mock_redis.delete.return_value = 0
        assert await store.clear(KEY) is False

    @pytest.mark.asyncio
    async def test_acknowledge_uses_script(self, mock_redis: MagicMock) -> None:
        store = RedisAlertStateStore(mock_redis)
        assert await store.acknowledge(KEY) is True
        assert mock_redis.eval.call_args.args[0] == ACK_SCRIPT

    @pytest.mark.asyncio
    async def test_list_states(self, mock_redis: MagicMock) -> None:
        async def scan_iter(match: str):  # type: ignore[no-untyped-def]
            assert match == "alert:state:*"
            yield f"alert:state:{KEY}"

        mock_redis.scan_iter = scan_iter
        mock_redis.get.return_value = json.dumps(_state().to_dict())
        store = RedisAlertStateStore(mock_redis)

        assert await store.list_states() == [_state()]

    @pytest.mark.asyncio
    async def test_errors_become_alert_store_error(self, mock_redis: MagicMock) -> None:
        mock_redis.eval.side_effect = RedisConnectionError("connection refused")
        mock_redis.get.side_effect = RedisConnectionError("connection refused")
        store = RedisAlertStateStore(mock_redis)

        with pytest.raises(AlertStoreError, match="claim"):
            await store.try_claim(KEY, WALLET, "base", T0, 3600)
        with pytest.raises(AlertStoreError, match="read"):
            await store.get(KEY)
