"""Tests for pipeline wiring."""

import json
import os
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from octaneshift_monitor.alerter.channels.discord import DiscordChannel
from octaneshift_monitor.alerter.channels.log import LogChannel
from octaneshift_monitor.alerter.channels.telegram import TelegramChannel
from octaneshift_monitor.alerter.history import InMemoryAlertHistory, RedisAlertHistory
from octaneshift_monitor.config import Settings
from octaneshift_monitor.errors import AlertStoreError
from octaneshift_monitor.monitor.models import WatchEntry
from octaneshift_monitor.monitor.state import InMemoryAlertStateStore, RedisAlertStateStore
from octaneshift_monitor.pipeline import Pipeline, build_channels

WALLET = "0x7e5F4552091A69125d5DfCb7b8C2659029395Bdf"


def make_settings(**env: str) -> Settings:
    with patch.dict(os.environ, env, clear=True):
        return Settings(_env_file=None)


@pytest.fixture
def mock_redis() -> MagicMock:
    redis = MagicMock()
    redis.ping = AsyncMock(return_value=True)
    redis.aclose = AsyncMock()
    return redis


class TestBuildChannels:
    """Tests for channel selection."""

    def test_dry_run_only_logs(self) -> None:
        settings = make_settings(TELEGRAM_BOT_TOKEN="1:a", TELEGRAM_CHAT_ID="2")
        channels = build_channels(settings, dry_run=True)
        assert len(channels) == 1
        assert isinstance(channels[0], LogChannel)

    def test_configured_channels(self) -> None:
        settings = make_settings(
            TELEGRAM_BOT_TOKEN="1:a",
            TELEGRAM_CHAT_ID="2",
            DISCORD_WEBHOOK_URL="https://discord.com/api/webhooks/1/x",
        )
        channels = build_channels(settings)
        assert [type(c) for c in channels] == [TelegramChannel, DiscordChannel]

    def test_no_channels_falls_back_to_log(self) -> None:
        channels = build_channels(make_settings())
        assert len(channels) == 1
        assert isinstance(channels[0], LogChannel)


class TestPipeline:
    """Tests for the assembled pipeline."""

    def test_memory_store_by_default(self) -> None:
        pipeline = Pipeline(make_settings())
        assert isinstance(pipeline.store, InMemoryAlertStateStore)
        assert pipeline.deduplicator.cooldown_seconds == 3600

    def test_redis_store(self, mock_redis: MagicMock) -> None:
        pipeline = Pipeline(make_settings(ALERT_STORE="redis"), redis=mock_redis)
        assert isinstance(pipeline.store, RedisAlertStateStore)

    def test_thresholds_from_settings(self) -> None:
        thresholds = {"base": {"min_balance": "0.01", "suggested_top_up": "7"}}
        pipeline = Pipeline(make_settings(MONITOR_THRESHOLDS_JSON=json.dumps(thresholds)))
        assert pipeline.policies.chains == ["base"]
        assert pipeline.policies.get("base").suggested_top_up == Decimal("7")

    def test_scheduler_settings(self) -> None:
        pipeline = Pipeline(
            make_settings(MONITOR_POLL_INTERVAL_SECONDS="30", MONITOR_COOLDOWN_SECONDS="600")
        )
        assert pipeline.scheduler.poll_interval_seconds == 30
        assert pipeline.deduplicator.cooldown_seconds == 600

    def test_load_watchlist_file(self, tmp_path: Path) -> None:
        path = tmp_path / "watchlist.json"
        path.write_text(json.dumps([{"address": WALLET, "chain": "base"}, {"chain": "eth"}]))
        pipeline = Pipeline(make_settings(MONITOR_WATCHLIST_FILE=str(path)))

        errors = pipeline.load_watchlist()

        assert len(pipeline.watchlist) == 1
        assert len(errors) == 1

    def test_missing_watchlist_file_starts_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "watchlist.json"
        pipeline = Pipeline(make_settings(MONITOR_WATCHLIST_FILE=str(path)))

        assert pipeline.load_watchlist() == []
        assert len(pipeline.watchlist) == 0
        assert not path.exists()

    def test_watchlist_changes_written_to_file(self, tmp_path: Path) -> None:
        path = tmp_path / "watchlist.json"
        pipeline = Pipeline(make_settings(MONITOR_WATCHLIST_FILE=str(path)))
        pipeline.load_watchlist()

        pipeline.watchlist.register(WatchEntry(address=WALLET, chain="op"))

        assert json.loads(path.read_text())[0]["chain"] == "op"
        reloaded = Pipeline(make_settings(MONITOR_WATCHLIST_FILE=str(path)))
        assert reloaded.load_watchlist() == []
        assert len(reloaded.watchlist) == 1

    def test_history_backend_follows_store(self, mock_redis: MagicMock) -> None:
        assert isinstance(Pipeline(make_settings()).history, InMemoryAlertHistory)

        pipeline = Pipeline(
            make_settings(ALERT_STORE="redis", MONITOR_HISTORY_RETENTION_DAYS="14"),
            redis=mock_redis,
        )
        assert isinstance(pipeline.history, RedisAlertHistory)
        assert pipeline.history.retention_days == 14
        assert pipeline.scheduler.history is pipeline.history

    def test_include_qr_reaches_formatter(self) -> None:
        assert Pipeline(make_settings()).formatter.include_qr is False
        pipeline = Pipeline(make_settings(MONITOR_INCLUDE_QR="true"))
        assert pipeline.formatter.include_qr is True
        assert pipeline.dispatcher.formatter is pipeline.formatter

    @pytest.mark.asyncio
    async def test_health_server_checks_rpc(self) -> None:
        pipeline = Pipeline(make_settings())

        with patch.object(
            pipeline.reader, "health_check", AsyncMock(return_value=True)
        ) as health_check:
            result = await pipeline.server._rpc_health()

        assert set(result) == {chain.value for chain in pipeline.reader.chains}
        assert all(result.values())
        assert health_check.await_count == len(pipeline.reader.chains)

    @pytest.mark.asyncio
    async def test_redis_unavailable(self, mock_redis: MagicMock) -> None:
        mock_redis.ping.side_effect = RedisConnectionError("refused")
        pipeline = Pipeline(make_settings(ALERT_STORE="redis"), redis=mock_redis)

        with pytest.raises(AlertStoreError, match="Redis unavailable"):
            await pipeline.prepare()

    @pytest.mark.asyncio
    async def test_run_once_with_empty_watchlist(self) -> None:
        pipeline = Pipeline(make_settings(), dry_run=True)

        summary = await pipeline.run_once()

        assert summary.outcomes == []
        assert pipeline.scheduler.last_summary is summary

    @pytest.mark.asyncio
    async def test_test_alert(self) -> None:
        pipeline = Pipeline(make_settings(FRONTEND_ORIGIN="https://octane.example"))

        result = await pipeline.test_alert()

        assert result.message.deep_link.startswith("https://octane.example/deeplink?chain=base")

    @pytest.mark.asyncio
    async def test_start_and_stop(self, mock_redis: MagicMock) -> None:
        pipeline = Pipeline(make_settings(ALERT_STORE="redis"), redis=mock_redis)

        with patch.object(pipeline.scheduler, "start", AsyncMock()) as start:
            await pipeline.start(serve_http=False)
            assert pipeline.is_running is True
            start.assert_awaited_once()

        await pipeline.stop()
        assert pipeline.is_running is False
        # Injected clients are not closed by the pipeline
        mock_redis.aclose.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_closes_owned_redis(self, mock_redis: MagicMock) -> None:
        with patch("octaneshift_monitor.pipeline.Redis.from_url", return_value=mock_redis):
            pipeline = Pipeline(make_settings(ALERT_STORE="redis"))

        await pipeline.stop()

        mock_redis.aclose.assert_awaited_once()
