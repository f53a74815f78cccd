"""Component wiring for the monitor service.

Builds every pipeline component from ``Settings`` and manages their
lifecycle: alert state store and history, balance reader, threshold
policies, notification channels, scheduler and HTTP server.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from octaneshift_monitor.alerter.channels.discord import DiscordChannel
from octaneshift_monitor.alerter.channels.log import LogChannel
from octaneshift_monitor.alerter.channels.telegram import TelegramChannel
from octaneshift_monitor.alerter.deeplink import DeepLinkBuilder
from octaneshift_monitor.alerter.dispatcher import AlertChannel, AlertDispatcher
from octaneshift_monitor.alerter.formatter import AlertFormatter
from octaneshift_monitor.alerter.history import (
    AlertHistory,
    InMemoryAlertHistory,
    RedisAlertHistory,
)
from octaneshift_monitor.errors import AlertStoreError
from octaneshift_monitor.health import MonitorServer
from octaneshift_monitor.monitor.balance import ChainBalanceReader
from octaneshift_monitor.monitor.dedup import AlertDeduplicator
from octaneshift_monitor.monitor.policy import ThresholdPolicyTable
from octaneshift_monitor.monitor.scheduler import WatchlistScheduler
from octaneshift_monitor.monitor.simulation import TestAlert, run_test_alert
from octaneshift_monitor.monitor.state import (
    REDIS_ERRORS,
    AlertStateStore,
    InMemoryAlertStateStore,
    RedisAlertStateStore,
)
from octaneshift_monitor.monitor.watchlist import WatchlistStore

if TYPE_CHECKING:
    from octaneshift_monitor.config import Settings
    from octaneshift_monitor.monitor.models import PassSummary

logger = logging.getLogger(__name__)


def build_channels(settings: Settings, *, dry_run: bool = False) -> list[AlertChannel]:
    """Create delivery channels from settings.

    Dry-run mode, or a configuration without any channel, logs alerts
    instead of delivering them.
    """
    if dry_run:
        logger.info("Dry run: alerts will be logged, not delivered")
        return [LogChannel()]

    channels: list[AlertChannel] = []
    bot_token = settings.telegram.bot_token
    chat_id = settings.telegram.chat_id
    if bot_token is not None and chat_id is not None:
        channels.append(TelegramChannel(bot_token.get_secret_value(), chat_id))
    webhook_url = settings.discord.webhook_url
    if webhook_url is not None:
        channels.append(DiscordChannel(webhook_url.get_secret_value()))

    if not channels:
        logger.warning("No notification channels configured, alerts will only be logged")
        channels.append(LogChannel())
    return channels


class Pipeline:
    """The assembled monitor service.

    Example:
        ```python
        pipeline = Pipeline(get_settings())
        await pipeline.start()
        ...
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings,
        *,
        dry_run: bool = False,
        redis: Any | None = None,
    ) -> None:
        """Build all components.

        Args:
            settings: Application settings.
            dry_run: Log alerts instead of delivering them.
            redis: Redis client to use instead of one created from settings.
        """
        self.settings = settings
        self.dry_run = dry_run
        monitor = settings.monitor

        self._redis = redis
        self._owns_redis = False
        if settings.alert_store == "redis" and self._redis is None:
            self._redis = Redis.from_url(settings.redis.url, decode_responses=True)
            self._owns_redis = True

        self.store: AlertStateStore
        self.history: AlertHistory
        if settings.alert_store == "redis":
            self.store = RedisAlertStateStore(self._redis, retention_days=monitor.retention_days)
            self.history = RedisAlertHistory(
                self._redis, retention_days=monitor.history_retention_days
            )
        else:
            self.store = InMemoryAlertStateStore()
            self.history = InMemoryAlertHistory()

        self.watchlist = WatchlistStore(path=monitor.watchlist_file)
        self.reader = ChainBalanceReader(
            settings.chains.rpc_urls,
            fallback_rpc_urls=settings.chains.fallback_rpc_urls,
            timeout=monitor.read_timeout_seconds,
        )
        self.policies = ThresholdPolicyTable.from_config(monitor.thresholds)
        self.deduplicator = AlertDeduplicator(
            self.store, cooldown=timedelta(seconds=monitor.cooldown_seconds)
        )
        self.formatter = AlertFormatter(include_qr=monitor.include_qr)
        self.dispatcher = AlertDispatcher(
            build_channels(settings, dry_run=dry_run), formatter=self.formatter
        )
        secret = settings.frontend.signing_secret
        self.deep_links = DeepLinkBuilder(
            settings.frontend.origin,
            signing_secret=secret.get_secret_value() if secret else None,
        )
        self.scheduler = WatchlistScheduler(
            self.watchlist,
            self.reader,
            self.policies,
            self.deduplicator,
            self.dispatcher,
            deep_links=self.deep_links,
            formatter=self.formatter,
            history=self.history,
            poll_interval_seconds=monitor.poll_interval_seconds,
            pass_deadline_seconds=monitor.pass_deadline_seconds,
            max_concurrency=monitor.max_concurrency,
        )
        self.server = MonitorServer(self.scheduler, rpc_health=self.reader.health_check_all)
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started

    async def _check_store(self) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.ping()
        except REDIS_ERRORS as e:
            raise AlertStoreError(f"Redis unavailable: {e}") from e
        logger.info("Connected to Redis alert store")

    def load_watchlist(self) -> list[str]:
        """Load the configured watchlist file, if any.

        Returns:
            Errors for entries that were skipped.
        """
        path = self.settings.monitor.watchlist_file
        if not path:
            logger.info("No watchlist file configured, starting with an empty watchlist")
            return []
        if not Path(path).exists():
            logger.info("Watchlist file %s not found, it will be created on the first change", path)
            return []
        return self.watchlist.load_file(path)

    async def prepare(self) -> None:
        """Connect to the alert store and load the watchlist."""
        await self._check_store()
        self.load_watchlist()

    async def start(self, *, serve_http: bool = True) -> None:
        """Start the scheduler loop and the HTTP server."""
        if self._started:
            return
        await self.prepare()
        if serve_http:
            await self.server.start(port=self.settings.health_port)
        await self.scheduler.start()
        self._started = True
        logger.info("Pipeline started with %d watched entries", len(self.watchlist))

    async def run_once(self) -> PassSummary:
        """Run a single pass without starting the loop."""
        await self.prepare()
        return await self.scheduler.run_pass()

    async def test_alert(self) -> TestAlert:
        """Generate the synthetic test alert."""
        return await run_test_alert(self.scheduler)

    async def stop(self) -> None:
        """Stop all components; safe to call more than once."""
        if self._started:
            await self.scheduler.stop()
            await self.server.stop()
            self._started = False
            logger.info("Pipeline stopped")
        if self._owns_redis and self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self._owns_redis = False
