"""Synthetic low-balance alert exercising the real dispatch path."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from octaneshift_monitor.alerter.channels.log import LogChannel
from octaneshift_monitor.alerter.dispatcher import AlertDispatcher
from octaneshift_monitor.errors import DeliveryFailure
from octaneshift_monitor.monitor.balance import StaticBalanceReader
from octaneshift_monitor.monitor.dedup import AlertDeduplicator
from octaneshift_monitor.monitor.models import OutcomeKind, WatchEntry
from octaneshift_monitor.monitor.state import InMemoryAlertStateStore

if TYPE_CHECKING:
    from octaneshift_monitor.alerter.models import AlertMessage, FormattedAlert
    from octaneshift_monitor.monitor.scheduler import WatchlistScheduler

logger = logging.getLogger(__name__)

TEST_WALLET_ADDRESS = "0x7e5F4552091A69125d5DfCb7b8C2659029395Bdf"
TEST_CHAIN = "base"
TEST_BALANCE = Decimal("0.0001")
TEST_THRESHOLD = Decimal("0.001")
TEST_TOP_UP = Decimal("5")


def synthetic_entry() -> WatchEntry:
    """Return the watch entry used for test alerts."""
    return WatchEntry(
        address=TEST_WALLET_ADDRESS,
        chain=TEST_CHAIN,
        threshold_override=TEST_THRESHOLD,
        top_up_override=TEST_TOP_UP,
        label="Test wallet",
    )


@dataclass(frozen=True)
class TestAlert:
    """A generated test alert and its rendered form."""

    __test__ = False

    message: AlertMessage
    formatted: FormattedAlert


async def run_test_alert(scheduler: WatchlistScheduler) -> TestAlert:
    """Run a synthetic low balance through the scheduler's pipeline.

    The entry is evaluated with a fixed balance, isolated alert state and
    a log-only channel, so nothing is delivered externally and the real
    watchlist state is untouched.

    Raises:
        DeliveryFailure: If the synthetic entry did not produce an alert.
    """
    entry = synthetic_entry()
    reader = StaticBalanceReader({(entry.address, entry.chain): TEST_BALANCE})
    channel = LogChannel(name="test-alert")
    dispatcher = AlertDispatcher([channel], formatter=scheduler.formatter)

    outcome = await scheduler.evaluate_entry(
        entry,
        reader=reader,
        deduplicator=AlertDeduplicator(InMemoryAlertStateStore()),
        dispatcher=dispatcher,
    )
    if outcome.kind != OutcomeKind.DISPATCHED or outcome.message is None or not channel.sent:
        raise DeliveryFailure(f"Test alert was not dispatched: {outcome.kind} {outcome.error or ''}")

    logger.info("Test alert generated for %s on %s", entry.masked_address, entry.chain)
    return TestAlert(message=outcome.message, formatted=channel.sent[-1])
