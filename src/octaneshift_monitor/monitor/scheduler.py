"""Watchlist scheduler driving periodic balance passes.

Each pass evaluates every watched entry as its own task: read balance,
apply the threshold policy, claim the alert through the deduplicator, and
dispatch. Errors are contained at the entry boundary except for alert
state store failures, which abort the pass.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from functools import partial
from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge, Histogram

from octaneshift_monitor.alerter.history import build_record
from octaneshift_monitor.errors import (
    AlertHistoryError,
    AlertStoreError,
    BalanceNotFoundError,
    ConfigurationError,
    DeliveryFailure,
    EntryValidationError,
    TransientBalanceError,
)
from octaneshift_monitor.monitor.models import EntryOutcome, OutcomeKind, PassSummary
from octaneshift_monitor.monitor.watchlist import validate_entry
from octaneshift_monitor.redaction import redact_text

if TYPE_CHECKING:
    from octaneshift_monitor.alerter.deeplink import DeepLinkBuilder
    from octaneshift_monitor.alerter.dispatcher import AlertDispatcher, DispatchResult
    from octaneshift_monitor.alerter.formatter import AlertFormatter
    from octaneshift_monitor.alerter.history import AlertHistory
    from octaneshift_monitor.alerter.models import AlertMessage
    from octaneshift_monitor.monitor.balance import BalanceSource
    from octaneshift_monitor.monitor.dedup import AlertDeduplicator
    from octaneshift_monitor.monitor.models import WatchEntry
    from octaneshift_monitor.monitor.policy import ThresholdPolicyTable
    from octaneshift_monitor.monitor.watchlist import WatchlistStore

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 60.0
DEFAULT_PASS_DEADLINE_SECONDS = 45.0
DEFAULT_MAX_CONCURRENCY = 10

Clock = Callable[[], datetime]


# Prometheus metrics
ENTRY_OUTCOMES = Counter(
    "octaneshift_entry_outcomes_total",
    "Watch entry evaluations by outcome",
    ["chain", "outcome"],
)

ALERTS_DISPATCHED = Counter(
    "octaneshift_alerts_dispatched_total",
    "Low balance alerts delivered to at least one channel",
    ["chain"],
)

PASSES_TOTAL = Counter(
    "octaneshift_passes_total",
    "Completed watchlist passes",
    ["status"],
)

PASS_DURATION = Histogram(
    "octaneshift_pass_duration_seconds",
    "Watchlist pass duration in seconds",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

WATCHLIST_SIZE = Gauge(
    "octaneshift_watchlist_entries",
    "Number of watched entries",
)

LAST_PASS_TIMESTAMP = Gauge(
    "octaneshift_last_pass_timestamp",
    "Unix timestamp of the last completed pass",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class WatchlistScheduler:
    """Runs watchlist passes on a fixed interval.

    Example:
        ```python
        scheduler = WatchlistScheduler(
            watchlist, reader, policies, deduplicator, dispatcher, deep_links=builder
        )
        summary = await scheduler.run_pass()
        await scheduler.start()
        ```
    """

    def __init__(
        self,
        watchlist: WatchlistStore,
        reader: BalanceSource,
        policies: ThresholdPolicyTable,
        deduplicator: AlertDeduplicator,
        dispatcher: AlertDispatcher,
        *,
        deep_links: DeepLinkBuilder,
        formatter: AlertFormatter | None = None,
        history: AlertHistory | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        pass_deadline_seconds: float = DEFAULT_PASS_DEADLINE_SECONDS,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        clock: Clock = _utcnow,
    ) -> None:
        """Initialize the scheduler.

        Args:
            watchlist: Registry of watched entries.
            reader: Balance source for all chains.
            policies: Threshold policies applied to balances.
            deduplicator: Alert deduplicator backed by the alert state store.
            dispatcher: Notification dispatcher.
            deep_links: Builder for top-up deep links.
            formatter: Builds alert messages (defaults to the dispatcher's).
            history: Records every dispatch made by a pass.
            poll_interval_seconds: Seconds between passes.
            pass_deadline_seconds: Maximum wall time a pass waits for entries.
            max_concurrency: Maximum entries evaluated at once.
            clock: Returns the current time.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.watchlist = watchlist
        self.reader = reader
        self.deduplicator = deduplicator
        self.dispatcher = dispatcher
        self.deep_links = deep_links
        self.formatter = formatter or dispatcher.formatter
        self.history = history
        self._policies = policies
        self._poll_interval = poll_interval_seconds
        self._pass_deadline = pass_deadline_seconds
        self._max_concurrency = max_concurrency
        self._clock = clock

        self._in_flight: dict[str, asyncio.Task[EntryOutcome]] = {}
        self._deferred: set[asyncio.Task[EntryOutcome]] = set()
        self._late_store_error: AlertStoreError | None = None
        self._last_summary: PassSummary | None = None
        self._last_error: str | None = None
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        """Return True if the periodic loop is running."""
        return self._running

    @property
    def policies(self) -> ThresholdPolicyTable:
        """Return the policy table used by the next pass."""
        return self._policies

    @property
    def poll_interval_seconds(self) -> float:
        return self._poll_interval

    def now(self) -> datetime:
        """Return the scheduler clock's current time."""
        return self._clock()

    @property
    def last_summary(self) -> PassSummary | None:
        """Return the summary of the last completed pass."""
        return self._last_summary

    @property
    def last_error(self) -> str | None:
        """Return the error that aborted the last pass, if it failed."""
        return self._last_error

    @property
    def in_flight(self) -> list[str]:
        """Return keys of entries still being evaluated."""
        return list(self._in_flight)

    def update_policies(self, policies: ThresholdPolicyTable) -> None:
        """Replace the policy table; takes effect from the next pass."""
        self._policies = policies
        logger.info("Threshold policies updated for chains: %s", ", ".join(policies.chains))

    async def run_pass(self, now: datetime | None = None) -> PassSummary:
        """Evaluate every watched entry once.

        Args:
            now: Evaluation time. Defaults to the clock at the start of each
                entry's evaluation.

        Returns:
            PassSummary with the outcome of every entry.

        Raises:
            AlertStoreError: If the alert state store failed for any entry,
                including entries deferred by an earlier pass.
        """
        late_error = self._take_late_store_error()
        if late_error is not None:
            self._fail_pass(late_error)
            raise late_error

        started = time.monotonic()
        summary = PassSummary(started_at=self._clock())
        policies = self._policies
        semaphore = asyncio.Semaphore(self._max_concurrency)
        entries = self.watchlist.entries()
        WATCHLIST_SIZE.set(len(entries))

        tasks: dict[asyncio.Task[EntryOutcome], WatchEntry] = {}
        for entry in entries:
            if entry.key in self._in_flight:
                logger.info(
                    "Skipping %s on %s, previous evaluation still in flight",
                    entry.masked_address,
                    entry.chain,
                )
                summary.add(EntryOutcome(entry=entry, kind=OutcomeKind.DEFERRED))
                continue
            task = asyncio.create_task(self._bounded(semaphore, entry, now, policies))
            self._in_flight[entry.key] = task
            task.add_done_callback(partial(self._on_entry_done, entry.key))
            tasks[task] = entry

        done: set[asyncio.Task[EntryOutcome]] = set()
        pending: set[asyncio.Task[EntryOutcome]] = set()
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=self._pass_deadline)

        store_error: AlertStoreError | None = None
        for task in done:
            error = task.exception()
            if isinstance(error, AlertStoreError):
                store_error = error
                continue
            summary.add(task.result())

        for task in pending:
            entry = tasks[task]
            self._deferred.add(task)
            logger.warning(
                "Evaluation of %s on %s exceeded pass deadline, deferred",
                entry.masked_address,
                entry.chain,
            )
            summary.add(EntryOutcome(entry=entry, kind=OutcomeKind.DEFERRED))

        summary.finished_at = self._clock()
        self._record_metrics(summary, time.monotonic() - started)

        if store_error is None:
            store_error = self._take_late_store_error()
        if store_error is not None:
            self._fail_pass(store_error)
            raise store_error

        self._last_summary = summary
        self._last_error = None
        PASSES_TOTAL.labels(status="ok").inc()
        LAST_PASS_TIMESTAMP.set(time.time())
        self._log_summary(summary)
        return summary

    async def _bounded(
        self,
        semaphore: asyncio.Semaphore,
        entry: WatchEntry,
        now: datetime | None,
        policies: ThresholdPolicyTable,
    ) -> EntryOutcome:
        async with semaphore:
            return await self._evaluate(
                entry, now or self._clock(), policies=policies, history=self.history
            )

    def _fail_pass(self, error: AlertStoreError) -> None:
        self._last_error = str(error)
        PASSES_TOTAL.labels(status="store_error").inc()
        logger.critical("Pass aborted, alert state store failed: %s", error)

    def _take_late_store_error(self) -> AlertStoreError | None:
        error, self._late_store_error = self._late_store_error, None
        return error

    def _on_entry_done(self, key: str, task: asyncio.Task[EntryOutcome]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        deferred = task in self._deferred
        self._deferred.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if deferred and isinstance(error, AlertStoreError):
            # The pass that started this entry has already returned
            self._late_store_error = error
            self._last_error = str(error)
            logger.critical("Alert state store failed for deferred entry %s: %s", key, error)
        else:
            logger.error("Entry %s evaluation failed: %s", key, error)

    async def evaluate_entry(
        self,
        entry: WatchEntry,
        now: datetime | None = None,
        *,
        reader: BalanceSource | None = None,
        deduplicator: AlertDeduplicator | None = None,
        dispatcher: AlertDispatcher | None = None,
        history: AlertHistory | None = None,
    ) -> EntryOutcome:
        """Evaluate a single entry outside a pass.

        Alternative reader, deduplicator and dispatcher handles let callers
        run the real pipeline against isolated state. The dispatch is only
        recorded when a ``history`` is passed.

        Raises:
            AlertStoreError: If the alert state store failed.
        """
        return await self._evaluate(
            entry,
            now or self._clock(),
            policies=self._policies,
            reader=reader,
            deduplicator=deduplicator,
            dispatcher=dispatcher,
            history=history,
        )

    async def _evaluate(
        self,
        entry: WatchEntry,
        now: datetime,
        *,
        policies: ThresholdPolicyTable,
        reader: BalanceSource | None = None,
        deduplicator: AlertDeduplicator | None = None,
        dispatcher: AlertDispatcher | None = None,
        history: AlertHistory | None = None,
    ) -> EntryOutcome:
        try:
            return await self._evaluate_unchecked(
                entry,
                now,
                policies,
                reader or self.reader,
                deduplicator or self.deduplicator,
                dispatcher or self.dispatcher,
                history,
            )
        except AlertStoreError:
            raise
        except TransientBalanceError as e:
            logger.warning(
                "Transient balance error for %s on %s: %s",
                entry.masked_address,
                entry.chain,
                e,
            )
            return self._failure(entry, OutcomeKind.TRANSIENT, e)
        except EntryValidationError as e:
            logger.warning("Invalid watch entry %s on %s: %s", entry.masked_address, entry.chain, e)
            return self._failure(entry, OutcomeKind.INVALID, e)
        except (BalanceNotFoundError, ConfigurationError, DeliveryFailure) as e:
            logger.error("Entry %s on %s failed: %s", entry.masked_address, entry.chain, e)
            return self._failure(entry, OutcomeKind.FAILED, e)
        except Exception as e:
            logger.exception(
                "Unexpected error evaluating %s on %s", entry.masked_address, entry.chain
            )
            return self._failure(entry, OutcomeKind.FAILED, e)

    @staticmethod
    def _failure(entry: WatchEntry, kind: OutcomeKind, error: Exception) -> EntryOutcome:
        return EntryOutcome(
            entry=entry,
            kind=kind,
            error=redact_text(str(error)),
            error_type=type(error).__name__,
        )

    async def _evaluate_unchecked(
        self,
        entry: WatchEntry,
        now: datetime,
        policies: ThresholdPolicyTable,
        reader: BalanceSource,
        deduplicator: AlertDeduplicator,
        dispatcher: AlertDispatcher,
        history: AlertHistory | None,
    ) -> EntryOutcome:
        entry = validate_entry(entry)
        # Fail on a missing policy before spending an RPC call
        policies.get(entry.chain)

        balance = await reader.read_balance(entry.address, entry.chain)
        decision = policies.evaluate(
            balance,
            entry.chain,
            override=entry.threshold_override,
            top_up_override=entry.top_up_override,
        )

        if not await deduplicator.claim(entry, decision.below_threshold, now):
            kind = OutcomeKind.SUPPRESSED if decision.below_threshold else OutcomeKind.HEALTHY
            return EntryOutcome(
                entry=entry, kind=kind, balance=balance, threshold=decision.threshold
            )

        deep_link = self.deep_links.build(entry.chain, decision.suggested_top_up, entry.address)
        message = self.formatter.build_message(entry, balance, decision, deep_link)
        result = await dispatcher.dispatch(message)
        if history is not None:
            await self._record_history(history, entry, message, result, now)
        if not result.delivered:
            # State stays Alerted; the cool-down governs the next attempt
            raise DeliveryFailure(
                f"No channel accepted the alert ({result.failure_count} failed)"
            )

        ALERTS_DISPATCHED.labels(chain=entry.chain).inc()
        logger.info(
            "Low balance alert dispatched for %s on %s: %s < %s",
            entry.masked_address,
            entry.chain,
            balance,
            decision.threshold,
        )
        return EntryOutcome(
            entry=entry,
            kind=OutcomeKind.DISPATCHED,
            balance=balance,
            threshold=decision.threshold,
            message=message,
        )

    @staticmethod
    async def _record_history(
        history: AlertHistory,
        entry: WatchEntry,
        message: AlertMessage,
        result: DispatchResult,
        now: datetime,
    ) -> None:
        try:
            await history.record(build_record(entry.key, message, result, now))
        except AlertHistoryError as e:
            logger.warning(
                "Alert history not recorded for %s on %s: %s", entry.masked_address, entry.chain, e
            )

    @staticmethod
    def _record_metrics(summary: PassSummary, duration: float) -> None:
        PASS_DURATION.observe(duration)
        for outcome in summary.outcomes:
            ENTRY_OUTCOMES.labels(chain=str(outcome.entry.chain), outcome=outcome.kind.value).inc()

    @staticmethod
    def _log_summary(summary: PassSummary) -> None:
        counts = summary.counts
        logger.info(
            "Pass complete in %.2fs: %d entries, %d dispatched, %d suppressed, "
            "%d transient, %d failed, %d deferred",
            summary.duration_seconds,
            len(summary.outcomes),
            counts[OutcomeKind.DISPATCHED],
            counts[OutcomeKind.SUPPRESSED],
            counts[OutcomeKind.TRANSIENT],
            counts[OutcomeKind.FAILED] + counts[OutcomeKind.INVALID],
            counts[OutcomeKind.DEFERRED],
        )
        for error in summary.errors:
            logger.warning(
                "Entry error: %s on %s (%s): %s",
                error["address"],
                error["chain"],
                error["error_type"],
                error["error"],
            )

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_pass()
            except AlertStoreError:
                # Already logged; retry on the next interval
                pass
            except Exception as e:
                self._last_error = str(e)
                logger.exception("Error in watchlist pass: %s", e)

            await asyncio.sleep(self._poll_interval)

    async def start(self) -> None:
        """Start running passes every poll interval."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Watchlist scheduler started (interval %.0fs, %d entries)",
            self._poll_interval,
            len(self.watchlist),
        )

    async def stop(self) -> None:
        """Stop the loop and cancel entries still in flight."""
        if not self._running:
            return
        self._running = False

        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        in_flight = list(self._in_flight.values())
        for task in in_flight:
            task.cancel()
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        logger.info("Watchlist scheduler stopped")

    async def __aenter__(self) -> WatchlistScheduler:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()
