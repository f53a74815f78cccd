"""Watchlist monitoring - balance reads, thresholds, dedup and scheduling."""

from octaneshift_monitor.monitor.balance import (
    BalanceSource,
    ChainBalanceReader,
    StaticBalanceReader,
)
from octaneshift_monitor.monitor.dedup import AlertDeduplicator
from octaneshift_monitor.monitor.models import (
    AlertState,
    BalanceSample,
    ChainSummary,
    EntryOutcome,
    OutcomeKind,
    PassSummary,
    PolicyDecision,
    ThresholdPolicy,
    WatchEntry,
)
from octaneshift_monitor.monitor.policy import DEFAULT_POLICIES, ThresholdPolicyTable
from octaneshift_monitor.monitor.scheduler import WatchlistScheduler
from octaneshift_monitor.monitor.simulation import TestAlert, run_test_alert, synthetic_entry
from octaneshift_monitor.monitor.state import (
    AlertStateStore,
    InMemoryAlertStateStore,
    RedisAlertStateStore,
)
from octaneshift_monitor.monitor.watchlist import WatchlistStore, validate_entry

__all__ = [
    "DEFAULT_POLICIES",
    "AlertDeduplicator",
    "AlertState",
    "AlertStateStore",
    "BalanceSample",
    "BalanceSource",
    "ChainBalanceReader",
    "ChainSummary",
    "EntryOutcome",
    "InMemoryAlertStateStore",
    "OutcomeKind",
    "PassSummary",
    "PolicyDecision",
    "RedisAlertStateStore",
    "StaticBalanceReader",
    "TestAlert",
    "ThresholdPolicy",
    "ThresholdPolicyTable",
    "WatchEntry",
    "WatchlistScheduler",
    "WatchlistStore",
    "run_test_alert",
    "synthetic_entry",
    "validate_entry",
]
