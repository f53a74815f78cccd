"""Data models for the watchlist monitor."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

from octaneshift_monitor.alerter.models import AlertMessage
from octaneshift_monitor.errors import EntryValidationError
from octaneshift_monitor.redaction import mask_address


def _parse_optional_decimal(value: Any, name: str) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise EntryValidationError(f"Invalid {name}: {value!r}") from None
    if not result.is_finite() or result < 0:
        raise EntryValidationError(f"Invalid {name}: {value!r}")
    return result


def entry_key(address: str, chain: str) -> str:
    """Return the dedup/registry key for an (address, chain) pair."""
    return f"{str(chain).strip().lower()}:{address.strip().lower()}"


@dataclass(frozen=True)
class WatchEntry:
    """A wallet registered for gas balance monitoring.

    Attributes:
        address: Wallet address on the chain.
        chain: Chain alias (see ``octaneshift_monitor.chains.Chain``).
        threshold_override: Replaces the chain's minimum balance if set.
        top_up_override: Replaces the chain's suggested top-up if set.
        label: Optional human-readable name for the wallet.
    """

    address: str
    chain: str
    threshold_override: Decimal | None = None
    top_up_override: Decimal | None = None
    label: str | None = None

    @property
    def key(self) -> str:
        """Return the key identifying this entry."""
        return entry_key(self.address, self.chain)

    @property
    def masked_address(self) -> str:
        """Return the address with its tail masked for logging."""
        return mask_address(self.address)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "address": self.address,
            "chain": str(self.chain),
            "threshold_override": (
                str(self.threshold_override) if self.threshold_override is not None else None
            ),
            "top_up_override": (
                str(self.top_up_override) if self.top_up_override is not None else None
            ),
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WatchEntry:
        """Deserialize from a dictionary.

        Raises:
            EntryValidationError: If required fields are missing or amounts
                are malformed.
        """
        address = data.get("address")
        chain = data.get("chain")
        if not isinstance(address, str) or not isinstance(chain, str):
            raise EntryValidationError("Watch entry requires string 'address' and 'chain'")
        label = data.get("label")
        if label is not None and not isinstance(label, str):
            raise EntryValidationError("Watch entry 'label' must be a string")
        return cls(
            address=address.strip(),
            chain=chain.strip().lower(),
            threshold_override=_parse_optional_decimal(
                data.get("threshold_override"), "threshold_override"
            ),
            top_up_override=_parse_optional_decimal(
                data.get("top_up_override"), "top_up_override"
            ),
            label=label,
        )


@dataclass(frozen=True)
class BalanceSample:
    """A single balance observation for a watch entry."""

    entry: WatchEntry
    amount: Decimal
    observed_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class ThresholdPolicy:
    """Minimum balance and suggested top-up for one chain."""

    chain: str
    min_balance: Decimal
    suggested_top_up: Decimal


@dataclass(frozen=True)
class PolicyDecision:
    """Result of evaluating a balance against a threshold policy."""

    below_threshold: bool
    threshold: Decimal
    suggested_top_up: Decimal


@dataclass
class AlertState:
    """Outstanding alert for an (address, chain) pair.

    Attributes:
        key: Entry key (``chain:address``).
        address: Wallet address.
        chain: Chain alias.
        last_alerted_at: When the last alert was dispatched.
        acknowledged: Whether the user acknowledged the alert.
    """

    key: str
    address: str
    chain: str
    last_alerted_at: datetime
    acknowledged: bool = False

    def is_cooling_down(self, now: datetime, cooldown_seconds: float) -> bool:
        """Return True while the cool-down window is still running."""
        return (now - self.last_alerted_at).total_seconds() < cooldown_seconds

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for storage."""
        return {
            "key": self.key,
            "address": self.address,
            "chain": self.chain,
            "last_alerted_at": self.last_alerted_at.isoformat(),
            "last_alerted_ts": self.last_alerted_at.timestamp(),
            "acknowledged": self.acknowledged,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertState:
        """Deserialize from dictionary."""
        return cls(
            key=data["key"],
            address=data["address"],
            chain=data["chain"],
            last_alerted_at=datetime.fromisoformat(data["last_alerted_at"]),
            acknowledged=bool(data.get("acknowledged", False)),
        )


class OutcomeKind(StrEnum):
    """How the evaluation of a single entry ended."""

    HEALTHY = "healthy"
    DISPATCHED = "dispatched"
    SUPPRESSED = "suppressed"
    TRANSIENT = "transient"
    FAILED = "failed"
    INVALID = "invalid"
    DEFERRED = "deferred"


SUCCESS_KINDS = frozenset({OutcomeKind.HEALTHY, OutcomeKind.DISPATCHED, OutcomeKind.SUPPRESSED})
HARD_FAILURE_KINDS = frozenset({OutcomeKind.FAILED, OutcomeKind.INVALID})


@dataclass(frozen=True)
class EntryOutcome:
    """Result of evaluating one watch entry during a pass."""

    entry: WatchEntry
    kind: OutcomeKind
    balance: Decimal | None = None
    threshold: Decimal | None = None
    error: str | None = None
    error_type: str | None = None
    message: AlertMessage | None = None


@dataclass
class ChainSummary:
    """Per-chain outcome counts for a pass."""

    successes: int = 0
    dispatched: int = 0
    suppressed: int = 0
    transient: int = 0
    failures: int = 0
    deferred: int = 0

    def to_dict(self) -> dict[str, int]:
        """Serialize to dictionary."""
        return {
            "successes": self.successes,
            "dispatched": self.dispatched,
            "suppressed": self.suppressed,
            "transient": self.transient,
            "failures": self.failures,
            "deferred": self.deferred,
        }


@dataclass
class PassSummary:
    """Operator-facing report of a watchlist pass."""

    started_at: datetime
    finished_at: datetime | None = None
    outcomes: list[EntryOutcome] = field(default_factory=list)

    def add(self, outcome: EntryOutcome) -> None:
        """Record an entry outcome."""
        self.outcomes.append(outcome)

    @property
    def duration_seconds(self) -> float:
        """Return pass duration in seconds."""
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def counts(self) -> Counter[OutcomeKind]:
        """Return outcome counts across all chains."""
        return Counter(o.kind for o in self.outcomes)

    @property
    def by_chain(self) -> dict[str, ChainSummary]:
        """Return outcome counts grouped by chain."""
        summaries: dict[str, ChainSummary] = {}
        for outcome in self.outcomes:
            summary = summaries.setdefault(str(outcome.entry.chain), ChainSummary())
            if outcome.kind in SUCCESS_KINDS:
                summary.successes += 1
            if outcome.kind == OutcomeKind.DISPATCHED:
                summary.dispatched += 1
            elif outcome.kind == OutcomeKind.SUPPRESSED:
                summary.suppressed += 1
            elif outcome.kind == OutcomeKind.TRANSIENT:
                summary.transient += 1
            elif outcome.kind in HARD_FAILURE_KINDS:
                summary.failures += 1
            elif outcome.kind == OutcomeKind.DEFERRED:
                summary.deferred += 1
        return summaries

    @property
    def errors(self) -> list[dict[str, str | None]]:
        """Return hard failures with masked addresses for the error report."""
        return [
            {
                "chain": str(o.entry.chain),
                "address": o.entry.masked_address,
                "kind": o.kind.value,
                "error_type": o.error_type,
                "error": o.error,
            }
            for o in self.outcomes
            if o.kind in HARD_FAILURE_KINDS
        ]

    def to_dict(self) -> dict[str, Any]:
        """Serialize the report."""
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "entries": len(self.outcomes),
            "chains": {chain: s.to_dict() for chain, s in self.by_chain.items()},
            "errors": self.errors,
        }
