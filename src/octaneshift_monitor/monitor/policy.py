"""Per-chain threshold policies."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import TYPE_CHECKING

from octaneshift_monitor.errors import ConfigurationError
from octaneshift_monitor.monitor.models import PolicyDecision, ThresholdPolicy

if TYPE_CHECKING:
    from octaneshift_monitor.config import ThresholdPolicyConfig

logger = logging.getLogger(__name__)

# Native-unit minimum balances; top-ups are in settle currency (USDT)
DEFAULT_POLICIES: tuple[ThresholdPolicy, ...] = (
    ThresholdPolicy(chain="eth", min_balance=Decimal("0.005"), suggested_top_up=Decimal("20")),
    ThresholdPolicy(chain="base", min_balance=Decimal("0.001"), suggested_top_up=Decimal("5")),
    ThresholdPolicy(chain="arb", min_balance=Decimal("0.001"), suggested_top_up=Decimal("5")),
    ThresholdPolicy(chain="op", min_balance=Decimal("0.001"), suggested_top_up=Decimal("5")),
    ThresholdPolicy(chain="pol", min_balance=Decimal("0.5"), suggested_top_up=Decimal("5")),
    ThresholdPolicy(chain="avax", min_balance=Decimal("0.05"), suggested_top_up=Decimal("5")),
)


class ThresholdPolicyTable:
    """Lookup table of threshold policies keyed by chain alias.

    The table is read-only while a pass runs; ``reload`` replaces the whole
    table and is meant to be called between passes.
    """

    def __init__(self, policies: Iterable[ThresholdPolicy] = DEFAULT_POLICIES) -> None:
        self._policies: dict[str, ThresholdPolicy] = {}
        self.reload(policies)

    @classmethod
    def from_config(
        cls, config: Mapping[str, ThresholdPolicyConfig] | None
    ) -> ThresholdPolicyTable:
        """Build a table from settings, falling back to the defaults."""
        if config is None:
            return cls()
        return cls(
            ThresholdPolicy(
                chain=chain.lower(),
                min_balance=policy.min_balance,
                suggested_top_up=policy.suggested_top_up,
            )
            for chain, policy in config.items()
        )

    def reload(self, policies: Iterable[ThresholdPolicy]) -> None:
        """Replace all policies."""
        self._policies = {str(p.chain).lower(): p for p in policies}
        logger.info("Loaded threshold policies for chains: %s", ", ".join(sorted(self._policies)))

    def get(self, chain: str) -> ThresholdPolicy:
        """Get the policy for a chain.

        Raises:
            ConfigurationError: If no policy is configured for the chain.
        """
        policy = self._policies.get(str(chain).lower())
        if policy is None:
            raise ConfigurationError(f"No threshold policy configured for chain {chain}")
        return policy

    def __contains__(self, chain: object) -> bool:
        return str(chain).lower() in self._policies

    @property
    def chains(self) -> list[str]:
        """Return chains with a configured policy."""
        return sorted(self._policies)

    def evaluate(
        self,
        amount: Decimal,
        chain: str,
        override: Decimal | None = None,
        top_up_override: Decimal | None = None,
    ) -> PolicyDecision:
        """Evaluate a balance against the chain's policy.

        An entry-level ``override`` replaces only the threshold; the
        suggested top-up changes only when ``top_up_override`` is given.
        A balance exactly at the threshold is not below it.

        Args:
            amount: Current balance in native units.
            chain: Chain alias.
            override: Optional entry-level threshold.
            top_up_override: Optional entry-level suggested top-up.

        Returns:
            PolicyDecision for the balance.

        Raises:
            ConfigurationError: If no policy is configured for the chain.
        """
        policy = self.get(chain)
        threshold = override if override is not None else policy.min_balance
        suggested = top_up_override if top_up_override is not None else policy.suggested_top_up
        return PolicyDecision(
            below_threshold=amount < threshold,
            threshold=threshold,
            suggested_top_up=suggested,
        )
