"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class AlertMessage:
    """A low-balance alert for one wallet, ready to be formatted.

    Attributes:
        wallet: Wallet address.
        chain: Chain alias.
        current_balance: Observed balance in native units.
        threshold: Threshold the balance fell below.
        deep_link: Pre-filled top-up URL.
        rendered_text: Deterministic human-readable message.
        suggested_top_up: Top-up amount carried in the deep link.
        currency_symbol: Native currency symbol of the chain.
        label: Optional wallet label.
    """

    wallet: str
    chain: str
    current_balance: Decimal
    threshold: Decimal
    deep_link: str
    rendered_text: str
    suggested_top_up: Decimal
    currency_symbol: str = "ETH"
    label: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        """Serialize for API responses."""
        return {
            "wallet": self.wallet,
            "chain": self.chain,
            "currentBalance": str(self.current_balance),
            "threshold": str(self.threshold),
            "suggestedTopUp": str(self.suggested_top_up),
            "currency": self.currency_symbol,
            "deepLink": self.deep_link,
            "message": self.rendered_text,
            "label": self.label,
        }


@dataclass(frozen=True)
class FormattedAlert:
    """A formatted alert message ready for delivery across multiple channels.

    Attributes:
        title: Short alert title/headline.
        body: Main alert body text.
        discord_embed: Discord-optimized embed dictionary.
        telegram_markdown: Telegram-formatted markdown string.
        plain_text: Plain text fallback for other channels.
        links: Dictionary of relevant links (e.g., deep link, wallet explorer).
        qr_code: Optional PNG data URL encoding the deep link.
    """

    title: str
    body: str
    discord_embed: dict[str, object]
    telegram_markdown: str
    plain_text: str
    links: dict[str, str] = field(default_factory=dict)
    qr_code: str | None = None
