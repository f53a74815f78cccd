"""Alert message formatter for multi-channel delivery.

This module turns low-balance observations into human-readable alert
messages with a top-up deep link, rendered for Discord, Telegram and plain
text channels.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from octaneshift_monitor.alerter.deeplink import format_amount
from octaneshift_monitor.alerter.models import AlertMessage, FormattedAlert
from octaneshift_monitor.alerter.qr import QRCodeError, generate_qr_code
from octaneshift_monitor.chains import get_chain_config

if TYPE_CHECKING:
    from octaneshift_monitor.monitor.models import PolicyDecision, WatchEntry

logger = logging.getLogger(__name__)

ALERT_TITLE = "Low Gas Balance"
SETTLE_CURRENCY = "USDT"

# Discord embed color (decimal value)
COLOR_LOW_BALANCE = 15105570  # Orange (#E67E22)

TELEGRAM_SPECIAL_CHARS = "_*[]()~`>#+-=|{}.!\\"


def escape_telegram_markdown(text: str) -> str:
    """Escape special Telegram MarkdownV2 characters."""
    return "".join(f"\\{char}" if char in TELEGRAM_SPECIAL_CHARS else char for char in text)


def _escape_telegram_url(url: str) -> str:
    # Inside (...) only ')' and '\' must be escaped
    return url.replace("\\", "\\\\").replace(")", "\\)")


def _escape_telegram_code(text: str) -> str:
    return text.replace("\\", "\\\\").replace("`", "\\`")


class AlertFormatter:
    """Builds AlertMessages and renders them for each channel."""

    def __init__(self, *, include_qr: bool = False) -> None:
        """Initialize the formatter.

        Args:
            include_qr: Attach a PNG QR code of the deep link to formatted alerts.
        """
        self.include_qr = include_qr

    def build_message(
        self,
        entry: WatchEntry,
        balance: Decimal,
        decision: PolicyDecision,
        deep_link: str,
    ) -> AlertMessage:
        """Build the alert message for a low-balance observation."""
        symbol = get_chain_config(entry.chain).native_currency.symbol
        rendered = self.render_text(
            wallet=entry.address,
            chain=str(entry.chain),
            balance=balance,
            threshold=decision.threshold,
            suggested_top_up=decision.suggested_top_up,
            symbol=symbol,
            deep_link=deep_link,
            label=entry.label,
        )
        return AlertMessage(
            wallet=entry.address,
            chain=str(entry.chain),
            current_balance=balance,
            threshold=decision.threshold,
            deep_link=deep_link,
            rendered_text=rendered,
            suggested_top_up=decision.suggested_top_up,
            currency_symbol=symbol,
            label=entry.label,
        )

    @staticmethod
    def render_text(
        *,
        wallet: str,
        chain: str,
        balance: Decimal,
        threshold: Decimal,
        suggested_top_up: Decimal,
        symbol: str,
        deep_link: str,
        label: str | None = None,
    ) -> str:
        """Render the plain-text alert body."""
        lines = [
            ALERT_TITLE.upper(),
            "=" * 30,
            "",
            f"Wallet: {wallet}",
        ]
        if label:
            lines.append(f"Label: {label}")
        lines.extend(
            [
                f"Chain: {chain.upper()}",
                f"Current Balance: {format_amount(balance)} {symbol}",
                f"Threshold: {format_amount(threshold)} {symbol}",
                f"Suggested Top-Up: {format_amount(suggested_top_up)} {SETTLE_CURRENCY}",
                "",
                f"Top up: {deep_link}",
            ]
        )
        return "\n".join(lines)

    def format(self, message: AlertMessage) -> FormattedAlert:
        """Render an alert message for all channels.

        Args:
            message: The alert message to format.

        Returns:
            FormattedAlert with all channel formats.
        """
        links = self._build_links(message)
        title = f"🚨 {ALERT_TITLE} on {message.chain.upper()}"
        body = (
            f"Wallet {message.wallet} on {message.chain.upper()} has "
            f"{format_amount(message.current_balance)} {message.currency_symbol}, "
            f"below {format_amount(message.threshold)} {message.currency_symbol}"
        )

        qr_code = None
        if self.include_qr:
            try:
                qr_code = generate_qr_code(message.deep_link)
            except QRCodeError as e:
                logger.warning("Could not attach QR code: %s", e)

        return FormattedAlert(
            title=title,
            body=body,
            discord_embed=self._build_discord_embed(message, links),
            telegram_markdown=self._build_telegram_markdown(message),
            plain_text=message.rendered_text,
            links=links,
            qr_code=qr_code,
        )

    def _build_links(self, message: AlertMessage) -> dict[str, str]:
        """Build dictionary of relevant links."""
        return {
            "topup": message.deep_link,
            "wallet": get_chain_config(message.chain).address_url(message.wallet),
        }

    def _build_discord_embed(
        self,
        message: AlertMessage,
        links: dict[str, str],
    ) -> dict[str, object]:
        """Build Discord-optimized embed format."""
        symbol = message.currency_symbol
        fields: list[dict[str, object]] = [
            {"name": "Wallet", "value": f"`{message.wallet}`", "inline": False},
            {"name": "Chain", "value": message.chain.upper(), "inline": True},
            {
                "name": "Current Balance",
                "value": f"{format_amount(message.current_balance)} {symbol}",
                "inline": True,
            },
            {
                "name": "Threshold",
                "value": f"{format_amount(message.threshold)} {symbol}",
                "inline": True,
            },
            {
                "name": "Quick Top-Up",
                "value": (
                    f"[Top up {format_amount(message.suggested_top_up)} "
                    f"{SETTLE_CURRENCY}]({message.deep_link})"
                ),
                "inline": False,
            },
        ]
        if message.label:
            fields.insert(1, {"name": "Label", "value": message.label, "inline": True})

        return {
            "title": f"🚨 {ALERT_TITLE}",
            "color": COLOR_LOW_BALANCE,
            "url": links["topup"],
            "fields": fields,
            "footer": {"text": "OctaneShift Gas Monitor"},
        }

    def _build_telegram_markdown(self, message: AlertMessage) -> str:
        """Build Telegram MarkdownV2 format."""
        symbol = escape_telegram_markdown(message.currency_symbol)
        lines = [
            f"🚨 *{escape_telegram_markdown(ALERT_TITLE)}*",
            "",
            f"*Wallet:* `{_escape_telegram_code(message.wallet)}`",
        ]
        if message.label:
            lines.append(f"*Label:* {escape_telegram_markdown(message.label)}")
        lines.extend(
            [
                f"*Chain:* *{escape_telegram_markdown(message.chain.upper())}*",
                "*Current Balance:* "
                f"{escape_telegram_markdown(format_amount(message.current_balance))} {symbol}",
                "*Threshold:* "
                f"{escape_telegram_markdown(format_amount(message.threshold))} {symbol}",
                "",
                "⚡️ *Quick Top\\-Up*: "
                f"[Tap here to top up]({_escape_telegram_url(message.deep_link)})",
            ]
        )
        return "\n".join(lines)
