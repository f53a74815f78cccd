"""Tests for alert message formatting."""

from decimal import Decimal
from unittest.mock import patch

import pytest

from octaneshift_monitor.alerter.deeplink import DeepLinkBuilder
from octaneshift_monitor.alerter.formatter import (
    ALERT_TITLE,
    AlertFormatter,
    escape_telegram_markdown,
)
from octaneshift_monitor.alerter.models import AlertMessage
from octaneshift_monitor.alerter.qr import QRCodeError
from octaneshift_monitor.monitor.models import PolicyDecision, WatchEntry

WALLET = "0x7e5F4552091A69125d5DfCb7b8C2659029395Bdf"


@pytest.fixture
def entry() -> WatchEntry:
    return WatchEntry(address=WALLET, chain="base")


@pytest.fixture
def decision() -> PolicyDecision:
    return PolicyDecision(
        below_threshold=True,
        threshold=Decimal("0.001"),
        suggested_top_up=Decimal("5"),
    )


@pytest.fixture
def deep_link() -> str:
    return DeepLinkBuilder("http://localhost:5173").build("base", Decimal("5"), WALLET)


@pytest.fixture
def message(entry: WatchEntry, decision: PolicyDecision, deep_link: str) -> AlertMessage:
    return AlertFormatter().build_message(entry, Decimal("0.0001"), decision, deep_link)


class TestBuildMessage:
    """Tests for building alert messages."""

    def test_fields(self, message: AlertMessage, deep_link: str) -> None:
        assert message.wallet == WALLET
        assert message.chain == "base"
        assert message.current_balance == Decimal("0.0001")
        assert message.threshold == Decimal("0.001")
        assert message.suggested_top_up == Decimal("5")
        assert message.currency_symbol == "ETH"
        assert message.deep_link == deep_link

    def test_rendered_text(self, message: AlertMessage) -> None:
        assert message.rendered_text == "\n".join(
            [
                "LOW GAS BALANCE",
                "=" * 30,
                "",
                f"Wallet: {WALLET}",
                "Chain: BASE",
                "Current Balance: 0.0001 ETH",
                "Threshold: 0.001 ETH",
                "Suggested Top-Up: 5 USDT",
                "",
                f"Top up: http://localhost:5173/deeplink?chain=base&amount=5&address={WALLET}",
            ]
        )

    def test_rendered_text_is_deterministic(
        self, entry: WatchEntry, decision: PolicyDecision, deep_link: str
    ) -> None:
        formatter = AlertFormatter()
        first = formatter.build_message(entry, Decimal("0.0001"), decision, deep_link)
        second = formatter.build_message(entry, Decimal("0.0001"), decision, deep_link)
        assert first == second

    def test_label_and_native_symbol(self, decision: PolicyDecision, deep_link: str) -> None:
        entry = WatchEntry(address=WALLET, chain="pol", label="Treasury")
        message = AlertFormatter().build_message(entry, Decimal("0.1"), decision, deep_link)

        assert message.currency_symbol == "POL"
        assert "Label: Treasury" in message.rendered_text
        assert "Current Balance: 0.1 POL" in message.rendered_text

    def test_to_dict(self, message: AlertMessage) -> None:
        data = message.to_dict()
        assert data["currentBalance"] == "0.0001"
        assert data["threshold"] == "0.001"
        assert data["deepLink"] == message.deep_link
        assert data["message"] == message.rendered_text


class TestFormat:
    """Tests for channel renderings."""

    def test_plain_text_and_links(self, message: AlertMessage) -> None:
        alert = AlertFormatter().format(message)

        assert alert.plain_text == message.rendered_text
        assert alert.links["topup"] == message.deep_link
        assert alert.links["wallet"] == f"https://basescan.org/address/{WALLET}"
        assert ALERT_TITLE in alert.title
        assert alert.qr_code is None

    def test_discord_embed(self, message: AlertMessage) -> None:
        embed = AlertFormatter().format(message).discord_embed

        assert embed["url"] == message.deep_link
        fields = {f["name"]: f["value"] for f in embed["fields"]}  # type: ignore[union-attr]
        assert fields["Chain"] == "BASE"
        assert fields["Current Balance"] == "0.0001 ETH"
        assert message.deep_link in fields["Quick Top-Up"]

    def test_telegram_markdown_escaped(self, message: AlertMessage) -> None:
        text = AlertFormatter().format(message).telegram_markdown

        assert "0\\.0001 ETH" in text
        assert "0\\.001 ETH" in text
        assert f"`{WALLET}`" in text
        assert f"(http://localhost:5173/deeplink?chain=base&amount=5&address={WALLET})" in text

    def test_include_qr(self, message: AlertMessage) -> None:
        alert = AlertFormatter(include_qr=True).format(message)
        assert alert.qr_code is not None
        assert alert.qr_code.startswith("data:image/png;base64,")

    def test_qr_failure_does_not_block_alert(self, message: AlertMessage) -> None:
        with patch(
            "octaneshift_monitor.alerter.formatter.generate_qr_code",
            side_effect=QRCodeError("too long"),
        ):
            alert = AlertFormatter(include_qr=True).format(message)
        assert alert.qr_code is None
        assert alert.plain_text == message.rendered_text


class TestEscapeTelegramMarkdown:
    """Tests for MarkdownV2 escaping."""

    def test_escapes_special_characters(self) -> None:
        assert escape_telegram_markdown("a.b-c!") == "a\\.b\\-c\\!"

    def test_plain_text_unchanged(self) -> None:
        assert escape_telegram_markdown("Low Gas") == "Low Gas"
