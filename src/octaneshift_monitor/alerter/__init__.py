"""Alerting layer - deep links, formatting and notification delivery."""

from octaneshift_monitor.alerter.channels.discord import DiscordChannel
from octaneshift_monitor.alerter.channels.log import LogChannel
from octaneshift_monitor.alerter.channels.telegram import TelegramChannel
from octaneshift_monitor.alerter.deeplink import DeepLinkBuilder, DeepLinkError
from octaneshift_monitor.alerter.dispatcher import (
    AlertChannel,
    AlertDispatcher,
    CircuitBreaker,
    DispatchResult,
)
from octaneshift_monitor.alerter.formatter import AlertFormatter
from octaneshift_monitor.alerter.history import (
    AlertHistory,
    AlertRecord,
    InMemoryAlertHistory,
    RedisAlertHistory,
)
from octaneshift_monitor.alerter.models import AlertMessage, FormattedAlert
from octaneshift_monitor.alerter.qr import (
    QRCodeError,
    QROptions,
    generate_qr_code,
    generate_qr_svg,
    validate_qr_content,
)

__all__ = [
    "AlertChannel",
    "AlertDispatcher",
    "AlertFormatter",
    "AlertHistory",
    "AlertMessage",
    "AlertRecord",
    "CircuitBreaker",
    "DeepLinkBuilder",
    "DeepLinkError",
    "DiscordChannel",
    "DispatchResult",
    "FormattedAlert",
    "InMemoryAlertHistory",
    "LogChannel",
    "QRCodeError",
    "QROptions",
    "RedisAlertHistory",
    "TelegramChannel",
    "generate_qr_code",
    "generate_qr_svg",
    "validate_qr_content",
]
