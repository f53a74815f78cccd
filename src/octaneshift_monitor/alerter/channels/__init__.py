"""Alert channel implementations for various platforms."""

from octaneshift_monitor.alerter.channels.discord import DiscordChannel
from octaneshift_monitor.alerter.channels.log import LogChannel
from octaneshift_monitor.alerter.channels.telegram import TelegramChannel

__all__ = [
    "DiscordChannel",
    "LogChannel",
    "TelegramChannel",
]
