"""Log-only channel used in dry-run mode."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from octaneshift_monitor.alerter.models import FormattedAlert

logger = logging.getLogger(__name__)


class LogChannel:
    """Writes alerts to the log instead of delivering them."""

    def __init__(self, name: str = "log") -> None:
        self.name = name
        self.sent: list[FormattedAlert] = []

    async def send(self, alert: FormattedAlert) -> bool:
        self.sent.append(alert)
        logger.info("Alert (not delivered): %s\n%s", alert.title, alert.plain_text)
        return True
