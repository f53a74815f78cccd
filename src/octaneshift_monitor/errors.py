"""Error taxonomy for the watchlist pipeline.

Every per-entry error is caught at the entry boundary by the scheduler and
turned into an outcome. Only ``AlertStoreError`` escapes a pass, since a
broken alert-state store can no longer guarantee deduplication.
"""

from __future__ import annotations


class MonitorError(Exception):
    """Base exception for watchlist pipeline errors."""


class TransientBalanceError(MonitorError):
    """Balance read failed or timed out; retried on the next pass."""


class BalanceNotFoundError(MonitorError):
    """No balance source is available for the requested chain."""


class ConfigurationError(MonitorError):
    """Required configuration (e.g. a threshold policy) is missing."""


class EntryValidationError(MonitorError):
    """A watch entry has a malformed address, chain or amount."""


class DeliveryFailure(MonitorError):
    """Every delivery channel rejected or failed to send an alert."""


class AlertStoreError(MonitorError):
    """The alert-state store could not be read or written."""


class AlertHistoryError(MonitorError):
    """The alert history backend could not be read or written."""
