"""Registry of watched wallets."""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any

from octaneshift_monitor.chains import parse_chain, validate_address
from octaneshift_monitor.errors import EntryValidationError
from octaneshift_monitor.monitor.models import WatchEntry, entry_key

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("threshold_override", "top_up_override", "label")


def validate_entry(entry: WatchEntry) -> WatchEntry:
    """Validate a watch entry and return its normalized form.

    Raises:
        EntryValidationError: If the chain, address or amounts are malformed.
    """
    chain = parse_chain(entry.chain)
    address = validate_address(entry.address, chain)
    for name in ("threshold_override", "top_up_override"):
        value: Decimal | None = getattr(entry, name)
        if value is not None and (not value.is_finite() or value < 0):
            raise EntryValidationError(f"Invalid {name}: {value}")
    if entry.top_up_override is not None and entry.top_up_override == 0:
        raise EntryValidationError("top_up_override must be greater than zero")
    if entry.label is not None and not isinstance(entry.label, str):
        raise EntryValidationError("label must be a string")
    return WatchEntry(
        address=address,
        chain=chain.value,
        threshold_override=entry.threshold_override,
        top_up_override=entry.top_up_override,
        label=entry.label,
    )


class WatchlistStore:
    """In-memory watchlist keyed by ``chain:address``.

    Registering an entry that already exists replaces it. When a ``path``
    is set, every change made through ``register``, ``update`` or
    ``unregister`` is written back to that file.
    """

    def __init__(
        self, entries: list[WatchEntry] | None = None, *, path: str | Path | None = None
    ) -> None:
        self._entries: dict[str, WatchEntry] = {}
        self.path = Path(path) if path else None
        for entry in entries or []:
            self._add(entry)

    def _add(self, entry: WatchEntry) -> WatchEntry:
        normalized = validate_entry(entry)
        self._entries[normalized.key] = normalized
        logger.info(
            "Registered %s on %s for monitoring", normalized.masked_address, normalized.chain
        )
        return normalized

    def _persist(self) -> None:
        if self.path is None:
            return
        try:
            self.save_file(self.path)
        except OSError as e:
            logger.error("Failed to save watchlist to %s: %s", self.path, e)

    def register(self, entry: WatchEntry) -> WatchEntry:
        """Validate and add an entry."""
        normalized = self._add(entry)
        self._persist()
        return normalized

    def update(self, address: str, chain: str, changes: dict[str, Any]) -> WatchEntry | None:
        """Change the overrides or label of an existing entry.

        Keys absent from ``changes`` keep their value; a ``None`` value clears
        an override.

        Returns:
            The updated entry, or None if no entry exists.

        Raises:
            EntryValidationError: If a changed value is malformed.
        """
        current = self.get(address, chain)
        if current is None:
            return None
        data = current.to_dict()
        for name in UPDATABLE_FIELDS:
            if name in changes:
                data[name] = changes[name]
        updated = self._add(WatchEntry.from_dict(data))
        self._persist()
        return updated

    def unregister(self, address: str, chain: str) -> bool:
        """Remove an entry. Returns True if it existed."""
        removed = self._entries.pop(entry_key(address, chain), None)
        if removed is not None:
            logger.info("Unregistered %s on %s", removed.masked_address, removed.chain)
            self._persist()
        return removed is not None

    def get(self, address: str, chain: str) -> WatchEntry | None:
        """Look up an entry."""
        return self._entries.get(entry_key(address, chain))

    def entries(self) -> list[WatchEntry]:
        """Return a snapshot of all entries."""
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def load_records(self, records: list[dict[str, Any]]) -> list[str]:
        """Register entries from dictionaries.

        Invalid records are skipped and reported.

        Returns:
            Error messages for records that were rejected.
        """
        errors = []
        for index, record in enumerate(records):
            try:
                if not isinstance(record, dict):
                    raise EntryValidationError("Watch entry must be a JSON object")
                self._add(WatchEntry.from_dict(record))
            except EntryValidationError as e:
                errors.append(f"entry {index}: {e}")
                logger.warning("Skipping watchlist entry %d: %s", index, e)
        return errors

    def load_file(self, path: str | Path) -> list[str]:
        """Load entries from a JSON file containing a list of entries.

        Raises:
            EntryValidationError: If the file is not a JSON list.
        """
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise EntryValidationError(f"Watchlist file {path} must contain a JSON list")
        errors = self.load_records(data)
        logger.info("Loaded %d watchlist entries from %s", len(self), path)
        return errors

    def save_file(self, path: str | Path) -> None:
        """Write all entries to a JSON file, replacing it atomically."""
        target = Path(path)
        tmp = target.with_name(f"{target.name}.tmp")
        tmp.write_text(
            json.dumps([entry.to_dict() for entry in self.entries()], indent=2),
            encoding="utf-8",
        )
        tmp.replace(target)
        logger.debug("Saved %d watchlist entries to %s", len(self), target)
