"""
Repository pattern for data access.

Handles ledger and provider configuration persistence on top of a
key-value store handle.
"""

from datetime import datetime
from typing import List, Union

from .db import KeyValueStore
from .models import ProviderConfig, UsageRecord


USAGE_KEY_PREFIX = "usage_"
CONFIG_KEY = "provider_configs"

TimeBound = Union[datetime, int]


def _to_epoch_ms(value: TimeBound) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    return int(value)


class UsageLedger:
    """Append-only ledger of usage records.

    Every record lives under a key namespaced by ``USAGE_KEY_PREFIX``, so
    bulk operations never touch other keys in the same store.
    """

    def __init__(self, store: KeyValueStore, prefix: str = USAGE_KEY_PREFIX):
        """Initialize the ledger with a store handle.

        Args:
            store: Key-value store holding the records
            prefix: Key prefix scoping this ledger's records
        """
        self.store = store
        self.prefix = prefix

    def _key(self, record_id: str) -> str:
        return f"{self.prefix}{record_id}"

    def _owns(self, key) -> bool:
        return isinstance(key, str) and key.startswith(self.prefix)

    def append(self, record: UsageRecord) -> None:
        """Store one record under its prefixed id.

        Ids are generated to be unique; on a collision the last write wins.

        Args:
            record: The usage record to store
        """
        self.store.set(self._key(record.id), record.to_dict())

    def list_all(self) -> List[UsageRecord]:
        """Return every stored record, newest first.

        Returns:
            List of usage records ordered by timestamp (newest first)
        """
        records = [
            UsageRecord.from_dict(value)
            for key, value in self.store.list_entries()
            if self._owns(key)
        ]
        return sorted(records, key=lambda record: record.timestamp, reverse=True)

    def list_between(self, start: TimeBound, end: TimeBound) -> List[UsageRecord]:
        """Return records captured within an inclusive time range.

        Args:
            start: Range start, as a datetime or epoch milliseconds
            end: Range end, as a datetime or epoch milliseconds

        Returns:
            Matching usage records ordered by timestamp (newest first)
        """
        start_ms = _to_epoch_ms(start)
        end_ms = _to_epoch_ms(end)
        return [
            record for record in self.list_all()
            if start_ms <= record.timestamp <= end_ms
        ]

    def clear_all(self) -> int:
        """Delete every record under the ledger prefix.

        Returns:
            Number of records deleted
        """
        keys = [key for key, _ in self.store.list_entries() if self._owns(key)]
        for key in keys:
            self.store.delete(key)
        return len(keys)


class ProviderConfigStore:
    """Stores the user's provider configuration list under a single key."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def get_all(self) -> List[ProviderConfig]:
        configs = self.store.get(CONFIG_KEY)
        return [ProviderConfig.from_dict(item) for item in configs or []]

    def save_all(self, configs: List[ProviderConfig]) -> None:
        self.store.set(CONFIG_KEY, [config.to_dict() for config in configs])
