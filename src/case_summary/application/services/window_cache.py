"""Identity-keyed cache of the last known record for each case in the feed window."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from case_summary.domain.case_record import CaseRecord


class WindowCache:
    """Previous-state lookup for delta computation; not an aggregate itself."""

    def __init__(self, *, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._entries: dict[str, CaseRecord] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, case_id: object) -> bool:
        return case_id in self._entries

    def get(self, case_id: str) -> CaseRecord | None:
        return self._entries.get(case_id)

    def put(self, record: CaseRecord) -> CaseRecord | None:
        """Store `record` and return the entry it replaced, if any."""

        previous = self._entries.get(record.case_id)
        self._entries[record.case_id] = record
        return previous

    def pop(self, case_id: str) -> CaseRecord | None:
        return self._entries.pop(case_id, None)

    def seed(self, records: Iterable[CaseRecord]) -> None:
        """Replace all entries with `records`."""

        self._entries = {record.case_id: record for record in records}

    def clear(self) -> None:
        self._entries.clear()

    def oldest_created_at(self) -> datetime | None:
        """Return the creation time of the oldest cached record."""

        if not self._entries:
            return None
        return min(record.created_at for record in self._entries.values())
