"""Port for reading case records and following the recent-case change feed."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from case_summary.domain.access_scope import OwnerFilter
from case_summary.domain.case_record import CaseCategory, CaseRecord
from case_summary.domain.today_window import TodayWindow


class CaseStoreError(RuntimeError):
    """Raised when a case store round trip fails."""


class ChangeFeedError(RuntimeError):
    """Raised when the change feed errors or disconnects."""


@dataclass(frozen=True)
class CaseQuery:
    """Server-side filter for one exact-count round trip."""

    owner_filter: OwnerFilter | None = None
    category: CaseCategory | None = None
    terminal_window: TodayWindow | None = None


class ChangeKind(StrEnum):
    """Change types delivered by the change feed."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class CaseChange:
    """One change entry; `record` is `None` for removals."""

    kind: ChangeKind
    case_id: str
    record: CaseRecord | None = None


@dataclass(frozen=True)
class FeedSnapshot:
    """One delivery of the change feed.

    The first snapshot of a feed has `is_initial=True` and lists every record
    in the window as an `added` change.
    """

    changes: tuple[CaseChange, ...]
    is_initial: bool = False


class CaseChangeFeedPort(Protocol):
    """Long-lived feed of snapshots over the N most recently created cases."""

    def __aiter__(self) -> AsyncIterator[FeedSnapshot]:
        """Iterate snapshots in delivery order until closed."""

    async def aclose(self) -> None:
        """Stop the feed and release its resources."""


class CaseStorePort(Protocol):
    """Async contract over the external case document store."""

    async def fetch_cases(self, query: CaseQuery) -> list[CaseRecord]:
        """Return every case matching `query`."""

    def open_change_feed(
        self,
        owner_filter: OwnerFilter | None,
        *,
        limit: int,
    ) -> CaseChangeFeedPort:
        """Open a feed over the `limit` newest cases matching `owner_filter`."""
