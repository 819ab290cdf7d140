"""Change feed emulated by polling the newest-N window and diffing successive reads."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import (
    AsyncGenerator,
    AsyncIterator,
    Awaitable,
    Callable,
    Mapping,
    Sequence,
)

from case_summary.application.ports.case_store_port import (
    CaseChange,
    CaseStoreError,
    ChangeFeedError,
    ChangeKind,
    FeedSnapshot,
)
from case_summary.domain.case_record import CaseRecord

WindowFetcher = Callable[[], Awaitable[list[CaseRecord]]]
SleepCallable = Callable[[float], Awaitable[None]]
logger = logging.getLogger(__name__)


def diff_window(
    previous: Mapping[str, CaseRecord],
    current: Sequence[CaseRecord],
) -> tuple[CaseChange, ...]:
    """Return removed, then added, then modified changes between two window reads."""

    current_ids = {record.case_id for record in current}
    removed = [
        CaseChange(kind=ChangeKind.REMOVED, case_id=case_id)
        for case_id in previous
        if case_id not in current_ids
    ]
    added = [
        CaseChange(kind=ChangeKind.ADDED, case_id=record.case_id, record=record)
        for record in current
        if record.case_id not in previous
    ]
    modified = [
        CaseChange(kind=ChangeKind.MODIFIED, case_id=record.case_id, record=record)
        for record in current
        if record.case_id in previous and previous[record.case_id] != record
    ]
    return (*removed, *added, *modified)


class PollingCaseChangeFeed:
    """Feed yielding one initial snapshot, then only non-empty diffs."""

    def __init__(
        self,
        *,
        fetch_window: WindowFetcher,
        poll_interval_seconds: float,
        sleep: SleepCallable = asyncio.sleep,
    ) -> None:
        self._fetch_window = fetch_window
        self._poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep
        self._closed = False
        self._iterator: AsyncGenerator[FeedSnapshot, None] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[FeedSnapshot]:
        if self._iterator is None:
            self._iterator = self._iterate()
        return self._iterator

    async def aclose(self) -> None:
        self._closed = True
        iterator = self._iterator
        if iterator is not None:
            await iterator.aclose()

    async def _iterate(self) -> AsyncGenerator[FeedSnapshot, None]:
        previous: dict[str, CaseRecord] | None = None
        while not self._closed:
            try:
                records = await self._fetch_window()
            except CaseStoreError as error:
                raise ChangeFeedError(f"Window poll failed: {error}") from error

            if previous is None:
                yield FeedSnapshot(
                    changes=tuple(
                        CaseChange(kind=ChangeKind.ADDED, case_id=record.case_id, record=record)
                        for record in records
                    ),
                    is_initial=True,
                )
            else:
                changes = diff_window(previous, records)
                if changes:
                    logger.debug("change_feed_diff changes=%s", len(changes))
                    yield FeedSnapshot(changes=changes)
            previous = {record.case_id: record for record in records}
            await self._sleep(self._poll_interval_seconds)
