from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import pytest

from case_summary.application.ports.case_store_port import (
    CaseStoreError,
    ChangeFeedError,
    ChangeKind,
)
from case_summary.domain.case_record import CaseRecord
from case_summary.infrastructure.feed.polling_change_feed import (
    PollingCaseChangeFeed,
    diff_window,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


class ScriptedWindow:
    def __init__(self, windows: Sequence[list[CaseRecord] | Exception]) -> None:
        self._windows = list(windows)
        self.calls = 0

    async def __call__(self) -> list[CaseRecord]:
        self.calls += 1
        item = self._windows.pop(0) if len(self._windows) > 1 else self._windows[0]
        if isinstance(item, Exception):
            raise item
        return list(item)


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _record(case_id: str, **overrides: object) -> CaseRecord:
    values: dict[str, object] = {"case_id": case_id, "created_at": NOW - timedelta(minutes=1)}
    values.update(overrides)
    return CaseRecord(**values)  # type: ignore[arg-type]


def _feed(
    windows: Sequence[list[CaseRecord] | Exception],
    sleep: FakeSleep,
) -> PollingCaseChangeFeed:
    return PollingCaseChangeFeed(
        fetch_window=ScriptedWindow(windows),
        poll_interval_seconds=0.5,
        sleep=sleep,
    )


def test_diff_window_orders_removed_added_modified() -> None:
    previous = {"case-1": _record("case-1"), "case-2": _record("case-2")}
    current = [_record("case-3"), _record("case-2", doctor_completed=True)]

    changes = diff_window(previous, current)

    assert [(change.kind, change.case_id) for change in changes] == [
        (ChangeKind.REMOVED, "case-1"),
        (ChangeKind.ADDED, "case-3"),
        (ChangeKind.MODIFIED, "case-2"),
    ]
    assert changes[0].record is None
    assert changes[2].record == current[1]


def test_diff_window_ignores_unchanged_records() -> None:
    previous = {"case-1": _record("case-1")}

    assert diff_window(previous, [_record("case-1")]) == ()


@pytest.mark.asyncio
async def test_first_snapshot_lists_window_as_added() -> None:
    sleep = FakeSleep()
    feed = _feed([[_record("case-2"), _record("case-1")]], sleep)

    snapshot = await anext(aiter(feed))

    assert snapshot.is_initial is True
    assert [(change.kind, change.case_id) for change in snapshot.changes] == [
        (ChangeKind.ADDED, "case-2"),
        (ChangeKind.ADDED, "case-1"),
    ]
    await feed.aclose()


@pytest.mark.asyncio
async def test_unchanged_polls_are_not_delivered() -> None:
    sleep = FakeSleep()
    first = [_record("case-1")]
    feed = _feed([first, first, [_record("case-1", doctor_completed=True)]], sleep)
    iterator = aiter(feed)

    await anext(iterator)
    snapshot = await anext(iterator)

    assert snapshot.is_initial is False
    assert [(change.kind, change.case_id) for change in snapshot.changes] == [
        (ChangeKind.MODIFIED, "case-1"),
    ]
    assert sleep.delays == [0.5, 0.5]
    await feed.aclose()


@pytest.mark.asyncio
async def test_store_failure_surfaces_as_change_feed_error() -> None:
    sleep = FakeSleep()
    feed = _feed([[_record("case-1")], CaseStoreError("connection reset")], sleep)
    iterator = aiter(feed)
    await anext(iterator)

    with pytest.raises(ChangeFeedError, match="connection reset"):
        await anext(iterator)


@pytest.mark.asyncio
async def test_closed_feed_stops_iteration() -> None:
    sleep = FakeSleep()
    feed = _feed([[_record("case-1")]], sleep)
    iterator = aiter(feed)
    await anext(iterator)

    await feed.aclose()

    assert feed.closed is True
    with pytest.raises(StopAsyncIteration):
        await anext(iterator)
