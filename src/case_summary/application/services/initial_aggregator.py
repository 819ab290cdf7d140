"""Exact one-shot aggregation establishing ground-truth counters for a scope."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from case_summary.application.ports.case_store_port import CaseQuery, CaseStorePort
from case_summary.domain.access_scope import AccessScope
from case_summary.domain.case_record import CaseCategory
from case_summary.domain.counters import CounterVector
from case_summary.domain.today_window import TodayWindow

logger = logging.getLogger(__name__)


class CountsUnavailableError(RuntimeError):
    """Raised when any aggregation round trip fails; no partial counts are produced."""


@dataclass(frozen=True)
class _CounterQuery:
    counter: str
    category: CaseCategory | None = None
    today_only: bool = False


_COUNTER_QUERIES: tuple[_CounterQuery, ...] = (
    _CounterQuery("total_cases"),
    _CounterQuery("completed_cases", CaseCategory.COMPLETED),
    _CounterQuery("incomplete_cases", CaseCategory.INCOMPLETE),
    _CounterQuery("doctor_pending_cases", CaseCategory.DOCTOR_PENDING),
    _CounterQuery("pharmacist_pending_cases", CaseCategory.PHARMACIST_PENDING),
    _CounterQuery("today_cases", CaseCategory.COMPLETED, today_only=True),
    _CounterQuery("today_completed", CaseCategory.COMPLETED, today_only=True),
    _CounterQuery("today_incomplete", CaseCategory.INCOMPLETE, today_only=True),
)


class InitialAggregator:
    """Run one exact round trip per counter and assemble the full vector."""

    def __init__(self, *, store: CaseStorePort) -> None:
        self._store = store

    async def aggregate(self, scope: AccessScope, *, today: TodayWindow) -> CounterVector:
        """Return exact counters for `scope`, or raise `CountsUnavailableError`."""

        try:
            async with asyncio.TaskGroup() as group:
                tasks = {
                    query.counter: group.create_task(
                        self._count(query, scope=scope, today=today)
                    )
                    for query in _COUNTER_QUERIES
                }
        except ExceptionGroup as failures:
            first = failures.exceptions[0]
            logger.warning(
                "initial_aggregation_failed failures=%s error=%s",
                len(failures.exceptions),
                first,
            )
            raise CountsUnavailableError(f"Summary counts unavailable: {first}") from first

        counters = CounterVector(**{name: task.result() for name, task in tasks.items()})
        logger.info(
            "initial_aggregation_done total=%s completed=%s pending=%s incomplete=%s",
            counters.total_cases,
            counters.completed_cases,
            counters.pending_cases,
            counters.incomplete_cases,
        )
        return counters

    async def _count(
        self,
        query: _CounterQuery,
        *,
        scope: AccessScope,
        today: TodayWindow,
    ) -> int:
        records = await self._store.fetch_cases(
            CaseQuery(
                owner_filter=scope.owner_filter,
                category=query.category,
                terminal_window=today if query.today_only else None,
            )
        )
        return sum(record.sub_unit_count for record in records if scope.includes(record))
