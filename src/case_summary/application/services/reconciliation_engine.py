"""Convert change-feed snapshots into counter deltas using the window cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from case_summary.application.ports.case_store_port import (
    CaseChange,
    ChangeKind,
    FeedSnapshot,
)
from case_summary.application.services.window_cache import WindowCache
from case_summary.domain.access_scope import AccessScope
from case_summary.domain.case_record import CaseRecord
from case_summary.domain.contribution import compute_contribution
from case_summary.domain.counters import CounterVector
from case_summary.domain.today_window import TodayWindow

logger = logging.getLogger(__name__)


class SubscriptionState(StrEnum):
    """Lifecycle state of one counting session."""

    UNSUBSCRIBED = "UNSUBSCRIBED"
    SEEDING = "SEEDING"
    RECONCILING = "RECONCILING"
    ERROR = "ERROR"


@dataclass(frozen=True)
class DriftStats:
    """Signals that the window approximation may have drifted the counters.

    `boundary_additions` counts records that arrived as new although they are
    older than everything already in the window (scrolled in from outside N);
    `removals` counts records subtracted when leaving the window; `clamps`
    counts counters that went negative and were clamped to zero.
    """

    boundary_additions: int = 0
    removals: int = 0
    clamps: int = 0


class ReconciliationEngine:
    """Owner of the window cache and the live counter vector for one scope."""

    def __init__(
        self,
        *,
        scope: AccessScope,
        today: TodayWindow,
        baseline: CounterVector,
        window_size: int,
    ) -> None:
        self._scope = scope
        self._today = today
        self._counters = baseline.clamped()
        self._cache = WindowCache(capacity=window_size)
        self._state = SubscriptionState.SEEDING
        self._boundary_additions = 0
        self._removals = 0
        self._clamps = 0

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def counters(self) -> CounterVector:
        return self._counters

    @property
    def cache(self) -> WindowCache:
        return self._cache

    @property
    def today(self) -> TodayWindow:
        return self._today

    @property
    def drift(self) -> DriftStats:
        return DriftStats(
            boundary_additions=self._boundary_additions,
            removals=self._removals,
            clamps=self._clamps,
        )

    def apply(self, snapshot: FeedSnapshot) -> CounterVector:
        """Apply one feed snapshot and return the resulting counters."""

        if self._state is SubscriptionState.SEEDING:
            self._seed(snapshot)
            return self._counters

        delta = CounterVector.zero()
        for change in snapshot.changes:
            delta = delta + self._apply_change(change)
        if not delta.is_zero():
            self._counters = self._checked(self._counters + delta)
        return self._counters

    def _seed(self, snapshot: FeedSnapshot) -> None:
        # Records in the first snapshot were already counted by the initial aggregation.
        records = [change.record for change in snapshot.changes if change.record is not None]
        self._cache.seed(records)
        self._state = SubscriptionState.RECONCILING
        logger.info(
            "window_cache_seeded entries=%s capacity=%s initial=%s",
            len(self._cache),
            self._cache.capacity,
            snapshot.is_initial,
        )

    def _apply_change(self, change: CaseChange) -> CounterVector:
        if change.kind is ChangeKind.REMOVED:
            previous = self._cache.pop(change.case_id)
            if previous is None:
                logger.debug("window_remove_unknown case_id=%s", change.case_id)
                return CounterVector.zero()
            self._removals += 1
            return CounterVector.zero() - self._contribution(previous)

        record = change.record
        if record is None:
            logger.warning(
                "window_change_without_record kind=%s case_id=%s",
                change.kind,
                change.case_id,
            )
            return CounterVector.zero()

        if record.case_id not in self._cache:
            self._note_boundary_addition(record)
        previous = self._cache.put(record)
        if previous is None:
            return self._contribution(record)
        return self._contribution(record) - self._contribution(previous)

    def _note_boundary_addition(self, record: CaseRecord) -> None:
        oldest = self._cache.oldest_created_at()
        if oldest is not None and record.created_at < oldest:
            self._boundary_additions += 1
            logger.info(
                "window_boundary_addition case_id=%s created_at=%s oldest_cached=%s",
                record.case_id,
                record.created_at.isoformat(),
                oldest.isoformat(),
            )

    def _contribution(self, record: CaseRecord) -> CounterVector:
        return compute_contribution(record, today=self._today, scope=self._scope)

    def _checked(self, counters: CounterVector) -> CounterVector:
        negatives = counters.negative_fields()
        if not negatives:
            return counters
        for name in negatives:
            self._clamps += 1
            logger.warning(
                "summary_counter_clamped field=%s value=%s",
                name,
                getattr(counters, name),
            )
        return counters.clamped()
