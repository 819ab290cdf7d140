"""Observable holder of the published summary counters."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from case_summary.application.services.reconciliation_engine import (
    DriftStats,
    SubscriptionState,
)
from case_summary.domain.counters import CounterVector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SummaryCountersSnapshot:
    """Read-only view handed to the presentation layer.

    `counters` is `None` while loading or when no value was ever available.
    """

    state: SubscriptionState
    counters: CounterVector | None
    error: str | None = None
    drift: DriftStats = field(default_factory=DriftStats)


CounterListener = Callable[[SummaryCountersSnapshot], None]


class CounterStore:
    """Publish counter snapshots atomically, tagged by session generation."""

    def __init__(self) -> None:
        self._generation = 0
        self._snapshot = SummaryCountersSnapshot(
            state=SubscriptionState.UNSUBSCRIBED,
            counters=None,
        )
        self._listeners: list[CounterListener] = []

    @property
    def generation(self) -> int:
        return self._generation

    def snapshot(self) -> SummaryCountersSnapshot:
        return self._snapshot

    def subscribe(self, listener: CounterListener) -> Callable[[], None]:
        """Register `listener` for every published snapshot; returns an unsubscribe."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def reset(self, *, state: SubscriptionState) -> int:
        """Start a new generation with the loading sentinel and return its token."""

        self._generation += 1
        self._emit(SummaryCountersSnapshot(state=state, counters=None))
        return self._generation

    def publish(
        self,
        generation: int,
        *,
        state: SubscriptionState,
        counters: CounterVector | None,
        error: str | None = None,
        drift: DriftStats | None = None,
    ) -> bool:
        """Publish a full snapshot unless `generation` is stale."""

        if generation != self._generation:
            logger.debug(
                "counter_publish_stale generation=%s current=%s",
                generation,
                self._generation,
            )
            return False
        self._emit(
            SummaryCountersSnapshot(
                state=state,
                counters=counters,
                error=error,
                drift=drift or DriftStats(),
            )
        )
        return True

    def _emit(self, snapshot: SummaryCountersSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("counter_listener_failed")
