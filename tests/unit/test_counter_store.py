from __future__ import annotations

from case_summary.application.services.counter_store import (
    CounterStore,
    SummaryCountersSnapshot,
)
from case_summary.application.services.reconciliation_engine import SubscriptionState
from case_summary.domain.counters import CounterVector


def test_initial_snapshot_is_unsubscribed_without_counters() -> None:
    snapshot = CounterStore().snapshot()

    assert snapshot.state is SubscriptionState.UNSUBSCRIBED
    assert snapshot.counters is None


def test_publish_notifies_listeners_with_full_snapshot() -> None:
    store = CounterStore()
    received: list[SummaryCountersSnapshot] = []
    store.subscribe(received.append)
    generation = store.reset(state=SubscriptionState.SEEDING)

    published = store.publish(
        generation,
        state=SubscriptionState.RECONCILING,
        counters=CounterVector(total_cases=2, doctor_pending_cases=2),
    )

    assert published is True
    assert [snapshot.state for snapshot in received] == [
        SubscriptionState.SEEDING,
        SubscriptionState.RECONCILING,
    ]
    assert received[0].counters is None
    assert store.snapshot().counters == CounterVector(total_cases=2, doctor_pending_cases=2)


def test_stale_generation_cannot_publish() -> None:
    store = CounterStore()
    old_generation = store.reset(state=SubscriptionState.SEEDING)
    store.reset(state=SubscriptionState.SEEDING)

    published = store.publish(
        old_generation,
        state=SubscriptionState.RECONCILING,
        counters=CounterVector(total_cases=99),
    )

    assert published is False
    assert store.snapshot().counters is None
    assert store.snapshot().state is SubscriptionState.SEEDING


def test_unsubscribe_and_failing_listener_do_not_break_publishing() -> None:
    store = CounterStore()
    received: list[SummaryCountersSnapshot] = []

    def broken_listener(snapshot: SummaryCountersSnapshot) -> None:
        raise RuntimeError("render failed")

    store.subscribe(broken_listener)
    unsubscribe = store.subscribe(received.append)
    generation = store.reset(state=SubscriptionState.SEEDING)
    unsubscribe()
    unsubscribe()

    assert store.publish(
        generation,
        state=SubscriptionState.ERROR,
        counters=None,
        error="boom",
    )
    assert len(received) == 1
    assert store.snapshot().error == "boom"
