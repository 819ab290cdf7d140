"""Per-scope counting sessions and the scope lifecycle exposed to the console."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from case_summary.application.ports.case_store_port import (
    CaseChangeFeedPort,
    CaseStorePort,
    ChangeFeedError,
    FeedSnapshot,
)
from case_summary.application.services.counter_store import CounterStore
from case_summary.application.services.initial_aggregator import (
    CountsUnavailableError,
    InitialAggregator,
)
from case_summary.application.services.reconciliation_engine import (
    ReconciliationEngine,
    SubscriptionState,
)
from case_summary.domain.access_scope import AccessScope, Caller, ClinicMapping, resolve_scope
from case_summary.domain.counters import CounterVector
from case_summary.domain.today_window import TodayWindow

SleepCallable = Callable[[float], Awaitable[None]]
NowCallable = Callable[[], datetime]
logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class SessionConfig:
    """Tunables shared by every session a service opens."""

    window_size: int = 200
    timezone_name: str = "UTC"
    retry_delay_seconds: float = 5.0
    day_check_interval_seconds: float = 60.0


@dataclass(frozen=True)
class _FeedFailed:
    error: Exception


@dataclass(frozen=True)
class _FeedEnded:
    pass


_SessionMessage = FeedSnapshot | _FeedFailed | _FeedEnded


class _DayRolledOver(Exception):
    pass


class SummaryCounterSession:
    """Actor owning the window cache and counters of one access scope.

    Feed snapshots are forwarded into a single-consumer queue and applied in
    delivery order by one task. Failures move the session to ERROR and, after
    the retry delay, rebuild it from SEEDING with a fresh aggregation.
    """

    def __init__(
        self,
        *,
        scope: AccessScope,
        store: CaseStorePort,
        counter_store: CounterStore,
        config: SessionConfig,
        aggregator: InitialAggregator | None = None,
        now: NowCallable = _utc_now,
        sleep: SleepCallable = asyncio.sleep,
    ) -> None:
        self._scope = scope
        self._store = store
        self._counter_store = counter_store
        self._config = config
        self._aggregator = aggregator or InitialAggregator(store=store)
        self._now = now
        self._sleep = sleep
        self._generation: int | None = None
        self._task: asyncio.Task[None] | None = None
        self._engine: ReconciliationEngine | None = None
        self._last_counters: CounterVector | None = None
        self._state = SubscriptionState.UNSUBSCRIBED

    @property
    def scope(self) -> AccessScope:
        return self._scope

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def counters(self) -> CounterStore:
        return self._counter_store

    @property
    def engine(self) -> ReconciliationEngine | None:
        return self._engine

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Claim a new counter-store generation and launch the actor task."""

        if self._task is not None:
            raise RuntimeError("session already started")
        self._generation = self._counter_store.reset(state=SubscriptionState.SEEDING)
        self._task = asyncio.create_task(self._run(), name="summary-counter-session")

    async def close(self) -> None:
        """Cancel in-flight work, close the feed and clear all session state."""

        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        elif task is not None and not task.cancelled() and task.exception() is not None:
            logger.error(
                "summary_session_task_failed owner_filter=%s error=%s",
                self._scope.owner_filter,
                task.exception(),
            )
        self._engine = None
        self._last_counters = None
        self._state = SubscriptionState.UNSUBSCRIBED
        if self._generation is not None and self._counter_store.generation == self._generation:
            self._counter_store.reset(state=SubscriptionState.UNSUBSCRIBED)
        logger.info("summary_session_closed owner_filter=%s", self._scope.owner_filter)

    async def _run(self) -> None:
        while True:
            try:
                await self._run_cycle()
                self._fail("change feed closed")
            except _DayRolledOver:
                logger.info("summary_session_day_rollover; rebuilding counters")
                continue
            except CountsUnavailableError as error:
                self._fail(str(error))
            except ChangeFeedError as error:
                self._fail(str(error))
            except Exception as error:  # noqa: BLE001
                logger.exception("summary_session_unexpected_error")
                self._fail(f"Unexpected session error: {error}")
            await self._sleep(self._config.retry_delay_seconds)

    async def _run_cycle(self) -> None:
        today = TodayWindow.for_moment(self._now(), timezone_name=self._config.timezone_name)
        self._engine = None
        self._publish(SubscriptionState.SEEDING, self._last_counters)

        baseline = await self._aggregator.aggregate(self._scope, today=today)
        engine = ReconciliationEngine(
            scope=self._scope,
            today=today,
            baseline=baseline,
            window_size=self._config.window_size,
        )
        self._engine = engine
        self._last_counters = engine.counters
        self._publish(SubscriptionState.SEEDING, engine.counters)

        queue: asyncio.Queue[_SessionMessage] = asyncio.Queue()
        feed = self._store.open_change_feed(
            self._scope.owner_filter,
            limit=self._config.window_size,
        )
        pump = asyncio.create_task(self._pump(feed, queue), name="summary-feed-pump")
        try:
            while True:
                try:
                    async with asyncio.timeout(self._seconds_until_day_check(today)):
                        message = await queue.get()
                except TimeoutError:
                    if today.contains(self._now()):
                        continue
                    raise _DayRolledOver from None
                if isinstance(message, _FeedFailed):
                    raise ChangeFeedError(
                        f"Change feed failed: {message.error}"
                    ) from message.error
                if isinstance(message, _FeedEnded):
                    return
                if engine.state is SubscriptionState.RECONCILING and not today.contains(
                    self._now()
                ):
                    raise _DayRolledOver
                counters = engine.apply(message)
                self._last_counters = counters
                self._publish(engine.state, counters)
        finally:
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump
            await feed.aclose()
            engine.cache.clear()

    def _seconds_until_day_check(self, today: TodayWindow) -> float:
        # Capped so clock jumps are noticed within one interval.
        remaining = (today.end - self._now()).total_seconds()
        return max(0.0, min(remaining, self._config.day_check_interval_seconds))

    async def _pump(
        self,
        feed: CaseChangeFeedPort,
        queue: asyncio.Queue[_SessionMessage],
    ) -> None:
        try:
            async for snapshot in feed:
                await queue.put(snapshot)
        except Exception as error:  # noqa: BLE001
            await queue.put(_FeedFailed(error))
            return
        await queue.put(_FeedEnded())

    def _publish(self, state: SubscriptionState, counters: CounterVector | None) -> None:
        self._state = state
        if self._generation is None:
            return
        self._counter_store.publish(
            self._generation,
            state=state,
            counters=counters,
            drift=self._engine.drift if self._engine is not None else None,
        )

    def _fail(self, error_summary: str) -> None:
        logger.warning(
            "summary_session_error owner_filter=%s retry_in=%s error=%s",
            self._scope.owner_filter,
            self._config.retry_delay_seconds,
            error_summary,
        )
        self._state = SubscriptionState.ERROR
        if self._generation is None:
            return
        self._counter_store.publish(
            self._generation,
            state=SubscriptionState.ERROR,
            counters=self._last_counters,
            error=error_summary,
            drift=self._engine.drift if self._engine is not None else None,
        )


class SummaryCounterService:
    """Own the active counting session and switch it when the caller scope changes."""

    def __init__(
        self,
        *,
        store: CaseStorePort,
        clinic_mapping: ClinicMapping,
        config: SessionConfig | None = None,
        counter_store: CounterStore | None = None,
        now: NowCallable = _utc_now,
        sleep: SleepCallable = asyncio.sleep,
    ) -> None:
        self._store = store
        self._clinic_mapping = clinic_mapping
        self._config = config or SessionConfig()
        self._counter_store = counter_store or CounterStore()
        self._now = now
        self._sleep = sleep
        self._active: SummaryCounterSession | None = None

    @property
    def counters(self) -> CounterStore:
        return self._counter_store

    @property
    def active_session(self) -> SummaryCounterSession | None:
        return self._active

    def open(
        self,
        scope: AccessScope,
        *,
        counter_store: CounterStore | None = None,
    ) -> SummaryCounterSession:
        """Start an independent session for `scope` and return its handle."""

        session = SummaryCounterSession(
            scope=scope,
            store=self._store,
            counter_store=counter_store or CounterStore(),
            config=self._config,
            now=self._now,
            sleep=self._sleep,
        )
        session.start()
        logger.info(
            "summary_session_opened owner_filter=%s partner=%s window_size=%s",
            scope.owner_filter,
            scope.partner_name,
            self._config.window_size,
        )
        return session

    async def close(self, session: SummaryCounterSession) -> None:
        await session.close()
        if session is self._active:
            self._active = None

    async def set_scope(self, caller: Caller) -> SummaryCounterSession:
        """Tear down the current session and start counting for `caller`."""

        scope = resolve_scope(caller, self._clinic_mapping)
        if self._active is not None:
            await self.close(self._active)
        self._active = self.open(scope, counter_store=self._counter_store)
        return self._active

    async def teardown(self) -> None:
        if self._active is not None:
            await self.close(self._active)
