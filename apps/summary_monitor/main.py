"""summary-monitor entrypoint."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass

from case_summary.application.ports.clinic_directory_port import load_clinic_mapping
from case_summary.application.services.counter_store import SummaryCountersSnapshot
from case_summary.application.services.summary_counter_service import (
    SessionConfig,
    SummaryCounterService,
)
from case_summary.config.settings import Settings, load_settings
from case_summary.domain.access_scope import Caller
from case_summary.infrastructure.db.case_store import SqlAlchemyCaseStore
from case_summary.infrastructure.db.clinic_directory import SqlAlchemyClinicDirectory
from case_summary.infrastructure.db.session import Database, create_database
from case_summary.infrastructure.logging import configure_logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SummaryMonitorRuntime:
    """Composed collaborators for the summary monitor process."""

    settings: Settings
    database: Database
    case_store: SqlAlchemyCaseStore
    clinic_directory: SqlAlchemyClinicDirectory


def build_summary_monitor_runtime(*, settings: Settings) -> SummaryMonitorRuntime:
    database = create_database(settings.database_url)
    return SummaryMonitorRuntime(
        settings=settings,
        database=database,
        case_store=SqlAlchemyCaseStore(
            database.session_factory,
            poll_interval_seconds=settings.feed_poll_interval_seconds,
        ),
        clinic_directory=SqlAlchemyClinicDirectory(database.session_factory),
    )


def build_caller(settings: Settings) -> Caller:
    """Return the caller whose counters the monitor tracks."""

    return Caller(
        user_id=settings.summary_caller_user_id,
        role=settings.summary_caller_role,
        partner_name=settings.summary_partner_name,
        supervised_user_ids=settings.supervised_user_ids(),
    )


def log_counter_snapshot(snapshot: SummaryCountersSnapshot) -> None:
    """Log one published snapshot in key=value form."""

    if snapshot.counters is None:
        logger.info("summary_counters state=%s counters=unavailable", snapshot.state)
        return
    values = " ".join(f"{name}={value}" for name, value in snapshot.counters.as_dict().items())
    logger.info(
        "summary_counters state=%s %s boundary_additions=%s removals=%s clamps=%s%s",
        snapshot.state,
        values,
        snapshot.drift.boundary_additions,
        snapshot.drift.removals,
        snapshot.drift.clamps,
        f" error={snapshot.error}" if snapshot.error else "",
    )


async def run_summary_monitor(
    *,
    runtime: SummaryMonitorRuntime,
    stop_event: asyncio.Event,
) -> None:
    """Track the configured caller's counters until `stop_event` is set."""

    settings = runtime.settings
    clinic_mapping = await load_clinic_mapping(runtime.clinic_directory)
    logger.info(
        "clinic_mapping_loaded clinics=%s partners=%s",
        len(clinic_mapping),
        len(clinic_mapping.partner_names()),
    )
    service = SummaryCounterService(
        store=runtime.case_store,
        clinic_mapping=clinic_mapping,
        config=SessionConfig(
            window_size=settings.summary_window_size,
            timezone_name=settings.summary_timezone,
            retry_delay_seconds=settings.feed_retry_delay_seconds,
            day_check_interval_seconds=settings.day_check_interval_seconds,
        ),
    )
    unsubscribe = service.counters.subscribe(log_counter_snapshot)
    try:
        await service.set_scope(build_caller(settings))
        await stop_event.wait()
    finally:
        unsubscribe()
        await service.teardown()


async def _run_summary_monitor() -> None:
    settings = load_settings()
    configure_logging(level=settings.log_level)
    logger.info(
        "summary_monitor_starting role=%s window_size=%s poll_interval_seconds=%s",
        settings.summary_caller_role,
        settings.summary_window_size,
        settings.feed_poll_interval_seconds,
    )
    runtime = build_summary_monitor_runtime(settings=settings)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)
    try:
        await run_summary_monitor(runtime=runtime, stop_event=stop_event)
    finally:
        await runtime.database.dispose()


def main() -> None:
    """Run the summary counter monitor."""

    asyncio.run(_run_summary_monitor())


if __name__ == "__main__":
    main()
