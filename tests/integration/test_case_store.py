from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import sqlalchemy as sa
from alembic.config import Config

from alembic import command
from case_summary.application.dto.case_document_models import InvalidCaseDocumentError
from case_summary.application.ports.case_store_port import CaseQuery, CaseStoreError, ChangeKind
from case_summary.application.ports.clinic_directory_port import load_clinic_mapping
from case_summary.application.services.initial_aggregator import InitialAggregator
from case_summary.domain.access_scope import (
    Caller,
    CallerRole,
    ClinicInfo,
    OwnerField,
    OwnerFilter,
    resolve_scope,
)
from case_summary.domain.case_record import CaseCategory
from case_summary.domain.counters import CounterVector
from case_summary.domain.today_window import TodayWindow
from case_summary.infrastructure.db.case_store import SqlAlchemyCaseStore
from case_summary.infrastructure.db.clinic_directory import SqlAlchemyClinicDirectory
from case_summary.infrastructure.db.session import create_database

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
TODAY = TodayWindow.for_moment(NOW, timezone_name="UTC")


def _upgrade_head(tmp_path: Path, filename: str) -> tuple[str, str]:
    db_path = tmp_path / filename
    sync_url = f"sqlite+pysqlite:///{db_path}"
    async_url = f"sqlite+aiosqlite:///{db_path}"

    alembic_config = Config("alembic.ini")
    alembic_config.set_main_option("sqlalchemy.url", sync_url)
    command.upgrade(alembic_config, "head")

    return sync_url, async_url


def _document(case_id: str, *, hours_ago: int, **overrides: object) -> dict[str, object]:
    document: dict[str, object] = {
        "id": case_id,
        "createdAt": (NOW - timedelta(hours=hours_ago)).isoformat(),
        "clinicId": "nurse-1",
        "createdBy": "nurse-1",
        "assignedDoctors": {"primary": "doc-1"},
    }
    document.update(overrides)
    return document


async def _seed(store: SqlAlchemyCaseStore) -> None:
    await store.upsert_document(_document("case-1", hours_ago=1))
    await store.upsert_document(
        _document("case-2", hours_ago=2, doctorCompleted=True, emrNumbers=["E1", "E2"])
    )
    await store.upsert_document(
        _document(
            "case-3",
            hours_ago=3,
            doctorCompleted=True,
            pharmacistCompleted=True,
            emrNumbers=["E3", "E4", "E5"],
            pharmacistCompletedAt={"seconds": int((NOW - timedelta(hours=1)).timestamp())},
        )
    )
    await store.upsert_document(
        _document(
            "case-4",
            hours_ago=30,
            doctorCompleted=True,
            pharmacistCompleted=True,
            completedAt=(NOW - timedelta(hours=26)).isoformat(),
        )
    )
    await store.upsert_document(
        _document("case-5", hours_ago=4, status="pharmacist_incomplete", doctorCompleted=True)
    )
    await store.upsert_document(
        _document(
            "case-6",
            hours_ago=5,
            isIncomplete=True,
            incompleteAt=(NOW - timedelta(minutes=30)).isoformat(),
            clinicId="nurse-2",
            createdBy="nurse-2",
            assignedDoctors={"primary": "doc-2"},
        )
    )


@pytest.mark.asyncio
async def test_fetch_cases_filters_by_category_and_terminal_window(tmp_path: Path) -> None:
    _, async_url = _upgrade_head(tmp_path, "case_categories.db")
    database = create_database(async_url)
    store = SqlAlchemyCaseStore(database.session_factory)

    async def ids(query: CaseQuery) -> list[str]:
        return sorted(record.case_id for record in await store.fetch_cases(query))

    try:
        await _seed(store)

        assert await ids(CaseQuery()) == [
            "case-1",
            "case-2",
            "case-3",
            "case-4",
            "case-5",
            "case-6",
        ]
        assert await ids(CaseQuery(category=CaseCategory.INCOMPLETE)) == ["case-5", "case-6"]
        assert await ids(CaseQuery(category=CaseCategory.COMPLETED)) == ["case-3", "case-4"]
        assert await ids(CaseQuery(category=CaseCategory.DOCTOR_PENDING)) == ["case-1"]
        assert await ids(CaseQuery(category=CaseCategory.PHARMACIST_PENDING)) == ["case-2"]
        assert await ids(
            CaseQuery(category=CaseCategory.COMPLETED, terminal_window=TODAY)
        ) == ["case-3"]
        assert await ids(
            CaseQuery(category=CaseCategory.INCOMPLETE, terminal_window=TODAY)
        ) == ["case-6"]
        assert await ids(
            CaseQuery(
                owner_filter=OwnerFilter(
                    owner_field=OwnerField.ASSIGNED_DOCTOR,
                    values=frozenset({"doc-2"}),
                )
            )
        ) == ["case-6"]
    finally:
        await database.dispose()


@pytest.mark.asyncio
async def test_records_round_trip_with_utc_timestamps(tmp_path: Path) -> None:
    _, async_url = _upgrade_head(tmp_path, "case_round_trip.db")
    database = create_database(async_url)
    store = SqlAlchemyCaseStore(database.session_factory)

    try:
        await _seed(store)
        [record] = [
            record
            for record in await store.fetch_cases(CaseQuery(category=CaseCategory.COMPLETED))
            if record.case_id == "case-3"
        ]
    finally:
        await database.dispose()

    assert record.emr_numbers == ("E3", "E4", "E5")
    assert record.sub_unit_count == 3
    assert record.created_at == NOW - timedelta(hours=3)
    assert record.created_at.tzinfo is not None
    assert record.completed_at == NOW - timedelta(hours=1)
    assert record.assigned_doctor_id == "doc-1"


@pytest.mark.asyncio
async def test_upsert_replaces_existing_row_and_delete_reports_existence(
    tmp_path: Path,
) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "case_upsert.db")
    database = create_database(async_url)
    store = SqlAlchemyCaseStore(database.session_factory)

    try:
        await store.upsert_document(_document("case-1", hours_ago=1))
        await store.upsert_document(_document("case-1", hours_ago=1, doctorCompleted=True))

        engine = sa.create_engine(sync_url)
        with engine.begin() as connection:
            count = connection.execute(sa.text("SELECT COUNT(*) FROM cases")).scalar_one()
            doctor_completed = connection.execute(
                sa.text("SELECT doctor_completed FROM cases WHERE case_id = 'case-1'")
            ).scalar_one()
        engine.dispose()

        assert count == 1
        assert bool(doctor_completed) is True
        assert await store.delete_case("case-1") is True
        assert await store.delete_case("case-1") is False
    finally:
        await database.dispose()


@pytest.mark.asyncio
async def test_invalid_document_is_rejected_before_write(tmp_path: Path) -> None:
    _, async_url = _upgrade_head(tmp_path, "case_invalid.db")
    database = create_database(async_url)
    store = SqlAlchemyCaseStore(database.session_factory)

    try:
        with pytest.raises(InvalidCaseDocumentError):
            await store.upsert_document({"id": "case-1", "createdAt": "not-a-date"})

        assert await store.fetch_cases(CaseQuery()) == []
    finally:
        await database.dispose()


@pytest.mark.asyncio
async def test_fetch_window_returns_newest_first_within_limit(tmp_path: Path) -> None:
    _, async_url = _upgrade_head(tmp_path, "case_window.db")
    database = create_database(async_url)
    store = SqlAlchemyCaseStore(database.session_factory)

    try:
        await _seed(store)
        window = await store.fetch_window(None, limit=3)
        nurse_two = await store.fetch_window(
            OwnerFilter(owner_field=OwnerField.CREATED_BY, values=frozenset({"nurse-2"})),
            limit=10,
        )
    finally:
        await database.dispose()

    assert [record.case_id for record in window] == ["case-1", "case-2", "case-3"]
    assert [record.case_id for record in nurse_two] == ["case-6"]


@pytest.mark.asyncio
async def test_change_feed_reports_window_changes(tmp_path: Path) -> None:
    _, async_url = _upgrade_head(tmp_path, "case_feed.db")
    database = create_database(async_url)
    store = SqlAlchemyCaseStore(database.session_factory, poll_interval_seconds=0.0)

    try:
        await store.upsert_document(_document("case-1", hours_ago=2))
        await store.upsert_document(_document("case-2", hours_ago=3))

        feed = store.open_change_feed(None, limit=2)
        iterator = aiter(feed)
        initial = await anext(iterator)

        await store.upsert_document(_document("case-1", hours_ago=2, doctorCompleted=True))
        await store.upsert_document(_document("case-3", hours_ago=1))
        update = await anext(iterator)
        await feed.aclose()
    finally:
        await database.dispose()

    assert initial.is_initial is True
    assert [change.case_id for change in initial.changes] == ["case-1", "case-2"]
    assert [(change.kind, change.case_id) for change in update.changes] == [
        (ChangeKind.REMOVED, "case-2"),
        (ChangeKind.ADDED, "case-3"),
        (ChangeKind.MODIFIED, "case-1"),
    ]
    assert feed.closed is True


@pytest.mark.asyncio
async def test_clinic_upsert_failure_is_reported_as_store_error(tmp_path: Path) -> None:
    # No migration: the clinics table does not exist.
    database = create_database(f"sqlite+aiosqlite:///{tmp_path / 'clinic_missing.db'}")
    directory = SqlAlchemyClinicDirectory(database.session_factory)

    try:
        with pytest.raises(CaseStoreError, match="Clinic upsert failed for nurse-1"):
            await directory.upsert_clinic(ClinicInfo(clinic_id="nurse-1", partner_name="Apollo"))
        with pytest.raises(CaseStoreError, match="Clinic directory query failed"):
            await directory.list_clinics()
    finally:
        await database.dispose()


@pytest.mark.asyncio
async def test_aggregation_over_sql_store_matches_expected_counters(tmp_path: Path) -> None:
    _, async_url = _upgrade_head(tmp_path, "case_aggregation.db")
    database = create_database(async_url)
    store = SqlAlchemyCaseStore(database.session_factory)
    directory = SqlAlchemyClinicDirectory(database.session_factory)

    try:
        await _seed(store)
        await directory.upsert_clinic(ClinicInfo(clinic_id="nurse-1", partner_name="Apollo"))
        await directory.upsert_clinic(
            ClinicInfo(clinic_id="nurse-2", partner_name="Medplus", clinic_code="MP-2")
        )
        await directory.upsert_clinic(ClinicInfo(clinic_id="nurse-2", partner_name="Medplus"))
        mapping = await load_clinic_mapping(directory)
        aggregator = InitialAggregator(store=store)

        everyone = await aggregator.aggregate(
            resolve_scope(Caller(user_id="admin", role=CallerRole.SUPER_ADMIN), mapping),
            today=TODAY,
        )
        apollo = await aggregator.aggregate(
            resolve_scope(
                Caller(user_id="admin", role=CallerRole.SUPER_ADMIN, partner_name="Apollo"),
                mapping,
            ),
            today=TODAY,
        )
    finally:
        await database.dispose()

    assert len(mapping) == 2
    assert mapping["nurse-2"].clinic_code is None
    assert mapping.partner_names() == ["Apollo", "Medplus"]
    assert everyone == CounterVector(
        total_cases=9,
        completed_cases=4,
        doctor_pending_cases=1,
        pharmacist_pending_cases=2,
        incomplete_cases=2,
        today_cases=3,
        today_completed=3,
        today_incomplete=1,
    )
    assert apollo == everyone - CounterVector(
        total_cases=1,
        incomplete_cases=1,
        today_incomplete=1,
    )
