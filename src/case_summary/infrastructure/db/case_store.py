"""SQLAlchemy adapter for case counting queries and the polled change feed."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from functools import partial
from typing import Any, cast

import sqlalchemy as sa
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from case_summary.application.dto.case_document_models import parse_case_document
from case_summary.application.ports.case_store_port import (
    CaseQuery,
    CaseStoreError,
    CaseStorePort,
)
from case_summary.domain.access_scope import OwnerFilter
from case_summary.domain.case_record import (
    INCOMPLETE_STATUS_MARKERS,
    CaseCategory,
    CaseRecord,
)
from case_summary.infrastructure.db.metadata import cases
from case_summary.infrastructure.feed.polling_change_feed import PollingCaseChangeFeed

_CASE_COLUMNS = (
    cases.c.case_id,
    cases.c.created_at,
    cases.c.doctor_completed,
    cases.c.pharmacist_completed,
    cases.c.is_incomplete,
    cases.c.status,
    cases.c.emr_numbers,
    cases.c.completed_at,
    cases.c.incomplete_at,
    cases.c.clinic_id,
    cases.c.assigned_doctor_id,
    cases.c.pharmacist_id,
    cases.c.created_by,
)

_is_incomplete = sa.or_(
    cases.c.is_incomplete == sa.true(),
    sa.func.coalesce(cases.c.status, "").in_(sorted(INCOMPLETE_STATUS_MARKERS)),
)
_is_complete = sa.and_(
    sa.not_(_is_incomplete),
    cases.c.doctor_completed == sa.true(),
    cases.c.pharmacist_completed == sa.true(),
)
_CATEGORY_CONDITIONS: dict[CaseCategory, sa.ColumnElement[bool]] = {
    CaseCategory.INCOMPLETE: _is_incomplete,
    CaseCategory.COMPLETED: _is_complete,
    CaseCategory.DOCTOR_PENDING: sa.and_(
        sa.not_(_is_incomplete),
        cases.c.doctor_completed == sa.false(),
    ),
    CaseCategory.PHARMACIST_PENDING: sa.and_(
        sa.not_(_is_incomplete),
        cases.c.doctor_completed == sa.true(),
        cases.c.pharmacist_completed == sa.false(),
    ),
}


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _to_case_record(row: RowMapping) -> CaseRecord:
    emr_numbers = cast("list[Any] | None", row["emr_numbers"]) or []
    return CaseRecord(
        case_id=cast(str, row["case_id"]),
        created_at=cast(datetime, _as_utc(cast(datetime, row["created_at"]))),
        doctor_completed=bool(row["doctor_completed"]),
        pharmacist_completed=bool(row["pharmacist_completed"]),
        is_incomplete=bool(row["is_incomplete"]),
        status=cast(str | None, row["status"]),
        emr_numbers=tuple(str(item) for item in emr_numbers),
        completed_at=_as_utc(cast(datetime | None, row["completed_at"])),
        incomplete_at=_as_utc(cast(datetime | None, row["incomplete_at"])),
        clinic_id=cast(str | None, row["clinic_id"]),
        assigned_doctor_id=cast(str | None, row["assigned_doctor_id"]),
        pharmacist_id=cast(str | None, row["pharmacist_id"]),
        created_by=cast(str | None, row["created_by"]),
    )


def _owner_condition(owner_filter: OwnerFilter | None) -> sa.ColumnElement[bool]:
    if owner_filter is None:
        return sa.true()
    column = cases.c[owner_filter.owner_field.value]
    return column.in_(sorted(owner_filter.values))


class SqlAlchemyCaseStore(CaseStorePort):
    """Case store backed by SQLAlchemy async sessions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        poll_interval_seconds: float = 1.0,
    ) -> None:
        self._session_factory = session_factory
        self._poll_interval_seconds = poll_interval_seconds

    async def fetch_cases(self, query: CaseQuery) -> list[CaseRecord]:
        """Return cases matching ownership, category and terminal-window filters."""

        statement = sa.select(*_CASE_COLUMNS).where(_owner_condition(query.owner_filter))
        if query.category is not None:
            statement = statement.where(_CATEGORY_CONDITIONS[query.category])
        if query.terminal_window is not None:
            if query.category is CaseCategory.COMPLETED:
                terminal_at: sa.ColumnElement[Any] = cases.c.completed_at
            else:
                terminal_at = sa.func.coalesce(cases.c.incomplete_at, cases.c.completed_at)
            statement = statement.where(
                terminal_at >= query.terminal_window.start.astimezone(UTC),
                terminal_at < query.terminal_window.end.astimezone(UTC),
            )
        return await self._fetch(statement)

    async def fetch_window(
        self,
        owner_filter: OwnerFilter | None,
        *,
        limit: int,
    ) -> list[CaseRecord]:
        """Return the `limit` most recently created cases visible to `owner_filter`."""

        statement = (
            sa.select(*_CASE_COLUMNS)
            .where(_owner_condition(owner_filter))
            .order_by(cases.c.created_at.desc(), cases.c.case_id.desc())
            .limit(limit)
        )
        return await self._fetch(statement)

    def open_change_feed(
        self,
        owner_filter: OwnerFilter | None,
        *,
        limit: int,
    ) -> PollingCaseChangeFeed:
        """Open a polled feed over the newest `limit` cases for `owner_filter`."""

        return PollingCaseChangeFeed(
            fetch_window=partial(self.fetch_window, owner_filter, limit=limit),
            poll_interval_seconds=self._poll_interval_seconds,
        )

    async def upsert_document(self, raw: Mapping[str, Any]) -> CaseRecord:
        """Validate a raw case document and insert or replace its row."""

        record = parse_case_document(raw)
        values = {
            "created_at": record.created_at,
            "updated_at": datetime.now(tz=UTC),
            "doctor_completed": record.doctor_completed,
            "pharmacist_completed": record.pharmacist_completed,
            "is_incomplete": record.is_incomplete,
            "status": record.status,
            "emr_numbers": list(record.emr_numbers),
            "completed_at": record.completed_at,
            "incomplete_at": record.incomplete_at,
            "clinic_id": record.clinic_id,
            "assigned_doctor_id": record.assigned_doctor_id,
            "pharmacist_id": record.pharmacist_id,
            "created_by": record.created_by,
        }
        async with self._session_factory() as session:
            try:
                updated = await session.execute(
                    sa.update(cases).where(cases.c.case_id == record.case_id).values(**values)
                )
                if cast("Any", updated).rowcount == 0:
                    await session.execute(
                        sa.insert(cases).values(case_id=record.case_id, **values)
                    )
                await session.commit()
            except SQLAlchemyError as error:
                await session.rollback()
                raise CaseStoreError(f"Case upsert failed for {record.case_id}") from error
        return record

    async def delete_case(self, case_id: str) -> bool:
        """Delete one case row; return whether it existed."""

        async with self._session_factory() as session:
            try:
                result = await session.execute(sa.delete(cases).where(cases.c.case_id == case_id))
                await session.commit()
            except SQLAlchemyError as error:
                await session.rollback()
                raise CaseStoreError(f"Case delete failed for {case_id}") from error
        return bool(cast("Any", result).rowcount)

    async def _fetch(self, statement: sa.Select[Any]) -> list[CaseRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                rows = result.mappings().all()
        except SQLAlchemyError as error:
            raise CaseStoreError(f"Case query failed: {error}") from error
        return [_to_case_record(row) for row in rows]
