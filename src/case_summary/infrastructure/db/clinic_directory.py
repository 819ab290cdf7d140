"""SQLAlchemy adapter for clinic directory lookups."""

from __future__ import annotations

from typing import cast

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from case_summary.application.ports.case_store_port import CaseStoreError
from case_summary.application.ports.clinic_directory_port import ClinicDirectoryPort
from case_summary.domain.access_scope import ClinicInfo
from case_summary.infrastructure.db.metadata import clinics


class SqlAlchemyClinicDirectory(ClinicDirectoryPort):
    """Clinic directory backed by the `clinics` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_clinics(self) -> list[ClinicInfo]:
        statement = sa.select(
            clinics.c.clinic_id,
            clinics.c.clinic_code,
            clinics.c.name,
            clinics.c.partner_name,
        ).order_by(clinics.c.clinic_id)

        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                rows = result.mappings().all()
        except SQLAlchemyError as error:
            raise CaseStoreError(f"Clinic directory query failed: {error}") from error

        return [
            ClinicInfo(
                clinic_id=cast(str, row["clinic_id"]),
                clinic_code=cast(str | None, row["clinic_code"]),
                name=cast(str | None, row["name"]),
                partner_name=cast(str | None, row["partner_name"]),
            )
            for row in rows
        ]

    async def upsert_clinic(self, clinic: ClinicInfo) -> None:
        """Insert or replace one clinic row."""

        values = {
            "clinic_code": clinic.clinic_code,
            "name": clinic.name,
            "partner_name": clinic.partner_name,
        }
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    sa.update(clinics)
                    .where(clinics.c.clinic_id == clinic.clinic_id)
                    .values(**values)
                )
                if getattr(result, "rowcount", 0) == 0:
                    await session.execute(
                        sa.insert(clinics).values(clinic_id=clinic.clinic_id, **values)
                    )
                await session.commit()
            except SQLAlchemyError as error:
                await session.rollback()
                raise CaseStoreError(f"Clinic upsert failed for {clinic.clinic_id}") from error
