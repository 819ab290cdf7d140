"""SQLAlchemy metadata for the case and clinic tables."""

from __future__ import annotations

import sqlalchemy as sa

metadata = sa.MetaData()

cases = sa.Table(
    "cases",
    metadata,
    sa.Column("case_id", sa.Text(), primary_key=True, nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    ),
    sa.Column("doctor_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("pharmacist_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("is_incomplete", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("status", sa.Text(), nullable=True),
    sa.Column("emr_numbers", sa.JSON(), nullable=True),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("incomplete_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("clinic_id", sa.Text(), nullable=True),
    sa.Column("assigned_doctor_id", sa.Text(), nullable=True),
    sa.Column("pharmacist_id", sa.Text(), nullable=True),
    sa.Column("created_by", sa.Text(), nullable=True),
)

sa.Index("ix_cases_created_at", cases.c.created_at)
sa.Index("ix_cases_assigned_doctor_id_created_at", cases.c.assigned_doctor_id, cases.c.created_at)
sa.Index("ix_cases_pharmacist_id_created_at", cases.c.pharmacist_id, cases.c.created_at)
sa.Index("ix_cases_created_by_created_at", cases.c.created_by, cases.c.created_at)

clinics = sa.Table(
    "clinics",
    metadata,
    sa.Column("clinic_id", sa.Text(), primary_key=True, nullable=False),
    sa.Column("clinic_code", sa.Text(), nullable=True),
    sa.Column("name", sa.Text(), nullable=True),
    sa.Column("partner_name", sa.Text(), nullable=True),
)
