"""Cases and clinics tables read by the summary counters."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_case_summary_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "cases",
        sa.Column("case_id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("doctor_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "pharmacist_completed",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
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
    op.create_index("ix_cases_created_at", "cases", ["created_at"])
    op.create_index(
        "ix_cases_assigned_doctor_id_created_at",
        "cases",
        ["assigned_doctor_id", "created_at"],
    )
    op.create_index(
        "ix_cases_pharmacist_id_created_at",
        "cases",
        ["pharmacist_id", "created_at"],
    )
    op.create_index("ix_cases_created_by_created_at", "cases", ["created_by", "created_at"])

    op.create_table(
        "clinics",
        sa.Column("clinic_id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("clinic_code", sa.Text(), nullable=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("partner_name", sa.Text(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("clinics")
    op.drop_index("ix_cases_created_by_created_at", table_name="cases")
    op.drop_index("ix_cases_pharmacist_id_created_at", table_name="cases")
    op.drop_index("ix_cases_assigned_doctor_id_created_at", table_name="cases")
    op.drop_index("ix_cases_created_at", table_name="cases")
    op.drop_table("cases")
