"""Initial canonical store schema.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "site",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_site"),
    )
    op.create_index("ix_site_name", "site", ["name"])

    op.create_table(
        "projector_model",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("model_no", sa.String(), nullable=False),
        sa.Column("manufacturer", sa.String(), nullable=True),
        sa.Column("specifications", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_projector_model"),
        sa.UniqueConstraint("model_no", name="uq_projector_model_model_no"),
    )

    op.create_table(
        "projector",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("serial_number", sa.String(), nullable=False),
        sa.Column("projector_model_id", sa.Uuid(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "INACTIVE", "MAINTENANCE", name="projectorstatus", native_enum=False),
            nullable=False,
        ),
        sa.Column("installation_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["projector_model_id"],
            ["projector_model.id"],
            name="fk_projector_projector_model_id_projector_model",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_projector"),
        sa.UniqueConstraint("serial_number", name="uq_projector_serial_number"),
    )

    op.create_table(
        "audi",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("audi_no", sa.String(), nullable=False),
        sa.Column("site_id", sa.Uuid(), nullable=False),
        sa.Column("projector_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["site_id"], ["site.id"], name="fk_audi_site_id_site"),
        sa.ForeignKeyConstraint(
            ["projector_id"], ["projector.id"], name="fk_audi_projector_id_projector"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_audi"),
    )
    op.create_index("ix_audi_site_audi_no", "audi", ["site_id", "audi_no"])
    op.create_index("ix_audi_projector_id", "audi", ["projector_id"])

    op.create_table(
        "service_case",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("kind", sa.Enum("DTR", "RMA", name="casekind", native_enum=False), nullable=False),
        sa.Column("serial_number", sa.String(), nullable=False),
        sa.Column("case_number", sa.String(), nullable=True),
        sa.Column("call_log_number", sa.String(), nullable=True),
        sa.Column("rma_number", sa.String(), nullable=True),
        sa.Column("site_id", sa.Uuid(), nullable=True),
        sa.Column("audi_id", sa.Uuid(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("case_type", sa.String(), nullable=True),
        sa.Column("severity", sa.String(), nullable=True),
        sa.Column("opened_on", sa.Date(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["site_id"], ["site.id"], name="fk_service_case_site_id_site"),
        sa.ForeignKeyConstraint(["audi_id"], ["audi.id"], name="fk_service_case_audi_id_audi"),
        sa.PrimaryKeyConstraint("id", name="pk_service_case"),
        sa.UniqueConstraint("kind", "case_number", name="uq_service_case_case_number"),
        sa.UniqueConstraint("kind", "call_log_number", name="uq_service_case_call_log_number"),
        sa.UniqueConstraint("kind", "rma_number", name="uq_service_case_rma_number"),
    )
    op.create_index("ix_service_case_serial_number", "service_case", ["serial_number"])
    op.create_index("ix_service_case_audi_id", "service_case", ["audi_id"])


def downgrade() -> None:
    op.drop_index("ix_service_case_audi_id", table_name="service_case")
    op.drop_index("ix_service_case_serial_number", table_name="service_case")
    op.drop_table("service_case")
    op.drop_index("ix_audi_projector_id", table_name="audi")
    op.drop_index("ix_audi_site_audi_no", table_name="audi")
    op.drop_table("audi")
    op.drop_table("projector")
    op.drop_table("projector_model")
    op.drop_index("ix_site_name", table_name="site")
    op.drop_table("site")
