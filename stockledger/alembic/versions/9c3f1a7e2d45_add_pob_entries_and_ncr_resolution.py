"""add pob entries and ncr resolution columns

Revision ID: 9c3f1a7e2d45
Revises: 5b2e8d41c7a0
Create Date: 2026-03-09
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "9c3f1a7e2d45"
down_revision: Union[str, Sequence[str], None] = "5b2e8d41c7a0"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "pob_entries",
        sa.Column("id", PK, primary_key=True),
        sa.Column("period_id", PK, sa.ForeignKey("periods.id", ondelete="CASCADE"), nullable=False),
        sa.Column("location_id", PK, sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("crew_count", sa.Integer(), nullable=False),
        sa.Column("extra_count", sa.Integer(), nullable=False),
        sa.Column("entered_by", PK, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.UniqueConstraint("period_id", "location_id", "entry_date", name="uq_pob_period_location_date"),
        sa.CheckConstraint("crew_count >= 0", name="ck_pob_crew_nonneg"),
        sa.CheckConstraint("extra_count >= 0", name="ck_pob_extra_nonneg"),
    )

    # batch : SQLite ne sait pas ajouter une FK par ALTER
    with op.batch_alter_table("ncrs") as batch:
        batch.add_column(sa.Column("resolution_notes", sa.Text()))
        batch.add_column(sa.Column("resolved_by", PK))
        batch.add_column(sa.Column("resolved_at", TS))
        batch.create_foreign_key("fk_ncrs_resolved_by", "users", ["resolved_by"], ["id"], ondelete="RESTRICT")


def downgrade() -> None:
    with op.batch_alter_table("ncrs") as batch:
        batch.drop_constraint("fk_ncrs_resolved_by", type_="foreignkey")
        batch.drop_column("resolved_at")
        batch.drop_column("resolved_by")
        batch.drop_column("resolution_notes")
    op.drop_table("pob_entries")
