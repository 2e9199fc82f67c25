"""opt-in periods: consent history used by draw eligibility

Revision ID: 0002_opt_in_periods
Revises: 0001_initial_schema
Create Date: 2026-10-19 10:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0002_opt_in_periods"
down_revision: Union[str, None] = "0001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "opt_in_periods",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("msisdn", sa.String(length=15), nullable=False),
        sa.Column("opted_in_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("opted_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("channel", sa.String(length=20), nullable=True),
        sa.ForeignKeyConstraint(
            ["msisdn"],
            ["subscribers.msisdn"],
            name=op.f("fk_opt_in_periods_msisdn_subscribers"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_opt_in_periods")),
    )
    op.create_index(
        "ix_opt_in_periods_msisdn_opted_in_at", "opt_in_periods", ["msisdn", "opted_in_at"]
    )

    # Seed one period per subscriber from the latest opt-in / opt-out dates.
    op.execute(
        """
        INSERT INTO opt_in_periods (msisdn, opted_in_at, opted_out_at, channel)
        SELECT msisdn,
               opt_in_date,
               CASE WHEN opt_in_status THEN NULL ELSE opt_out_date END,
               opt_in_channel
        FROM subscribers
        WHERE opt_in_date IS NOT NULL
        """
    )


def downgrade() -> None:
    op.drop_index("ix_opt_in_periods_msisdn_opted_in_at", table_name="opt_in_periods")
    op.drop_table("opt_in_periods")
