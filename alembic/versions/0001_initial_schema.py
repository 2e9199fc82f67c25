"""initial schema: subscribers, top-ups, draws, winners, notification queue

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "subscribers",
        sa.Column("msisdn", sa.String(length=15), nullable=False),
        sa.Column("last_digit", sa.Integer(), nullable=False),
        sa.Column("opt_in_status", sa.Boolean(), nullable=False),
        sa.Column("opt_in_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opt_out_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opt_in_channel", sa.String(length=20), nullable=True),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("msisdn", name=op.f("pk_subscribers")),
    )
    op.create_index(op.f("ix_subscribers_last_digit"), "subscribers", ["last_digit"])
    op.create_index(op.f("ix_subscribers_opt_in_status"), "subscribers", ["opt_in_status"])

    op.create_table(
        "topups",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("msisdn", sa.String(length=15), nullable=False),
        sa.Column("amount", sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column("awarded_points", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("provider_txn_id", sa.String(length=64), nullable=True),
        sa.Column("channel", sa.String(length=20), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["msisdn"],
            ["subscribers.msisdn"],
            name=op.f("fk_topups_msisdn_subscribers"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_topups")),
    )
    op.create_index("ix_topups_msisdn_timestamp", "topups", ["msisdn", "timestamp"])
    op.create_index(op.f("ix_topups_provider_txn_id"), "topups", ["provider_txn_id"])

    op.create_table(
        "blacklist",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("msisdn", sa.String(length=15), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_blacklist")),
        sa.UniqueConstraint("msisdn", name=op.f("uq_blacklist_msisdn")),
    )

    op.create_table(
        "draws",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("draw_date", sa.Date(), nullable=False),
        sa.Column("draw_type", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("eligible_digits", sa.JSON(), nullable=False),
        sa.Column("lookback_seconds", sa.Integer(), nullable=False),
        sa.Column("prize_structure", sa.JSON(), nullable=False),
        sa.Column("seed", sa.BigInteger(), nullable=True),
        sa.Column("candidate_count", sa.Integer(), nullable=True),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("window_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unawarded", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_of_id", ID_TYPE, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["retry_of_id"],
            ["draws.id"],
            name=op.f("fk_draws_retry_of_id_draws"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_draws")),
    )
    op.create_index(
        "uq_draws_date_type_active",
        "draws",
        ["draw_date", "draw_type"],
        unique=True,
        sqlite_where=sa.text("status != 'FAILED'"),
        postgresql_where=sa.text("status != 'FAILED'"),
    )
    op.create_index("ix_draws_status", "draws", ["status"])

    op.create_table(
        "draw_winners",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("draw_id", ID_TYPE, nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("msisdn", sa.String(length=15), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("prize_name", sa.String(length=100), nullable=False),
        sa.Column("prize_amount", sa.BigInteger(), nullable=False),
        sa.Column("picked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notification_status", sa.String(length=20), nullable=False),
        sa.Column("notification_error", sa.Text(), nullable=True),
        sa.Column("notification_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["draw_id"],
            ["draws.id"],
            name=op.f("fk_draw_winners_draw_id_draws"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_draw_winners")),
        sa.UniqueConstraint("draw_id", "msisdn", name="uq_draw_winners_draw_msisdn"),
        sa.UniqueConstraint("draw_id", "position", name="uq_draw_winners_draw_position"),
    )
    op.create_index(op.f("ix_draw_winners_draw_id"), "draw_winners", ["draw_id"])

    op.create_table(
        "notification_jobs",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("correlation_id", sa.String(length=64), nullable=False),
        sa.Column("winner_id", ID_TYPE, nullable=True),
        sa.Column("msisdn", sa.String(length=15), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("gateway", sa.String(length=20), nullable=True),
        sa.Column("message_id", sa.String(length=100), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["winner_id"],
            ["draw_winners.id"],
            name=op.f("fk_notification_jobs_winner_id_draw_winners"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_jobs")),
        sa.UniqueConstraint("correlation_id", name=op.f("uq_notification_jobs_correlation_id")),
    )
    op.create_index(op.f("ix_notification_jobs_status"), "notification_jobs", ["status"])


def downgrade() -> None:
    op.drop_index(op.f("ix_notification_jobs_status"), table_name="notification_jobs")
    op.drop_table("notification_jobs")
    op.drop_index(op.f("ix_draw_winners_draw_id"), table_name="draw_winners")
    op.drop_table("draw_winners")
    op.drop_index("ix_draws_status", table_name="draws")
    op.drop_index("uq_draws_date_type_active", table_name="draws")
    op.drop_table("draws")
    op.drop_table("blacklist")
    op.drop_index(op.f("ix_topups_provider_txn_id"), table_name="topups")
    op.drop_index("ix_topups_msisdn_timestamp", table_name="topups")
    op.drop_table("topups")
    op.drop_index(op.f("ix_subscribers_opt_in_status"), table_name="subscribers")
    op.drop_index(op.f("ix_subscribers_last_digit"), table_name="subscribers")
    op.drop_table("subscribers")
