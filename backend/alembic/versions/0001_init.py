"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    if "jobs" not in existing_tables:
        op.create_table(
            "jobs",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("type", sa.String(), nullable=False),
            sa.Column("status", sa.Enum("pending", "running", "done", "error", name="job_status"), nullable=False),
            sa.Column("payload", sa.JSON(), nullable=False),
            sa.Column("result", sa.JSON(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("handle", sa.JSON(), nullable=True),
            sa.Column("credits_charged", sa.Integer(), nullable=True),
            sa.Column("attempts", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        )
    idxs = existing_indexes("jobs")
    for name, cols in (
        ("ix_jobs_id", ["id"]),
        ("ix_jobs_user_id", ["user_id"]),
        ("ix_jobs_type", ["type"]),
        ("ix_jobs_status", ["status"]),
        ("ix_jobs_created_at", ["created_at"]),
    ):
        if name not in idxs:
            op.create_index(name, "jobs", cols)

    if "credit_accounts" not in existing_tables:
        op.create_table(
            "credit_accounts",
            sa.Column("user_id", sa.String(), primary_key=True),
            sa.Column("current_balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("credits_used", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_free_claim_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )

    if "credit_ledger" not in existing_tables:
        op.create_table(
            "credit_ledger",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("event_type", sa.String(), nullable=False),
            sa.Column("delta", sa.Integer(), nullable=False),
            sa.Column("source", sa.String(), nullable=True),
            sa.Column("job_id", sa.String(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("credit_ledger")
    for name, cols in (
        ("ix_credit_ledger_user_id", ["user_id"]),
        ("ix_credit_ledger_source", ["source"]),
        ("ix_credit_ledger_job_id", ["job_id"]),
    ):
        if name not in idxs:
            op.create_index(name, "credit_ledger", cols)
    if "ux_credit_ledger_user_source_credit" not in idxs:
        op.create_index(
            "ux_credit_ledger_user_source_credit",
            "credit_ledger",
            ["user_id", "source"],
            unique=True,
            sqlite_where=sa.text("delta > 0 AND source IS NOT NULL"),
            postgresql_where=sa.text("delta > 0 AND source IS NOT NULL"),
        )

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("type", sa.String(), nullable=True),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("job_id", sa.String(), nullable=True),
            sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("notifications")
    for name, cols in (("ix_notifications_user_id", ["user_id"]), ("ix_notifications_job_id", ["job_id"])):
        if name not in idxs:
            op.create_index(name, "notifications", cols)


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("credit_ledger")
    op.drop_table("credit_accounts")
    op.drop_table("jobs")
