"""Initial schema for users, chamas, memberships and the contribution ledger."""
from __future__ import annotations

from collections.abc import Iterable

import sqlalchemy as sa
from alembic import op

revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on: Iterable[str] | None = None


def _drop_enum(name: str) -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute(sa.text(f"DROP TYPE IF EXISTS {name}"))


def upgrade() -> None:  # noqa: D401
    """Create initial tables and constraints."""

    user_role = sa.Enum("USER", "SECRETARY", "CHAIRPERSON", name="user_role")
    contribution_status = sa.Enum("SUCCESS", "FAILED", name="contribution_status")

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("phone_number", sa.String(length=32)),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("role", user_role, nullable=False, server_default="USER"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "chamas",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("chama_type", sa.String(length=64)),
        sa.Column("invitation_code", sa.String(length=16), nullable=False),
        sa.Column("is_invitation_code_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("monthly_contribution_amount", sa.Numeric(18, 2)),
        sa.Column("contribution_frequency", sa.String(length=32)),
        sa.Column("contribution_due_day", sa.Integer()),
        sa.Column("loan_interest_rate", sa.Numeric(6, 3)),
        sa.Column("max_loan_multiplier", sa.Numeric(6, 2)),
        sa.Column("loan_max_term_months", sa.Integer()),
        sa.Column("meeting_frequency", sa.String(length=32)),
        sa.Column("meeting_day", sa.String(length=32)),
        sa.Column("created_by", sa.String(length=36)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("total_balance", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("invitation_code", name="uq_chamas_invitation_code"),
    )

    op.create_table(
        "chama_members",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("chama_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="USER"),
        sa.Column("contribution_amount", sa.Numeric(18, 2)),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["chama_id"], ["chamas.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("chama_id", "user_id", name="uq_chama_members_chama_user"),
    )
    op.create_index("ix_chama_members_user_id", "chama_members", ["user_id"])

    op.create_table(
        "pending_contribution_requests",
        sa.Column("checkout_request_id", sa.String(length=128), primary_key=True),
        sa.Column("merchant_request_id", sa.String(length=128)),
        sa.Column("chama_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["chama_id"], ["chamas.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "contributions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("chama_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("contributed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("mpesa_receipt_number", sa.String(length=64)),
        sa.Column("checkout_request_id", sa.String(length=128), nullable=False),
        sa.Column("status", contribution_status, nullable=False, server_default="SUCCESS"),
        sa.Column("balance_applied", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["chama_id"], ["chamas.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
    )
    op.create_index("ix_contributions_chama_id", "contributions", ["chama_id"])
    op.create_index("ix_contributions_user_id", "contributions", ["user_id"])
    op.create_index(
        "uq_contributions_checkout_success",
        "contributions",
        ["checkout_request_id"],
        unique=True,
        sqlite_where=sa.text("status = 'SUCCESS'"),
        postgresql_where=sa.text("status = 'SUCCESS'"),
    )

    op.create_table(
        "mpesa_callbacks",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("merchant_request_id", sa.String(length=128)),
        sa.Column("checkout_request_id", sa.String(length=128)),
        sa.Column("result_code", sa.Integer()),
        sa.Column("result_desc", sa.Text()),
        sa.Column("amount", sa.Numeric(18, 2)),
        sa.Column("mpesa_receipt_number", sa.String(length=64)),
        sa.Column("transaction_date", sa.DateTime(timezone=True)),
        sa.Column("phone_number", sa.String(length=32)),
        sa.Column("raw_payload", sa.JSON()),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_mpesa_callbacks_checkout_request_id", "mpesa_callbacks", ["checkout_request_id"])


def downgrade() -> None:  # noqa: D401
    """Drop all tables."""

    op.drop_index("ix_mpesa_callbacks_checkout_request_id", table_name="mpesa_callbacks")
    op.drop_table("mpesa_callbacks")

    op.drop_index("uq_contributions_checkout_success", table_name="contributions")
    op.drop_index("ix_contributions_user_id", table_name="contributions")
    op.drop_index("ix_contributions_chama_id", table_name="contributions")
    op.drop_table("contributions")

    op.drop_table("pending_contribution_requests")

    op.drop_index("ix_chama_members_user_id", table_name="chama_members")
    op.drop_table("chama_members")

    op.drop_table("chamas")
    op.drop_table("users")

    for enum_name in ["contribution_status", "user_role"]:
        _drop_enum(enum_name)
