"""initial household schema

Revision ID: 202601150900
Revises:
Create Date: 2026-01-15 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601150900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "households",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("member1_name", sa.String(length=80), nullable=False),
        sa.Column("member2_name", sa.String(length=80)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("account_id"),
    )

    op.create_table(
        "statements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.String(length=64), nullable=False),
        sa.Column(
            "owner", sa.String(length=20), nullable=False, server_default="combined"
        ),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("raw_content", sa.Text()),
        sa.Column(
            "status", sa.String(length=20), nullable=False, server_default="pending"
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_statements_account_created", "statements", ["account_id", "created_at"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("statement_id", sa.Integer(), sa.ForeignKey("statements.id")),
        sa.Column("account_id", sa.String(length=64), nullable=False),
        sa.Column(
            "owner", sa.String(length=20), nullable=False, server_default="combined"
        ),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("vendor", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=60), nullable=False),
        sa.Column("is_shared", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("recurrence_frequency", sa.String(length=20)),
        sa.Column("split_type", sa.String(length=20)),
        sa.Column("member1_share", sa.Integer()),
        sa.Column("member2_share", sa.Integer()),
        sa.Column("occurrence_date", sa.Date()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "account_id",
            "vendor",
            "amount_cents",
            "recurrence_frequency",
            "owner",
            "occurrence_date",
            name="uq_txn_lineage_occurrence",
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "member1_share IS NULL OR (member1_share >= 0 AND member1_share <= 100)",
            name="ck_transactions_member1_share_range",
        ),
        sa.CheckConstraint(
            "member2_share IS NULL OR (member2_share >= 0 AND member2_share <= 100)",
            name="ck_transactions_member2_share_range",
        ),
    )
    op.create_index(
        "ix_transactions_account_date", "transactions", ["account_id", "date"]
    )
    op.create_index(
        "ix_transactions_account_category_date",
        "transactions",
        ["account_id", "category", "date"],
    )
    op.create_index("ix_transactions_recurring", "transactions", ["is_recurring"])


def downgrade():
    op.drop_index("ix_transactions_recurring", table_name="transactions")
    op.drop_index("ix_transactions_account_category_date", table_name="transactions")
    op.drop_index("ix_transactions_account_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_statements_account_created", table_name="statements")
    op.drop_table("statements")
    op.drop_table("households")
